import logging

from django.contrib.auth.tokens import default_token_generator
from django.db import connection, transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .emails import send_password_reset_email, send_verification_email
from .exceptions import InvalidState
from .models import CustomUser, Store
from .permissions import Actions, IsStoreEmployee, ensure_can
from .responses import api_response
from .serializers import (
    EmailRequestSerializer, LoginSerializer, LogoutSerializer, ProfileSerializer, ProfileUpdateSerializer,
    RegisterSerializer, ResetPasswordSerializer, StoreDetailSerializer, StoreSerializer,
    StoreUpdateSerializer, UserSerializer,
)
from .tokens import email_verification_token, user_from_uid

logger = logging.getLogger(__name__)

RECOVERY_MESSAGE = 'If an account with that email exists, a password reset link has been sent.'
RESEND_MESSAGE = 'If an unverified account with that email exists, a verification link has been sent.'


def _send_quietly(send, user):
    """Account e-mail failures are logged, never surfaced to the caller."""
    try:
        send(user)
    except Exception as e:
        logger.error(f"Failed to send account e-mail to {user.email}: {e}")


# =============== AUTHENTICATION VIEWS ===============

@extend_schema(
    summary="Register",
    description="""
    Create a student, faculty or store employee account.
    - Students must provide registerNumber
    - Faculty and store employees must provide employeeId
    - Store employees also provide phoneNumber, storeName and storeUpiId; their store is created with the account
    """,
    request=RegisterSerializer,
    responses={
        201: UserSerializer,
        400: {'description': 'Validation errors'},
        409: {'description': 'An account with this email already exists'},
    },
    examples=[
        OpenApiExample(
            'Store Employee Registration',
            value={
                "name": "Canteen Manager",
                "email": "canteen@campus.edu",
                "password": "SecurePass123",
                "confirmPassword": "SecurePass123",
                "role": "store_employee",
                "employeeId": "EMP-204",
                "phoneNumber": "9876543210",
                "storeName": "Main Canteen",
                "storeUpiId": "maincanteen@okaxis",
            }
        )
    ]
)
@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def register(request):
    serializer = RegisterSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    user = serializer.save()
    logger.info(f"Registered {user.role} account {user.email}")
    _send_quietly(send_verification_email, user)

    return api_response(
        UserSerializer(user).data,
        message='Registration successful. Please check your email to verify your account.',
        status=status.HTTP_201_CREATED,
    )


class LoginView(TokenObtainPairView):
    """
    JWT login with email and password
    """
    serializer_class = LoginSerializer

    @extend_schema(
        summary="User Login with JWT Token",
        request=LoginSerializer,
        responses={
            200: {
                'type': 'object',
                'properties': {
                    'success': {'type': 'boolean'},
                    'message': {'type': 'string'},
                    'data': {
                        'type': 'object',
                        'properties': {
                            'user': {'type': 'object'},
                            'accessToken': {'type': 'string'},
                            'refreshToken': {'type': 'string'},
                        }
                    },
                }
            },
            401: {'description': 'Invalid email or password'},
        },
    )
    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data['user']

        user.last_login = timezone.now()
        user.save(update_fields=['last_login'])

        refresh = RefreshToken.for_user(user)
        refresh['role'] = user.role

        return api_response({
            'user': UserSerializer(user).data,
            'accessToken': str(refresh.access_token),
            'refreshToken': str(refresh),
        }, message='Login successful.')


class RefreshView(TokenRefreshView):

    @extend_schema(summary="Refresh JWT access token")
    def post(self, request, *args, **kwargs):
        response = super().post(request, *args, **kwargs)
        return api_response({
            'accessToken': response.data.get('access'),
            'refreshToken': response.data.get('refresh', request.data.get('refresh')),
        })


@extend_schema(
    summary="Logout",
    description="Revoke the given refresh token. Access tokens already issued stay valid until they expire.",
    request=LogoutSerializer,
    responses={200: {'description': 'Logged out'}, 400: {'description': 'Invalid refresh token'}},
)
@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def logout(request):
    serializer = LogoutSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        RefreshToken(serializer.validated_data['refreshToken']).blacklist()
    except TokenError:
        raise InvalidState('Invalid refresh token.')

    return api_response(message='Logged out successfully.')


# =============== EMAIL VERIFICATION ===============

@extend_schema(
    summary="Verify Email",
    description="Confirm the address using the uid and token from the verification e-mail link.",
    request=None,
    responses={200: {'description': 'Email verified'}, 400: {'description': 'Invalid or expired token'}},
)
@api_view(['GET'])
@permission_classes([permissions.AllowAny])
def verify_email(request, uidb64, token):
    user = user_from_uid(uidb64)
    if user is None or not email_verification_token.check_token(user, token):
        raise InvalidState('Invalid or expired verification token.')

    user.is_email_verified = True
    user.save(update_fields=['is_email_verified', 'updated_at'])
    logger.info(f"E-mail verified for {user.email}")

    return api_response(message='Email verified successfully. You can now log in.')


@extend_schema(
    summary="Resend Verification Email",
    request=EmailRequestSerializer,
    responses={200: {'description': 'Sent if the account exists and is unverified'}},
)
@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def resend_verification(request):
    serializer = EmailRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    user = CustomUser.objects.filter(
        email=serializer.validated_data['email'], is_active=True, is_email_verified=False
    ).first()
    if user is not None:
        _send_quietly(send_verification_email, user)

    return api_response(message=RESEND_MESSAGE)


# =============== PASSWORD RECOVERY ===============

@extend_schema(
    summary="Forgot Password",
    description="E-mails a reset link. The response is the same whether or not the account exists.",
    request=EmailRequestSerializer,
    responses={200: {'description': 'Reset link sent if the account exists'}},
)
@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def forgot_password(request):
    serializer = EmailRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    user = CustomUser.objects.filter(email=serializer.validated_data['email'], is_active=True).first()
    if user is not None:
        _send_quietly(send_password_reset_email, user)
        logger.info(f"Password reset requested for {user.email}")

    return api_response(message=RECOVERY_MESSAGE)


@extend_schema(
    summary="Reset Password",
    description="""
    Set a new password using the uid and token from the reset e-mail link.
    - The link stops working once the password changes
    - Every refresh token issued to the account is revoked
    """,
    request=ResetPasswordSerializer,
    responses={200: {'description': 'Password reset'}, 400: {'description': 'Invalid token or weak password'}},
)
@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def reset_password(request, uidb64, token):
    serializer = ResetPasswordSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    user = user_from_uid(uidb64)
    if user is None or not default_token_generator.check_token(user, token):
        raise InvalidState('Invalid or expired reset token.')

    with transaction.atomic():
        user.set_password(serializer.validated_data['password'])
        user.save(update_fields=['password', 'updated_at'])
        for outstanding in OutstandingToken.objects.filter(user=user):
            BlacklistedToken.objects.get_or_create(token=outstanding)
    logger.info(f"Password reset completed for {user.email}")

    return api_response(message='Password reset successful. Please log in with your new password.')


# =============== USER PROFILE ===============

class MyProfileView(generics.GenericAPIView):
    """
    Current user's profile, with the owned store for store employees
    """
    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(summary="Get My Profile", responses={200: ProfileSerializer})
    def get(self, request):
        return api_response(ProfileSerializer(request.user).data)

    @extend_schema(
        summary="Update My Profile",
        request=ProfileUpdateSerializer,
        responses={200: ProfileSerializer},
    )
    def put(self, request):
        serializer = ProfileUpdateSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return api_response(ProfileSerializer(user).data, message='Profile updated successfully.')


# =============== STORES ===============

class StoreListView(generics.ListAPIView):
    """
    Active stores, newest first
    """
    serializer_class = StoreSerializer
    permission_classes = [permissions.AllowAny]
    pagination_class = None
    queryset = Store.objects.filter(is_active=True).select_related('owner')

    @extend_schema(summary="List Stores", responses={200: StoreSerializer(many=True)})
    def get(self, request, *args, **kwargs):
        stores = self.get_serializer(self.get_queryset(), many=True).data
        return api_response({'stores': stores})


class StoreDetailView(generics.GenericAPIView):
    serializer_class = StoreDetailSerializer
    queryset = Store.objects.select_related('owner')

    def get_permissions(self):
        if self.request.method == 'GET':
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated(), IsStoreEmployee()]

    def get_object(self):
        return get_object_or_404(self.get_queryset(), pk=self.kwargs['pk'])

    @extend_schema(summary="Get Store", responses={200: StoreDetailSerializer})
    def get(self, request, pk):
        return api_response({'store': StoreDetailSerializer(self.get_object()).data})

    @extend_schema(
        summary="Update Store",
        description="Only the store's owner may update it. The UPI ID is validated and stored lower-cased.",
        request=StoreUpdateSerializer,
        responses={200: StoreSerializer, 403: {'description': 'Not the store owner'}},
    )
    def put(self, request, pk):
        return self._update(request, partial=True)

    @extend_schema(summary="Partially Update Store", request=StoreUpdateSerializer, responses={200: StoreSerializer})
    def patch(self, request, pk):
        return self._update(request, partial=True)

    def _update(self, request, partial):
        store = self.get_object()
        ensure_can(request.user, Actions.UPDATE_STORE, store, 'You are not authorized to update this store.')

        serializer = StoreUpdateSerializer(store, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        store = serializer.save()
        logger.info(f"Store {store.id} updated by {request.user.email}")

        return api_response({'store': StoreSerializer(store).data}, message='Store updated successfully.')


# =============== SYSTEM HEALTH ===============

@extend_schema(
    summary="System Health Check",
    description="Check system health and database connectivity",
    responses={
        200: {
            'type': 'object',
            'properties': {
                'status': {'type': 'string'},
                'timestamp': {'type': 'string'},
                'database': {'type': 'string'},
            }
        }
    }
)
@api_view(['GET'])
@permission_classes([permissions.AllowAny])
def health_check(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return api_response({
            'status': 'unhealthy',
            'timestamp': timezone.now().isoformat(),
            'database': 'disconnected',
        }, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return api_response({
        'status': 'healthy',
        'timestamp': timezone.now().isoformat(),
        'database': 'connected',
    })
