import logging

from drf_yasg import openapi
from drf_yasg.utils import no_body, swagger_auto_schema
from rest_framework import generics, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated

from authentication.exceptions import NotFound, PreconditionFailed
from authentication.models import Store
from authentication.permissions import IsStoreEmployee
from authentication.responses import api_response
from .models import Order
from .serializers import (
    OrderCreateSerializer, OrderPollSerializer, OrderSerializer,
    OrderStatusUpdateSerializer, PaymentStatusUpdateSerializer, VerifyOtpSerializer,
)
from .services import get_order_workflow

logger = logging.getLogger(__name__)

if_match_header = openapi.Parameter(
    'If-Match', openapi.IN_HEADER,
    description="ETag of the order as last fetched; a stale value is rejected with 412",
    type=openapi.TYPE_STRING,
)


def expected_version(request, order_id):
    """Order version named by the If-Match header, or None when absent."""
    header = request.headers.get('If-Match')
    if not header or header.strip() == '*':
        return None

    tag = header.strip()
    if tag.startswith('W/'):
        tag = tag[2:]
    tag = tag.strip('"')

    order_part, _, version = tag.rpartition('-')
    if order_part != str(order_id) or not version.isdigit():
        raise PreconditionFailed()
    return int(version)


def order_response(order, request, message=None, extra=None, status_code=status.HTTP_200_OK):
    data = {'order': OrderSerializer(order, context={'request': request}).data}
    if extra:
        data.update(extra)
    return api_response(data, message=message, status=status_code, headers={'ETag': order.etag})


class OrderListCreateView(generics.ListCreateAPIView):
    """
    get: Customers see their own orders, store employees see their store's orders
    post: Place an order and receive the UPI payment links
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        queryset = Order.objects.select_related('store', 'user').prefetch_related('items')

        if user.is_store_employee:
            store = Store.objects.filter(owner=user).first()
            if store is None:
                raise NotFound('You do not own a store.')
            queryset = queryset.filter(store=store)
        else:
            queryset = queryset.filter(user=user)

        status_filter = self.request.query_params.get('status')
        if status_filter:
            statuses = [s.strip() for s in status_filter.split(',') if s.strip()]
            if statuses:
                queryset = queryset.filter(order_status__in=statuses)

        return queryset.order_by('-created_at')

    @swagger_auto_schema(
        operation_description="List orders, newest first",
        manual_parameters=[
            openapi.Parameter('status', openapi.IN_QUERY, description="Comma separated order statuses", type=openapi.TYPE_STRING),
        ]
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @swagger_auto_schema(
        operation_description="Place an order",
        request_body=OrderCreateSerializer,
        responses={
            201: 'Order with payment payload {upiLink, upiAppLinks, amount, storeName, storeUpiId, paymentReference}',
            400: 'Invalid items or inactive store',
            404: 'Store not found',
        }
    )
    def post(self, request, *args, **kwargs):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order, payment = get_order_workflow().place_order(
            request.user,
            data['storeId'],
            data['items'],
            data.get('specialInstructions'),
        )
        return order_response(
            order, request,
            message='Order placed. Pay the exact amount to the store UPI ID to continue.',
            extra={'payment': payment},
            status_code=status.HTTP_201_CREATED,
        )


class OrderDetailView(generics.GenericAPIView):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    @swagger_auto_schema(responses={200: OrderSerializer, 403: 'Not your order', 404: 'Order not found'})
    def get(self, request, pk):
        order = get_order_workflow().get_order(pk, request.user)
        return order_response(order, request)


@swagger_auto_schema(
    method='patch',
    operation_description="Set payment status. Success on a placed order also accepts it.",
    request_body=PaymentStatusUpdateSerializer,
    manual_parameters=[if_match_header],
    responses={200: OrderSerializer, 400: 'Invalid status or transaction ID', 403: 'Not your store', 409: 'Duplicate transaction ID or concurrent update'}
)
@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsStoreEmployee])
def update_payment_status(request, pk):
    serializer = PaymentStatusUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    order = get_order_workflow().update_payment_status(
        pk,
        request.user,
        serializer.validated_data['paymentStatus'],
        transaction_id=serializer.validated_data.get('transactionId'),
        expected_version=expected_version(request, pk),
    )
    return order_response(order, request, message='Payment status updated successfully.')


@swagger_auto_schema(
    method='patch',
    operation_description="Advance the order: accepted -> processing -> ready -> picked_up. Moving to ready returns the pickup OTP.",
    request_body=OrderStatusUpdateSerializer,
    manual_parameters=[if_match_header],
    responses={200: OrderSerializer, 400: 'Invalid transition', 403: 'Not your store', 409: 'Concurrent update'}
)
@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsStoreEmployee])
def update_order_status(request, pk):
    serializer = OrderStatusUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    new_status = serializer.validated_data['status']

    order, otp = get_order_workflow().transition_status(
        pk,
        request.user,
        new_status,
        expected_version=expected_version(request, pk),
    )
    return order_response(
        order, request,
        message=f'Order status updated to "{new_status}".',
        extra={'otp': otp} if otp else None,
    )


@swagger_auto_schema(
    method='post',
    operation_description="Verify the customer's pickup OTP and mark the order picked up",
    request_body=VerifyOtpSerializer,
    manual_parameters=[if_match_header],
    responses={200: OrderSerializer, 400: 'Invalid or expired OTP', 429: 'Too many attempts'}
)
@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStoreEmployee])
def verify_otp(request, pk):
    serializer = VerifyOtpSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    order = get_order_workflow().verify_otp(
        pk,
        request.user,
        serializer.validated_data['otp'],
        expected_version=expected_version(request, pk),
    )
    return order_response(order, request, message='OTP verified. Order marked as picked up.')


@swagger_auto_schema(method='get', responses={200: OrderPollSerializer})
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def poll_status(request, pk):
    order = get_order_workflow().get_order(pk, request.user)
    return api_response(OrderPollSerializer(order).data, headers={'ETag': order.etag})


@swagger_auto_schema(
    method='post',
    operation_description="Issue a new pickup OTP for a ready order (expired code or too many wrong attempts)",
    request_body=no_body,
    manual_parameters=[if_match_header],
    responses={200: OrderSerializer, 400: 'Order is not ready', 403: 'Not your store'}
)
@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStoreEmployee])
def reissue_otp(request, pk):
    order, otp = get_order_workflow().reissue_otp(
        pk,
        request.user,
        expected_version=expected_version(request, pk),
    )
    return order_response(order, request, message='A new pickup OTP has been issued.', extra={'otp': otp})
