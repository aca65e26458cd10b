import re

from django.conf import settings
from django.contrib.auth import authenticate
from django.contrib.auth.password_validation import validate_password
from django.db import transaction
from rest_framework import exceptions, serializers

from .exceptions import Conflict, Forbidden
from .models import UPI_ID_REGEX, CustomUser, Store

INDIAN_MOBILE_REGEX = r'^[6-9]\d{9}$'


def normalize_upi_id(value):
    value = (value or '').strip().lower()
    if not re.match(UPI_ID_REGEX, value):
        raise serializers.ValidationError('Invalid UPI ID format.')
    return value


def is_campus_email(email, domain):
    """True when the e-mail belongs to the campus domain or one of its subdomains."""
    if not domain:
        return True
    parts = (email or '').strip().lower().rsplit('@', 1)
    if len(parts) != 2:
        return False
    domain = domain.lower()
    return parts[1] == domain or parts[1].endswith(f'.{domain}')


def validate_password_strength(value):
    if not re.search(r'[A-Z]', value):
        raise serializers.ValidationError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', value):
        raise serializers.ValidationError('Password must contain at least one lowercase letter')
    if not re.search(r'[0-9]', value):
        raise serializers.ValidationError('Password must contain at least one digit')
    validate_password(value)
    return value


# =============== STORE ===============

class StoreSerializer(serializers.ModelSerializer):
    owner_id = serializers.UUIDField(source='owner.id', read_only=True)
    owner_name = serializers.CharField(source='owner.name', read_only=True)

    class Meta:
        model = Store
        fields = [
            'id', 'name', 'description', 'upi_id', 'owner_id', 'owner_name',
            'is_active', 'operating_hours', 'image_url', 'qr_code_url',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'owner_id', 'owner_name', 'created_at', 'updated_at']


class StoreDetailSerializer(StoreSerializer):
    owner_email = serializers.EmailField(source='owner.email', read_only=True)
    owner_phone = serializers.CharField(source='owner.phone_number', read_only=True)

    class Meta(StoreSerializer.Meta):
        fields = StoreSerializer.Meta.fields + ['owner_email', 'owner_phone']


class StoreUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Store
        fields = [
            'name', 'description', 'upi_id', 'is_active',
            'operating_hours', 'image_url', 'qr_code_url',
        ]
        extra_kwargs = {
            'upi_id': {'validators': []},
        }

    def validate_upi_id(self, value):
        return normalize_upi_id(value)

    def validate_operating_hours(self, value):
        if value is not None and not isinstance(value, dict):
            raise serializers.ValidationError('Operating hours must be an object.')
        return value


# =============== USERS ===============

class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = CustomUser
        fields = [
            'id', 'email', 'name', 'role', 'register_number', 'employee_id',
            'phone_number', 'is_email_verified', 'no_show_count', 'trust_tier',
            'ordering_restricted_until', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class ProfileSerializer(UserSerializer):
    store = serializers.SerializerMethodField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['store']
        read_only_fields = fields

    def get_store(self, obj):
        if not obj.is_store_employee:
            return None
        store = Store.objects.filter(owner=obj).first()
        return StoreSerializer(store).data if store else None


class ProfileUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=2, max_length=255, required=False)
    phoneNumber = serializers.CharField(
        source='phone_number', max_length=17, required=False, allow_null=True, allow_blank=True
    )

    def validate_phoneNumber(self, value):
        if value and not re.match(r'^\+?\d{9,15}$', value):
            raise serializers.ValidationError('Enter a valid phone number.')
        return value or None

    def update(self, instance, validated_data):
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()
        return instance


class RegisterSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=2, max_length=255)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)
    confirmPassword = serializers.CharField(write_only=True)
    role = serializers.ChoiceField(choices=CustomUser.ROLE_CHOICES)
    registerNumber = serializers.CharField(required=False, allow_blank=True)
    employeeId = serializers.CharField(required=False, allow_blank=True)
    phoneNumber = serializers.CharField(required=False, allow_blank=True)
    storeName = serializers.CharField(required=False, allow_blank=True)
    storeUpiId = serializers.CharField(required=False, allow_blank=True)

    def validate_email(self, value):
        return value.strip().lower()

    def validate_password(self, value):
        return validate_password_strength(value)

    def validate(self, attrs):
        errors = {}
        role = attrs['role']

        if attrs['password'] != attrs['confirmPassword']:
            errors['confirmPassword'] = 'Passwords do not match'

        if role == CustomUser.ROLE_STUDENT and not attrs.get('registerNumber', '').strip():
            errors['registerNumber'] = 'Register number is required for students'

        if role in (CustomUser.ROLE_STUDENT, CustomUser.ROLE_FACULTY):
            domain = settings.CAMPUSBITE.get('CAMPUS_EMAIL_DOMAIN')
            if not is_campus_email(attrs['email'], domain):
                errors['email'] = (
                    f'Student and faculty accounts must use a {domain} email (subdomains are allowed).'
                )

        if role in (CustomUser.ROLE_FACULTY, CustomUser.ROLE_STORE_EMPLOYEE) and not attrs.get('employeeId', '').strip():
            errors['employeeId'] = 'Employee ID is required'

        if role == CustomUser.ROLE_STORE_EMPLOYEE:
            if not re.match(INDIAN_MOBILE_REGEX, attrs.get('phoneNumber', '')):
                errors['phoneNumber'] = 'Valid Indian mobile number is required for store employees'
            if not attrs.get('storeName', '').strip():
                errors['storeName'] = 'Store name is required for store employees'
            upi_id = attrs.get('storeUpiId', '').strip()
            if not upi_id:
                errors['storeUpiId'] = 'Store UPI ID is required for store employees'
            elif not re.match(UPI_ID_REGEX, upi_id.lower()):
                errors['storeUpiId'] = 'Store UPI ID format is invalid'

        if errors:
            raise serializers.ValidationError(errors)
        return attrs

    @transaction.atomic
    def create(self, validated_data):
        if CustomUser.objects.filter(email=validated_data['email']).exists():
            raise Conflict('An account with this email already exists.')

        user = CustomUser.objects.create_user(
            email=validated_data['email'],
            password=validated_data['password'],
            name=validated_data['name'].strip(),
            role=validated_data['role'],
            register_number=validated_data.get('registerNumber') or None,
            employee_id=validated_data.get('employeeId') or None,
            phone_number=validated_data.get('phoneNumber') or None,
        )

        if user.is_store_employee:
            Store.objects.create(
                name=validated_data['storeName'].strip(),
                upi_id=validated_data['storeUpiId'].strip().lower(),
                owner=user,
            )

        return user


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate(self, attrs):
        email = attrs['email'].strip().lower()
        user = authenticate(
            request=self.context.get('request'),
            username=email,
            password=attrs['password'],
        )
        if not user:
            raise exceptions.AuthenticationFailed('Invalid email or password.')
        if settings.CAMPUSBITE.get('REQUIRE_EMAIL_VERIFICATION', True) and not user.is_email_verified:
            raise Forbidden('Please verify your email before logging in.')
        attrs['user'] = user
        return attrs


# =============== ACCOUNT RECOVERY ===============

class EmailRequestSerializer(serializers.Serializer):
    email = serializers.EmailField()

    def validate_email(self, value):
        return value.strip().lower()


class ResetPasswordSerializer(serializers.Serializer):
    password = serializers.CharField(write_only=True)
    confirmPassword = serializers.CharField(write_only=True, required=False)

    def validate_password(self, value):
        return validate_password_strength(value)

    def validate(self, attrs):
        if 'confirmPassword' in attrs and attrs['password'] != attrs['confirmPassword']:
            raise serializers.ValidationError({'confirmPassword': 'Passwords do not match'})
        return attrs


class LogoutSerializer(serializers.Serializer):
    refreshToken = serializers.CharField()
