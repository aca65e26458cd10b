from rest_framework import serializers

from .models import Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ['menu_item_id', 'name', 'price', 'quantity', 'total']


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    user_id = serializers.UUIDField(source='user.id', read_only=True)
    store_id = serializers.UUIDField(source='store.id', read_only=True)
    store_name = serializers.CharField(source='store.name', read_only=True)
    store_upi_id = serializers.CharField(source='store.upi_id', read_only=True)
    customer_name = serializers.CharField(source='user.name', read_only=True)
    customer_email = serializers.EmailField(source='user.email', read_only=True)
    customer_phone = serializers.CharField(source='user.phone_number', read_only=True)
    customer_role = serializers.CharField(source='user.role', read_only=True)
    customer_register_number = serializers.CharField(source='user.register_number', read_only=True)
    customer_employee_id = serializers.CharField(source='user.employee_id', read_only=True)
    pickup_otp = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'payment_reference', 'user_id', 'store_id',
            'store_name', 'store_upi_id', 'customer_name', 'customer_email',
            'customer_phone', 'customer_role', 'customer_register_number',
            'customer_employee_id', 'items', 'total_amount', 'payment_status',
            'order_status', 'payment_method', 'transaction_id',
            'special_instructions', 'pickup_otp', 'otp_expires_at',
            'is_otp_verified', 'ready_expires_at', 'cancelled_at', 'cancellation_reason',
            'version', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_pickup_otp(self, obj):
        """Only the customer who placed the order sees the pickup code."""
        request = self.context.get('request')
        if request is None or obj.user_id != getattr(request.user, 'pk', None):
            return None
        if obj.order_status != Order.READY:
            return None
        return obj.otp


class OrderPollSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = ['id', 'order_number', 'payment_status', 'order_status', 'updated_at']
        read_only_fields = fields


# =============== REQUEST BODIES ===============

class OrderItemInputSerializer(serializers.Serializer):
    menuItemId = serializers.UUIDField()
    # Parsed leniently by the workflow: missing or invalid means 1
    quantity = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class OrderCreateSerializer(serializers.Serializer):
    storeId = serializers.UUIDField()
    items = OrderItemInputSerializer(many=True, allow_empty=False)
    specialInstructions = serializers.CharField(
        required=False, allow_null=True, allow_blank=True, max_length=500
    )


class PaymentStatusUpdateSerializer(serializers.Serializer):
    paymentStatus = serializers.CharField()
    transactionId = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.CharField()


class VerifyOtpSerializer(serializers.Serializer):
    # Compared verbatim, no trimming
    otp = serializers.CharField(trim_whitespace=False)

    def validate_otp(self, value):
        # CharField would coerce a JSON number; the code must arrive as a string
        if not isinstance(self.initial_data.get('otp'), str):
            raise serializers.ValidationError('OTP must be a string.')
        return value
