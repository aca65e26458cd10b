import uuid

from django.db import models

from authentication.models import CustomUser, Store, TimeStampedModel


class Order(TimeStampedModel):
    PAYMENT_PENDING = 'pending'
    PAYMENT_SUCCESS = 'success'
    PAYMENT_FAILED = 'failed'
    PAYMENT_STATUS_CHOICES = (
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_SUCCESS, 'Success'),
        (PAYMENT_FAILED, 'Failed'),
    )

    PLACED = 'placed'
    ACCEPTED = 'accepted'
    PROCESSING = 'processing'
    READY = 'ready'
    PICKED_UP = 'picked_up'
    CANCELLED = 'cancelled'
    ORDER_STATUS_CHOICES = (
        (PLACED, 'Placed'),
        (ACCEPTED, 'Accepted'),
        (PROCESSING, 'Processing'),
        (READY, 'Ready'),
        (PICKED_UP, 'Picked Up'),
        (CANCELLED, 'Cancelled'),
    )

    PAYMENT_TIMEOUT = 'payment_timeout'
    NO_SHOW_TIMEOUT = 'no_show_timeout'
    CANCELLATION_REASON_CHOICES = (
        (PAYMENT_TIMEOUT, 'Payment Timeout'),
        (NO_SHOW_TIMEOUT, 'No-show Timeout'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    payment_reference = models.CharField(max_length=20, unique=True)
    user = models.ForeignKey(CustomUser, on_delete=models.CASCADE, related_name='orders')
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='orders')

    # Fixed at creation, never recomputed from the menu
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)

    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING)
    order_status = models.CharField(max_length=20, choices=ORDER_STATUS_CHOICES, default=PLACED)
    payment_method = models.CharField(max_length=20, default='upi')
    transaction_id = models.CharField(max_length=40, unique=True, null=True, blank=True)
    special_instructions = models.TextField(null=True, blank=True)

    # Pickup OTP, minted on the transition to ready
    otp = models.CharField(max_length=6, null=True, blank=True)
    otp_expires_at = models.DateTimeField(null=True, blank=True)
    is_otp_verified = models.BooleanField(default=False)
    otp_attempts = models.PositiveSmallIntegerField(default=0)

    # Timeout sweep bookkeeping
    ready_expires_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=30, choices=CANCELLATION_REASON_CHOICES, null=True, blank=True)
    no_show_recorded = models.BooleanField(default=False)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['store', 'order_status'], name='orders_store_status_idx'),
            models.Index(fields=['user', 'created_at'], name='orders_user_created_idx'),
            models.Index(fields=['order_status', 'ready_expires_at'], name='orders_status_ready_exp_idx'),
        ]

    def __str__(self):
        return f"{self.order_number} - {self.order_status}"

    @property
    def etag(self):
        return f'"{self.pk}-{self.version}"'


class OrderItem(models.Model):
    """Line item snapshot taken when the order is placed"""
    order = models.ForeignKey(Order, related_name='items', on_delete=models.CASCADE)
    menu_item_id = models.UUIDField()
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    total = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        db_table = 'order_items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity} x {self.name}"


class OrderNotification(TimeStampedModel):
    """Outbound customer notification, written in the same transaction as the order change"""
    ORDER_CONFIRMATION = 'order_confirmation'
    STATUS_UPDATE = 'status_update'
    PICKUP_OTP = 'pickup_otp'
    KIND_CHOICES = (
        (ORDER_CONFIRMATION, 'Order Confirmation'),
        (STATUS_UPDATE, 'Status Update'),
        (PICKUP_OTP, 'Pickup OTP'),
    )

    PENDING = 'pending'
    SENT = 'sent'
    FAILED = 'failed'
    STATUS_CHOICES = (
        (PENDING, 'Pending'),
        (SENT, 'Sent'),
        (FAILED, 'Failed'),
    )

    order = models.ForeignKey(Order, related_name='notifications', on_delete=models.CASCADE)
    kind = models.CharField(max_length=30, choices=KIND_CHOICES)
    recipient = models.EmailField()
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    attempts = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'order_notifications'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='order_notif_status_idx'),
        ]

    def __str__(self):
        return f"{self.kind} -> {self.recipient} ({self.status})"
