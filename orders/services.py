"""
Order lifecycle: intake, payment status, status transitions and pickup OTP.

Every mutation reads the order, applies the change in memory and writes it
back with ``UPDATE ... WHERE id = ? AND version = ?``. A write that matches no
row means another request changed the order first and fails with Conflict.
"""
import logging
import re
import uuid
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from authentication.exceptions import (
    Conflict, Forbidden, InvalidOtp, InvalidState, InvalidTransition,
    NotFound, PreconditionFailed, TooManyOtpAttempts,
)
from authentication.models import Store
from authentication.permissions import Actions, ensure_can
from inventory.models import MenuItem
from . import notifications
from .models import Order, OrderItem, OrderNotification
from .otp import generate_otp, get_otp_expiry, get_ready_expiry, validate_otp
from .payments import build_payment_payload, generate_upi_link
from .utils import (
    MAX_ORDER_TOTAL, generate_order_number, generate_unique_payment_reference, parse_quantity, round_money,
)

logger = logging.getLogger(__name__)

TRANSACTION_ID_REGEX = r'^[A-Za-z0-9]{8,40}$'

ALLOWED_TRANSITIONS = {
    Order.ACCEPTED: (Order.PROCESSING,),
    Order.PROCESSING: (Order.READY,),
    Order.READY: (Order.PICKED_UP,),
}


def can_transition(current, requested):
    return requested in ALLOWED_TRANSITIONS.get(current, ())


class OrderWorkflow:

    def __init__(self, notifier=None):
        self.notifier = notifier

    # =============== HELPERS ===============

    def _load(self, order):
        if isinstance(order, Order):
            return order
        found = Order.objects.select_related('store', 'user').filter(pk=order).first()
        if found is None:
            raise NotFound('Order not found.')
        return found

    def _check_version(self, order, expected_version):
        if expected_version is not None and int(expected_version) != order.version:
            raise PreconditionFailed()

    def _save(self, order, fields):
        """Version-checked single-row write of ``fields``."""
        now = timezone.now()
        values = {field: getattr(order, field) for field in fields}
        try:
            with transaction.atomic():
                updated = Order.objects.filter(pk=order.pk, version=order.version).update(
                    version=F('version') + 1,
                    updated_at=now,
                    **values,
                )
        except IntegrityError:
            raise Conflict('A record with this value already exists.')

        if not updated:
            logger.warning(f"Stale write rejected for order {order.order_number} at version {order.version}")
            raise Conflict()

        order.version += 1
        order.updated_at = now

    def _publish(self, order, kind, **extra):
        return notifications.publish(order, kind, notifier=self.notifier, **extra)

    # =============== QUERIES ===============

    def get_order(self, order_id, actor):
        order = self._load(order_id)
        ensure_can(actor, Actions.VIEW_ORDER, order, 'You are not authorized to view this order.')
        return order

    # =============== INTAKE ===============

    def place_order(self, user, store_id, items, special_instructions=None):
        """
        Create an order from ``items`` ([{'menuItemId', 'quantity'}]).

        Returns ``(order, payment)`` where payment carries the UPI links.
        """
        if user.is_ordering_restricted:
            local = timezone.localtime(user.ordering_restricted_until)
            raise Forbidden(
                f"Ordering is temporarily restricted due to repeated no-shows until {local:%d %b %Y, %H:%M}."
            )

        if not items:
            raise InvalidState('Order must contain at least one item.')

        store = Store.objects.filter(pk=store_id).first()
        if store is None:
            raise NotFound('Store not found.')
        if not store.is_active:
            raise InvalidState('This store is currently not accepting orders.')

        normalized = [
            {
                'menu_item_id': str(item.get('menuItemId') or item.get('id') or ''),
                'quantity': parse_quantity(item.get('quantity')),
            }
            for item in items
        ]
        try:
            for item in normalized:
                item['menu_item_id'] = str(uuid.UUID(item['menu_item_id']))
        except ValueError:
            raise InvalidState('One or more menu item IDs are invalid.')
        unique_ids = {item['menu_item_id'] for item in normalized}
        menu_items = {str(menu_item.pk): menu_item for menu_item in MenuItem.objects.filter(pk__in=unique_ids)}
        if len(menu_items) != len(unique_ids):
            raise InvalidState('One or more items not found.')

        max_quantity = settings.CAMPUSBITE['MAX_ITEM_QUANTITY']
        lines = []
        total = 0
        for item in normalized:
            menu_item = menu_items[item['menu_item_id']]
            if menu_item.store_id != store.pk:
                raise InvalidState(f'Item "{menu_item.name}" does not belong to this store.')
            if not menu_item.is_available:
                raise InvalidState(f'Item "{menu_item.name}" is currently unavailable.')
            if item['quantity'] > max_quantity:
                raise InvalidState(f'Quantity for "{menu_item.name}" cannot exceed {max_quantity}.')

            line_total = menu_item.price * item['quantity']
            total += line_total
            lines.append(OrderItem(
                menu_item_id=menu_item.pk,
                name=menu_item.name,
                price=menu_item.price,
                quantity=item['quantity'],
                total=round_money(line_total),
            ))

        total_amount = round_money(total)
        if total_amount > MAX_ORDER_TOTAL:
            raise InvalidState('Order total exceeds the maximum allowed amount.')
        payment_reference = generate_unique_payment_reference()
        # Fail on a bad store UPI ID or zero total before anything is written
        generate_upi_link(store.upi_id, store.name, total_amount, payment_reference)

        instructions = (special_instructions or '').strip() or None
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    order_number=generate_order_number(),
                    payment_reference=payment_reference,
                    user=user,
                    store=store,
                    total_amount=total_amount,
                    special_instructions=instructions,
                )
                for line in lines:
                    line.order = order
                OrderItem.objects.bulk_create(lines)
                self._publish(order, OrderNotification.ORDER_CONFIRMATION)
        except IntegrityError:
            raise Conflict('A record with this value already exists.')

        logger.info(f"Order {order.order_number} placed by {user.email} at store {store.id} for {total_amount}")
        return order, build_payment_payload(order, store)

    # =============== PAYMENT ===============

    def update_payment_status(self, order_id, actor, payment_status, transaction_id=None, expected_version=None):
        valid_statuses = [choice[0] for choice in Order.PAYMENT_STATUS_CHOICES]
        if payment_status not in valid_statuses:
            raise InvalidState('Valid payment status is required (pending, success, failed).')

        order = self._load(order_id)
        ensure_can(actor, Actions.UPDATE_PAYMENT, order, 'You are not authorized to update this order.')
        self._check_version(order, expected_version)

        fields = ['payment_status', 'order_status']
        normalized_txn = (transaction_id or '').strip().upper()
        if normalized_txn:
            if not re.match(TRANSACTION_ID_REGEX, normalized_txn):
                raise InvalidState('Transaction ID must be 8 to 40 letters or digits.')
            if Order.objects.filter(transaction_id=normalized_txn).exclude(pk=order.pk).exists():
                raise Conflict('This transaction ID is already linked to another order.')
            order.transaction_id = normalized_txn
            fields.append('transaction_id')

        order.payment_status = payment_status
        accepted = payment_status == Order.PAYMENT_SUCCESS and order.order_status == Order.PLACED
        if accepted:
            order.order_status = Order.ACCEPTED

        with transaction.atomic():
            self._save(order, fields)
            if accepted:
                self._publish(order, OrderNotification.STATUS_UPDATE, status=Order.ACCEPTED)

        logger.info(f"Order {order.order_number} payment set to {payment_status} by {actor.email}")
        return order

    # =============== STATUS ===============

    def transition_status(self, order_id, actor, status, expected_version=None):
        """
        Advance the order one step. Returns ``(order, otp)``; otp is only set
        when the order moves to ready.
        """
        order = self._load(order_id)
        ensure_can(actor, Actions.UPDATE_ORDER_STATUS, order, 'You are not authorized to update this order.')
        self._check_version(order, expected_version)

        if not can_transition(order.order_status, status):
            raise InvalidTransition(order.order_status, status)

        if order.payment_status != Order.PAYMENT_SUCCESS:
            raise InvalidState('Order status cannot be updated until payment is verified as successful.')

        if status == Order.PICKED_UP and not order.is_otp_verified:
            raise InvalidState('OTP must be verified before marking as picked up')

        fields = ['order_status']
        otp = None
        if status == Order.READY:
            otp = generate_otp()
            order.otp = otp
            order.otp_expires_at = get_otp_expiry()
            order.is_otp_verified = False
            order.otp_attempts = 0
            order.ready_expires_at = get_ready_expiry()
            fields += ['otp', 'otp_expires_at', 'is_otp_verified', 'otp_attempts', 'ready_expires_at']

        previous = order.order_status
        order.order_status = status

        with transaction.atomic():
            self._save(order, fields)
            self._publish(order, OrderNotification.STATUS_UPDATE, status=status)
            if otp:
                self._publish(
                    order,
                    OrderNotification.PICKUP_OTP,
                    otp=otp,
                    ttl_minutes=settings.CAMPUSBITE['OTP_TTL_MINUTES'],
                )

        logger.info(f"Order {order.order_number} moved {previous} -> {status} by {actor.email}")
        return order, otp

    # =============== PICKUP ===============

    def reissue_otp(self, order_id, actor, expected_version=None):
        """Mint a fresh pickup code for a ready order whose code expired or was locked out."""
        order = self._load(order_id)
        ensure_can(actor, Actions.VERIFY_OTP, order, 'You are not authorized to update this order.')
        self._check_version(order, expected_version)

        if order.order_status != Order.READY:
            raise InvalidState('OTP can only be reissued when order status is "ready".')

        otp = generate_otp()
        order.otp = otp
        order.otp_expires_at = get_otp_expiry()
        order.is_otp_verified = False
        order.otp_attempts = 0
        order.ready_expires_at = get_ready_expiry()

        with transaction.atomic():
            self._save(order, ['otp', 'otp_expires_at', 'is_otp_verified', 'otp_attempts', 'ready_expires_at'])
            self._publish(
                order,
                OrderNotification.PICKUP_OTP,
                otp=otp,
                ttl_minutes=settings.CAMPUSBITE['OTP_TTL_MINUTES'],
            )

        logger.info(f"Pickup OTP reissued for order {order.order_number} by {actor.email}")
        return order, otp

    def verify_otp(self, order_id, actor, otp, expected_version=None):
        order = self._load(order_id)
        ensure_can(actor, Actions.VERIFY_OTP, order, 'You are not authorized to verify OTP for this order.')
        self._check_version(order, expected_version)

        if order.order_status != Order.READY:
            raise InvalidState('OTP can only be verified when order status is "ready".')

        if order.otp_attempts >= settings.CAMPUSBITE['OTP_MAX_ATTEMPTS']:
            raise TooManyOtpAttempts()

        if not validate_otp(order.otp, otp, order.otp_expires_at):
            order.otp_attempts += 1
            self._save(order, ['otp_attempts'])
            logger.info(f"Rejected pickup OTP for order {order.order_number} (attempt {order.otp_attempts})")
            raise InvalidOtp()

        order.is_otp_verified = True
        order.order_status = Order.PICKED_UP
        order.ready_expires_at = None

        with transaction.atomic():
            self._save(order, ['is_otp_verified', 'order_status', 'ready_expires_at'])
            self._publish(order, OrderNotification.STATUS_UPDATE, status=Order.PICKED_UP)

        logger.info(f"Order {order.order_number} picked up")
        return order

    # =============== TIMEOUTS ===============

    def _cancel(self, order, reason, now, extra_fields=()):
        order.order_status = Order.CANCELLED
        order.cancelled_at = now
        order.cancellation_reason = reason
        with transaction.atomic():
            self._save(order, ['order_status', 'cancelled_at', 'cancellation_reason', *extra_fields])
            self._publish(order, OrderNotification.STATUS_UPDATE, status=Order.CANCELLED, reason=reason)

    def cancel_unpaid_orders(self, now=None):
        """Cancel placed orders still awaiting payment after the payment window. Returns the count."""
        now = now or timezone.now()
        cutoff = now - timedelta(minutes=settings.CAMPUSBITE['UNPAID_ORDER_TIMEOUT_MINUTES'])
        stale = Order.objects.select_related('store', 'user').filter(
            order_status=Order.PLACED,
            payment_status=Order.PAYMENT_PENDING,
            created_at__lte=cutoff,
        )

        cancelled = 0
        for order in stale:
            order.payment_status = Order.PAYMENT_FAILED
            try:
                self._cancel(order, Order.PAYMENT_TIMEOUT, now, extra_fields=['payment_status'])
            except Conflict:
                logger.info(f"Skipped payment timeout for order {order.order_number}: changed concurrently")
                continue
            cancelled += 1
            logger.info(f"Order {order.order_number} cancelled after payment timeout")
        return cancelled

    def expire_uncollected_orders(self, now=None):
        """Cancel ready orders not collected before their pickup deadline and record the no-show."""
        now = now or timezone.now()
        stale = Order.objects.select_related('store', 'user').filter(
            order_status=Order.READY,
            is_otp_verified=False,
            ready_expires_at__isnull=False,
            ready_expires_at__lte=now,
        )

        expired = 0
        for order in stale:
            first_no_show = not order.no_show_recorded
            order.no_show_recorded = True
            try:
                with transaction.atomic():
                    self._cancel(order, Order.NO_SHOW_TIMEOUT, now, extra_fields=['no_show_recorded'])
                    if first_no_show:
                        order.user.record_no_show(now)
            except Conflict:
                logger.info(f"Skipped no-show timeout for order {order.order_number}: changed concurrently")
                continue
            if first_no_show:
                logger.info(
                    f"No-show recorded for {order.user.email} on order {order.order_number} "
                    f"(count {order.user.no_show_count}, tier {order.user.trust_tier})"
                )
            expired += 1
        return expired

    def sweep_timeouts(self, now=None):
        """Run both timeout passes. Returns (unpaid_cancelled, no_shows)."""
        now = now or timezone.now()
        return self.cancel_unpaid_orders(now), self.expire_uncollected_orders(now)


def get_order_workflow():
    return OrderWorkflow(notifier=notifications.EmailNotifier())
