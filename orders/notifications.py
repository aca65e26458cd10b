"""
Customer notifications for order events.

The workflow records every notification as an ``OrderNotification`` row in the
same transaction as the order change. Rows are delivered right after commit
when ``CAMPUSBITE["NOTIFICATIONS_DELIVER_ON_COMMIT"]`` is on, and by the
``send_order_notifications`` management command, which retries pending rows
until ``CAMPUSBITE["NOTIFICATION_MAX_ATTEMPTS"]`` is reached.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.db import transaction
from django.template.loader import render_to_string
from django.utils import timezone

from .models import Order, OrderNotification

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    Order.ACCEPTED: 'Your order has been accepted by the store and payment has been confirmed.',
    Order.PROCESSING: 'Your order is now being prepared.',
    Order.READY: 'Your order is ready for pickup! Please collect it from the store.',
    Order.PICKED_UP: 'Your order has been picked up. Enjoy your meal!',
    Order.CANCELLED: 'Your order has been cancelled.',
}

STATUS_COLORS = {
    Order.ACCEPTED: '#4CAF50',
    Order.PROCESSING: '#2196F3',
    Order.READY: '#FF9800',
    Order.PICKED_UP: '#8BC34A',
    Order.CANCELLED: '#F44336',
}

CANCELLATION_MESSAGES = {
    Order.PAYMENT_TIMEOUT: 'Your order was cancelled because payment was not completed in time.',
    Order.NO_SHOW_TIMEOUT: 'Your order was cancelled because it was not collected in time.',
}


class EmailNotifier:
    """Sends a notification row as a multipart (text + HTML) e-mail."""

    def subject_for(self, notification):
        payload = notification.payload
        order_number = payload.get('order_number', '')
        if notification.kind == OrderNotification.ORDER_CONFIRMATION:
            return f"Order Confirmed - {order_number}"
        if notification.kind == OrderNotification.PICKUP_OTP:
            return f"Pickup OTP for Order {order_number}"
        status_label = payload.get('status', '').replace('_', ' ').upper()
        return f"Order {order_number} - {status_label}"

    def context_for(self, notification):
        context = dict(notification.payload)
        context['frontend_url'] = settings.CAMPUSBITE.get('FRONTEND_URL', '').rstrip('/')
        if notification.kind == OrderNotification.STATUS_UPDATE:
            status = context.get('status', '')
            context['status_label'] = status.replace('_', ' ')
            context['status_message'] = STATUS_MESSAGES.get(status, 'Your order status has been updated.')
            if context.get('reason') in CANCELLATION_MESSAGES:
                context['status_message'] = CANCELLATION_MESSAGES[context['reason']]
            context['color'] = STATUS_COLORS.get(status, '#FF6B35')
        return context

    def send(self, notification):
        context = self.context_for(notification)
        html = render_to_string(f"orders/emails/{notification.kind}.html", context)
        text = render_to_string(f"orders/emails/{notification.kind}.txt", context)

        with get_connection() as connection:
            message = EmailMultiAlternatives(
                self.subject_for(notification),
                text,
                settings.DEFAULT_FROM_EMAIL,
                [notification.recipient],
                connection=connection,
            )
            message.attach_alternative(html, "text/html")
            message.send(fail_silently=False)


def build_payload(order, kind, **extra):
    payload = {
        'name': order.user.name,
        'order_number': order.order_number,
        'store_name': order.store.name,
    }
    if kind == OrderNotification.ORDER_CONFIRMATION:
        payload['items'] = [
            {'name': item.name, 'quantity': item.quantity, 'total': str(item.total)}
            for item in order.items.all()
        ]
        payload['total_amount'] = str(order.total_amount)
    payload.update(extra)
    return payload


def publish(order, kind, notifier=None, **extra):
    """
    Record a notification for the order's customer.

    Must run inside the transaction that changes the order so the row only
    exists if the change commits.
    """
    notification = OrderNotification.objects.create(
        order=order,
        kind=kind,
        recipient=order.user.email,
        payload=build_payload(order, kind, **extra),
    )

    if notifier is not None and settings.CAMPUSBITE.get('NOTIFICATIONS_DELIVER_ON_COMMIT', True):
        transaction.on_commit(lambda: _deliver_after_commit(notification.pk, notifier))

    return notification


def _deliver_after_commit(notification_id, notifier):
    try:
        deliver(notification_id, notifier)
    except Exception as e:
        # Left pending for send_order_notifications
        logger.error(f"Post-commit delivery of notification {notification_id} failed: {e}")


def deliver(notification, notifier):
    """
    Attempt one delivery. Returns True when sent.

    Notifier errors are logged and recorded on the row, never raised.
    """
    if not isinstance(notification, OrderNotification):
        notification = OrderNotification.objects.filter(pk=notification).first()
        if notification is None:
            return False

    if notification.status != OrderNotification.PENDING:
        return False

    max_attempts = settings.CAMPUSBITE.get('NOTIFICATION_MAX_ATTEMPTS', 5)
    notification.attempts += 1

    try:
        notifier.send(notification)
    except Exception as e:
        logger.error(
            f"Failed to send {notification.kind} notification {notification.pk} "
            f"(attempt {notification.attempts}/{max_attempts}): {e}"
        )
        notification.last_error = str(e)[:1000]
        if notification.attempts >= max_attempts:
            notification.status = OrderNotification.FAILED
        notification.save(update_fields=['attempts', 'last_error', 'status', 'updated_at'])
        return False

    notification.status = OrderNotification.SENT
    notification.sent_at = timezone.now()
    notification.last_error = None
    notification.save(update_fields=['attempts', 'last_error', 'status', 'sent_at', 'updated_at'])
    logger.info(f"Sent {notification.kind} notification {notification.pk} to {notification.recipient}")
    return True


def deliver_pending(notifier, limit=100):
    """Deliver queued notifications oldest first. Returns (sent, failed) counts."""
    pending = list(
        OrderNotification.objects.filter(status=OrderNotification.PENDING).order_by('created_at')[:limit]
    )
    sent = failed = 0
    for notification in pending:
        if deliver(notification, notifier):
            sent += 1
        else:
            failed += 1
    return sent, failed


def purge_finished(older_than_days, now=None):
    """Delete sent and failed rows untouched for ``older_than_days``. Returns the count."""
    if older_than_days < 0:
        raise ValueError('older_than_days must not be negative')
    cutoff = (now or timezone.now()) - timedelta(days=older_than_days)
    deleted, _ = OrderNotification.objects.filter(
        status__in=[OrderNotification.SENT, OrderNotification.FAILED],
        updated_at__lt=cutoff,
    ).delete()
    return deleted
