from datetime import timedelta
from io import StringIO

from django.core import mail
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from orders.models import Order, OrderNotification
from orders.notifications import EmailNotifier, deliver, deliver_pending, purge_finished
from orders.services import OrderWorkflow
from orders.tests import OrderFixtures


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    def send(self, notification):
        self.calls += 1
        raise ConnectionError('SMTP server unavailable')


class OnCommitDeliveryTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_delivered_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            order, _ = self.place()

        notification = OrderNotification.objects.get(order=order)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(notification.status, OrderNotification.SENT)
        self.assertEqual(notification.attempts, 1)
        self.assertIsNotNone(notification.sent_at)

    def test_nothing_delivered_without_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            order, _ = self.place()

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(OrderNotification.objects.get(order=order).status, OrderNotification.PENDING)

    def test_notifier_failure_does_not_fail_the_order(self):
        self.workflow = OrderWorkflow(notifier=FailingNotifier())
        with self.captureOnCommitCallbacks(execute=True):
            order, _ = self.place()

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())
        notification = OrderNotification.objects.get(order=order)
        self.assertEqual(notification.status, OrderNotification.PENDING)
        self.assertEqual(notification.attempts, 1)
        self.assertEqual(notification.last_error, 'SMTP server unavailable')

    def test_ready_publishes_status_and_otp(self):
        order, otp = self.ready_order()
        kinds = list(
            OrderNotification.objects.filter(order=order).order_by('created_at').values_list('kind', flat=True)
        )

        self.assertEqual(kinds.count(OrderNotification.STATUS_UPDATE), 3)
        self.assertEqual(kinds.count(OrderNotification.PICKUP_OTP), 1)
        pickup = OrderNotification.objects.get(order=order, kind=OrderNotification.PICKUP_OTP)
        self.assertEqual(pickup.payload['otp'], otp)
        self.assertEqual(pickup.payload['ttl_minutes'], 15)


class DeliveryRetryTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.order, _ = self.place()
        self.notification = OrderNotification.objects.get(order=self.order)

    def test_marked_failed_after_max_attempts(self):
        notifier = FailingNotifier()
        for _ in range(5):
            self.assertFalse(deliver(self.notification.pk, notifier))

        self.notification.refresh_from_db()
        self.assertEqual(self.notification.status, OrderNotification.FAILED)
        self.assertEqual(self.notification.attempts, 5)

        # Failed rows are not retried
        self.assertFalse(deliver(self.notification.pk, notifier))
        self.assertEqual(notifier.calls, 5)

    def test_deliver_pending_counts(self):
        self.workflow.update_payment_status(self.order.id, self.owner, Order.PAYMENT_SUCCESS)

        self.assertEqual(deliver_pending(FailingNotifier()), (0, 2))
        self.assertEqual(deliver_pending(self.notifier), (2, 0))
        self.assertEqual(deliver_pending(self.notifier), (0, 0))

    def test_unknown_notification(self):
        self.assertFalse(deliver(999999, self.notifier))


class EmailNotifierTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_send_order_notifications_command(self):
        order, _ = self.place()
        out = StringIO()

        call_command('send_order_notifications', stdout=out)

        self.assertIn('Sent 1 notification(s), 0 failed.', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.subject, f'Order Confirmed - {order.order_number}')
        self.assertEqual(message.to, ['asha@campus.edu'])
        self.assertIn('Masala Dosa', message.body)
        self.assertIn('250.00', message.body)
        html, mimetype = message.alternatives[0]
        self.assertEqual(mimetype, 'text/html')
        self.assertIn(order.order_number, html)

    def test_status_update_email(self):
        order = self.accepted_order()
        OrderNotification.objects.filter(kind=OrderNotification.ORDER_CONFIRMATION).update(
            status=OrderNotification.SENT
        )

        deliver_pending(EmailNotifier())

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, f'Order {order.order_number} - ACCEPTED')
        self.assertIn('payment has been confirmed', mail.outbox[0].body)

    def test_pickup_otp_email(self):
        order, otp = self.ready_order()
        notification = OrderNotification.objects.get(order=order, kind=OrderNotification.PICKUP_OTP)

        self.assertTrue(deliver(notification, EmailNotifier()))

        self.assertEqual(mail.outbox[0].subject, f'Pickup OTP for Order {order.order_number}')
        self.assertIn(otp, mail.outbox[0].body)


class PurgeTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.order, _ = self.place()
        self.old = timezone.now() - timedelta(days=40)

    def aged(self, status):
        notification = OrderNotification.objects.create(
            order=self.order,
            kind=OrderNotification.STATUS_UPDATE,
            recipient='asha@campus.edu',
            payload={'status': 'accepted'},
            status=status,
        )
        OrderNotification.objects.filter(pk=notification.pk).update(updated_at=self.old)
        return notification

    def test_purge_keeps_pending_and_recent_rows(self):
        self.aged(OrderNotification.SENT)
        self.aged(OrderNotification.FAILED)
        pending = self.aged(OrderNotification.PENDING)

        self.assertEqual(purge_finished(30), 2)

        remaining = set(OrderNotification.objects.values_list('status', flat=True))
        self.assertEqual(remaining, {OrderNotification.PENDING})
        self.assertTrue(OrderNotification.objects.filter(pk=pending.pk).exists())
        self.assertEqual(purge_finished(30), 0)

    def test_command_purge_option(self):
        self.aged(OrderNotification.SENT)
        self.aged(OrderNotification.FAILED)
        out = StringIO()

        call_command('send_order_notifications', '--purge-older-than', '30', stdout=out)

        self.assertIn('Sent 1 notification(s), 0 failed.', out.getvalue())
        self.assertIn('Purged 2 notification(s).', out.getvalue())
        confirmation = OrderNotification.objects.get()
        self.assertEqual(confirmation.kind, OrderNotification.ORDER_CONFIRMATION)
        self.assertEqual(confirmation.status, OrderNotification.SENT)

    def test_command_without_purge_option_keeps_history(self):
        self.aged(OrderNotification.SENT)
        out = StringIO()

        call_command('send_order_notifications', stdout=out)

        self.assertNotIn('Purged', out.getvalue())
        self.assertEqual(OrderNotification.objects.count(), 2)
