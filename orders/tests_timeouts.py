from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from authentication.exceptions import Forbidden, InvalidTransition
from orders.models import Order, OrderNotification
from orders.notifications import EmailNotifier, deliver
from orders.tests import OrderFixtures


class UnpaidTimeoutTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.t0 = timezone.now()
        with mock.patch('django.utils.timezone.now', return_value=self.t0):
            self.order, _ = self.place()

    def test_cancelled_once_payment_window_passes(self):
        self.assertEqual(self.workflow.cancel_unpaid_orders(self.t0 + timedelta(minutes=7)), 0)
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.PLACED)

        swept_at = self.t0 + timedelta(minutes=8)
        self.assertEqual(self.workflow.cancel_unpaid_orders(swept_at), 1)

        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(self.order.cancellation_reason, Order.PAYMENT_TIMEOUT)
        self.assertEqual(self.order.cancelled_at, swept_at)
        self.assertEqual(self.order.version, 2)

        update = OrderNotification.objects.get(order=self.order, kind=OrderNotification.STATUS_UPDATE)
        self.assertEqual(update.payload['status'], Order.CANCELLED)
        self.assertEqual(update.payload['reason'], Order.PAYMENT_TIMEOUT)

    def test_paid_order_is_left_alone(self):
        self.workflow.update_payment_status(self.order.id, self.owner, Order.PAYMENT_SUCCESS)

        self.assertEqual(self.workflow.cancel_unpaid_orders(self.t0 + timedelta(hours=2)), 0)
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.ACCEPTED)

    def test_cancelled_order_cannot_advance(self):
        self.workflow.cancel_unpaid_orders(self.t0 + timedelta(minutes=30))

        with self.assertRaises(InvalidTransition):
            self.workflow.transition_status(self.order.id, self.owner, Order.PROCESSING)

    def test_cancellation_email_explains_reason(self):
        self.workflow.cancel_unpaid_orders(self.t0 + timedelta(minutes=30))
        update = OrderNotification.objects.get(order=self.order, kind=OrderNotification.STATUS_UPDATE)

        self.assertTrue(deliver(update, EmailNotifier()))

        self.assertEqual(mail.outbox[0].subject, f'Order {self.order.order_number} - CANCELLED')
        self.assertIn('payment was not completed in time', mail.outbox[0].body)


class NoShowTimeoutTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def uncollected(self):
        order, _ = self.ready_order()
        order.refresh_from_db()
        return order

    def test_uncollected_order_is_cancelled_and_counted(self):
        order = self.uncollected()
        deadline = order.ready_expires_at

        self.assertEqual(self.workflow.expire_uncollected_orders(deadline - timedelta(seconds=1)), 0)
        self.assertEqual(self.workflow.expire_uncollected_orders(deadline), 1)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.CANCELLED)
        self.assertEqual(order.cancellation_reason, Order.NO_SHOW_TIMEOUT)
        self.assertTrue(order.no_show_recorded)

        self.student.refresh_from_db()
        self.assertEqual(self.student.no_show_count, 1)
        self.assertEqual(self.student.trust_tier, 'good')
        self.assertEqual(self.student.last_no_show_at, deadline)
        self.assertFalse(self.student.is_ordering_restricted)

    def test_collected_order_is_left_alone(self):
        order, otp = self.ready_order()
        self.workflow.verify_otp(order.id, self.owner, otp)

        self.assertEqual(self.workflow.expire_uncollected_orders(timezone.now() + timedelta(hours=1)), 0)
        self.student.refresh_from_db()
        self.assertEqual(self.student.no_show_count, 0)

    def test_penalty_applied_once_per_order(self):
        order = self.uncollected()
        Order.objects.filter(pk=order.pk).update(no_show_recorded=True)

        self.assertEqual(self.workflow.expire_uncollected_orders(timezone.now() + timedelta(hours=1)), 1)
        self.student.refresh_from_db()
        self.assertEqual(self.student.no_show_count, 0)

    def test_repeated_no_shows_restrict_ordering(self):
        tiers = []
        for _ in range(3):
            self.uncollected()
            swept_at = timezone.now() + timedelta(minutes=21)
            self.workflow.expire_uncollected_orders(swept_at)
            self.student.refresh_from_db()
            tiers.append(self.student.trust_tier)

        self.assertEqual(tiers, ['good', 'watch', 'restricted'])
        self.assertEqual(self.student.no_show_count, 3)
        self.assertEqual(self.student.ordering_restricted_until, swept_at + timedelta(days=14))
        self.assertTrue(self.student.is_ordering_restricted)

        with self.assertRaisesMessage(Forbidden, 'Ordering is temporarily restricted due to repeated no-shows'):
            self.place()

    def test_restricted_customer_gets_403_over_http(self):
        self.student.ordering_restricted_until = timezone.now() + timedelta(days=14)
        self.student.trust_tier = 'restricted'
        self.student.save()
        client = APIClient()
        client.force_authenticate(user=self.student)

        response = client.post(reverse('order-list'), {
            'storeId': str(self.store.id),
            'items': [{'menuItemId': str(self.dosa.id), 'quantity': 1}],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(response.data['success'])

    def test_two_no_shows_in_one_sweep_both_count(self):
        self.uncollected()
        self.uncollected()

        self.assertEqual(self.workflow.expire_uncollected_orders(timezone.now() + timedelta(minutes=21)), 2)
        self.student.refresh_from_db()
        self.assertEqual(self.student.no_show_count, 2)
        self.assertEqual(self.student.trust_tier, 'watch')


class SweepCommandTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_sweep_orders_command(self):
        unpaid, _ = self.place()
        Order.objects.filter(pk=unpaid.pk).update(created_at=timezone.now() - timedelta(minutes=30))
        uncollected, _ = self.ready_order()
        Order.objects.filter(pk=uncollected.pk).update(ready_expires_at=timezone.now() - timedelta(minutes=1))
        fresh, _ = self.place()
        out = StringIO()

        call_command('sweep_orders', stdout=out)

        self.assertIn('Cancelled 1 unpaid order(s) and 1 uncollected order(s).', out.getvalue())
        statuses = dict(Order.objects.values_list('pk', 'order_status'))
        self.assertEqual(statuses[unpaid.pk], Order.CANCELLED)
        self.assertEqual(statuses[uncollected.pk], Order.CANCELLED)
        self.assertEqual(statuses[fresh.pk], Order.PLACED)
        self.student.refresh_from_db()
        self.assertEqual(self.student.no_show_count, 1)
