from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from authentication.exceptions import InvalidOtp, InvalidState, TooManyOtpAttempts
from orders.models import Order, OrderNotification
from orders.otp import generate_otp, get_otp_expiry, validate_otp
from orders.tests import OrderFixtures

T0 = datetime(2025, 1, 14, 12, 0, 0, tzinfo=dt_timezone.utc)
WRONG_OTP = '000000'


class OtpHelpersTestCase(SimpleTestCase):
    def test_generate_otp_is_six_digits(self):
        for _ in range(200):
            otp = generate_otp()
            self.assertRegex(otp, r'^\d{6}$')
            self.assertTrue(100000 <= int(otp) <= 999999)

    def test_expiry_uses_configured_ttl(self):
        self.assertEqual(get_otp_expiry(T0), T0 + timedelta(minutes=15))

    @override_settings(CAMPUSBITE={'OTP_TTL_MINUTES': 5})
    def test_expiry_ttl_override(self):
        self.assertEqual(get_otp_expiry(T0), T0 + timedelta(minutes=5))

    def test_validate_otp(self):
        expires = T0 + timedelta(minutes=15)

        self.assertTrue(validate_otp('123456', '123456', expires, now=T0))
        self.assertTrue(validate_otp('123456', '123456', expires, now=expires))
        self.assertFalse(validate_otp('123456', '123456', expires, now=expires + timedelta(seconds=1)))
        self.assertFalse(validate_otp('123456', '654321', expires, now=T0))
        self.assertFalse(validate_otp('123456', ' 123456', expires, now=T0))
        self.assertFalse(validate_otp(None, '123456', expires, now=T0))
        self.assertFalse(validate_otp('123456', '', expires, now=T0))
        self.assertFalse(validate_otp('123456', '123456', None, now=T0))


class PickupOtpTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def ready_at(self, when):
        with mock.patch('django.utils.timezone.now', return_value=when):
            return self.ready_order()

    def test_ready_sets_expiry_fifteen_minutes_out(self):
        order, otp = self.ready_at(T0)

        order.refresh_from_db()
        self.assertEqual(order.otp, otp)
        self.assertEqual(order.otp_expires_at, T0 + timedelta(minutes=15))
        self.assertFalse(order.is_otp_verified)

    def test_verify_just_before_expiry(self):
        order, otp = self.ready_at(T0)

        with mock.patch('django.utils.timezone.now', return_value=T0 + timedelta(minutes=14, seconds=59)):
            order = self.workflow.verify_otp(order.id, self.owner, otp)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.PICKED_UP)
        self.assertTrue(order.is_otp_verified)

    def test_verify_after_expiry_fails(self):
        order, otp = self.ready_at(T0)

        with mock.patch('django.utils.timezone.now', return_value=T0 + timedelta(minutes=15, seconds=1)):
            with self.assertRaises(InvalidOtp):
                self.workflow.verify_otp(order.id, self.owner, otp)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.READY)
        self.assertFalse(order.is_otp_verified)
        self.assertEqual(order.otp_attempts, 1)

    def test_wrong_otp_keeps_order_ready(self):
        order, _ = self.ready_order()
        with self.assertRaisesMessage(InvalidOtp, 'Invalid or expired OTP.'):
            self.workflow.verify_otp(order.id, self.owner, WRONG_OTP)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.READY)

    def test_verify_requires_ready_order(self):
        order = self.accepted_order()
        with self.assertRaisesMessage(InvalidState, 'OTP can only be verified when order status is "ready".'):
            self.workflow.verify_otp(order.id, self.owner, '123456')

    def test_too_many_attempts_then_reissue(self):
        order, otp = self.ready_order()
        for _ in range(5):
            with self.assertRaises(InvalidOtp):
                self.workflow.verify_otp(order.id, self.owner, WRONG_OTP)

        with self.assertRaises(TooManyOtpAttempts):
            self.workflow.verify_otp(order.id, self.owner, otp)

        order, new_otp = self.workflow.reissue_otp(order.id, self.owner)
        order.refresh_from_db()
        self.assertEqual(order.otp_attempts, 0)
        self.assertEqual(order.otp, new_otp)
        self.assertEqual(
            OrderNotification.objects.filter(order=order, kind=OrderNotification.PICKUP_OTP).count(), 2
        )

        order = self.workflow.verify_otp(order.id, self.owner, new_otp)
        self.assertEqual(order.order_status, Order.PICKED_UP)

    def test_reissue_requires_ready_order(self):
        order = self.accepted_order()
        with self.assertRaises(InvalidState):
            self.workflow.reissue_otp(order.id, self.owner)

    def test_verify_publishes_pickup_update(self):
        order, otp = self.ready_order()
        self.workflow.verify_otp(order.id, self.owner, otp)

        statuses = [
            n.payload['status']
            for n in OrderNotification.objects.filter(order=order, kind=OrderNotification.STATUS_UPDATE)
        ]
        self.assertIn(Order.PICKED_UP, statuses)


class PickupOtpAPITestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.client = APIClient()
        self.client.force_authenticate(user=self.owner)

    def test_lockout_returns_429(self):
        order, _ = self.ready_order()
        url = reverse('order-verify-otp', args=[order.id])
        for _ in range(5):
            response = self.client.post(url, {'otp': WRONG_OTP}, format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(url, {'otp': WRONG_OTP}, format='json')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertFalse(response.data['success'])

    def test_reissue_endpoint(self):
        order, old_otp = self.ready_order()
        response = self.client.post(reverse('order-reissue-otp', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertRegex(response.data['data']['otp'], r'^\d{6}$')
        order.refresh_from_db()
        self.assertEqual(order.otp, response.data['data']['otp'])

    def test_other_store_cannot_verify(self):
        order, otp = self.ready_order()
        self.client.force_authenticate(user=self.other_owner)
        response = self.client.post(reverse('order-verify-otp', args=[order.id]), {'otp': otp}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.READY)

    def test_numeric_otp_is_rejected(self):
        order, otp = self.ready_order()
        response = self.client.post(reverse('order-verify-otp', args=[order.id]), {'otp': int(otp)}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Validation error')
        self.assertIn('otp', response.data['errors'])
        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.READY)
        self.assertEqual(order.otp_attempts, 0)


class PickupDeadlineTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_ready_sets_pickup_deadline(self):
        with mock.patch('django.utils.timezone.now', return_value=T0):
            order, _ = self.ready_order()

        order.refresh_from_db()
        self.assertEqual(order.ready_expires_at, T0 + timedelta(minutes=20))

    def test_reissue_extends_deadline(self):
        with mock.patch('django.utils.timezone.now', return_value=T0):
            order, _ = self.ready_order()
        later = T0 + timedelta(minutes=10)
        with mock.patch('django.utils.timezone.now', return_value=later):
            self.workflow.reissue_otp(order.id, self.owner)

        order.refresh_from_db()
        self.assertEqual(order.ready_expires_at, later + timedelta(minutes=20))

    def test_pickup_clears_deadline(self):
        order, otp = self.ready_order()
        order = self.workflow.verify_otp(order.id, self.owner, otp)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.PICKED_UP)
        self.assertIsNone(order.ready_expires_at)
