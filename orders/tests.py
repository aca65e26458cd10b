import re
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from authentication.exceptions import (
    Conflict, Forbidden, InvalidState, InvalidTransition, NotFound, PreconditionFailed,
)
from authentication.models import CustomUser, Store
from inventory.models import MenuItem
from orders.models import Order, OrderItem, OrderNotification
from orders.services import OrderWorkflow, can_transition

PASSWORD = 'SecurePass123'


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)


class OrderFixtures:
    """Shared campus data: one customer, two stores with their owners."""

    def create_fixtures(self):
        self.student = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001',
        )
        self.owner = CustomUser.objects.create_user(
            email='canteen@campus.edu', password=PASSWORD, name='Canteen Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-1', phone_number='9876543210',
        )
        self.store = Store.objects.create(name='Main Canteen', upi_id='MainCanteen@okaxis', owner=self.owner)

        self.other_owner = CustomUser.objects.create_user(
            email='juice@campus.edu', password=PASSWORD, name='Juice Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-2', phone_number='9876543211',
        )
        self.other_store = Store.objects.create(name='Juice Bar', upi_id='juicebar@okicici', owner=self.other_owner)

        self.dosa = MenuItem.objects.create(
            store=self.store, name='Masala Dosa', price=Decimal('100.00'), category='South Indian'
        )
        self.coffee = MenuItem.objects.create(
            store=self.store, name='Filter Coffee', price=Decimal('50.00'), category='Beverages'
        )
        self.juice = MenuItem.objects.create(
            store=self.other_store, name='Mango Juice', price=Decimal('60.00'), category='Beverages'
        )

        self.notifier = RecordingNotifier()
        self.workflow = OrderWorkflow(notifier=self.notifier)

    def place(self, items=None, **kwargs):
        items = items or [
            {'menuItemId': self.dosa.id, 'quantity': 2},
            {'menuItemId': self.coffee.id, 'quantity': 1},
        ]
        return self.workflow.place_order(self.student, self.store.id, items, **kwargs)

    def accepted_order(self):
        order, _ = self.place()
        return self.workflow.update_payment_status(order.id, self.owner, Order.PAYMENT_SUCCESS)

    def ready_order(self):
        order = self.accepted_order()
        self.workflow.transition_status(order.id, self.owner, Order.PROCESSING)
        return self.workflow.transition_status(order.id, self.owner, Order.READY)


class PlaceOrderTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_total_is_sum_of_price_times_quantity(self):
        order, payment = self.place()

        self.assertEqual(order.total_amount, Decimal('250.00'))
        self.assertEqual(order.order_status, Order.PLACED)
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(payment['amount'], '250.00')
        self.assertEqual(payment['storeUpiId'], 'maincanteen@okaxis')
        self.assertEqual(payment['paymentReference'], order.payment_reference)
        self.assertTrue(payment['upiLink'].startswith('upi://pay?pa=maincanteen%40okaxis'))
        self.assertEqual(set(payment['upiAppLinks']), {'generic', 'gpay', 'phonepe', 'paytm', 'bhim'})

    def test_order_number_and_payment_reference_format(self):
        order, _ = self.place()
        today = timezone.localtime().strftime('%Y%m%d')

        self.assertRegex(order.order_number, rf'^CB-{today}-[0-9A-F]{{4}}$')
        self.assertRegex(order.payment_reference, r'^CBPAY[0-9A-F]{10}$')

    def test_items_are_snapshotted(self):
        order, _ = self.place()

        self.dosa.price = Decimal('140.00')
        self.dosa.name = 'Ghee Masala Dosa'
        self.dosa.save()

        order.refresh_from_db()
        first = order.items.first()
        self.assertEqual(order.total_amount, Decimal('250.00'))
        self.assertEqual(first.name, 'Masala Dosa')
        self.assertEqual(first.price, Decimal('100.00'))
        self.assertEqual(first.total, Decimal('200.00'))

    def test_invalid_quantity_defaults_to_one(self):
        order, _ = self.place([
            {'menuItemId': self.dosa.id, 'quantity': 'abc'},
            {'menuItemId': self.coffee.id, 'quantity': 0},
        ])
        self.assertEqual([item.quantity for item in order.items.all()], [1, 1])
        self.assertEqual(order.total_amount, Decimal('150.00'))

    def test_quantity_above_cap_is_rejected(self):
        with self.assertRaisesMessage(InvalidState, 'Quantity for "Masala Dosa" cannot exceed 1000.'):
            self.place([{'menuItemId': self.dosa.id, 'quantity': 1000000}])
        self.assertFalse(Order.objects.exists())

        order, _ = self.place([{'menuItemId': self.dosa.id, 'quantity': 1000}])
        self.assertEqual(order.total_amount, Decimal('100000.00'))

    def test_total_beyond_storable_amount_is_rejected(self):
        feast = MenuItem.objects.create(store=self.store, name='Wedding Feast', price=Decimal('99999999.00'))

        with self.assertRaisesMessage(InvalidState, 'Order total exceeds the maximum allowed amount.'):
            self.place([{'menuItemId': feast.id, 'quantity': 2}])
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderNotification.objects.exists())

    def test_order_number_collision_is_a_conflict(self):
        existing, _ = self.place()

        with mock.patch('orders.services.generate_order_number', return_value=existing.order_number):
            with self.assertRaisesMessage(Conflict, 'A record with this value already exists.'):
                self.place()

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.count(), 2)
        self.assertEqual(OrderNotification.objects.count(), 1)

    def test_missing_store(self):
        with self.assertRaises(NotFound):
            self.workflow.place_order(
                self.student, '00000000-0000-0000-0000-000000000000', [{'menuItemId': self.dosa.id}]
            )

    def test_inactive_store(self):
        self.store.is_active = False
        self.store.save()
        with self.assertRaises(InvalidState):
            self.place()

    def test_item_from_another_store_is_rejected(self):
        with self.assertRaisesMessage(InvalidState, 'Mango Juice'):
            self.place([{'menuItemId': self.juice.id, 'quantity': 1}])

    def test_unavailable_item_is_rejected(self):
        self.coffee.is_available = False
        self.coffee.save()
        with self.assertRaisesMessage(InvalidState, 'Filter Coffee'):
            self.place()

    def test_unknown_item_is_rejected(self):
        with self.assertRaisesMessage(InvalidState, 'One or more items not found.'):
            self.place([{'menuItemId': '11111111-1111-1111-1111-111111111111', 'quantity': 1}])

    def test_restricted_customer_cannot_order(self):
        self.student.ordering_restricted_until = timezone.now() + timedelta(days=3)
        self.student.save()
        with self.assertRaises(Forbidden):
            self.place()

    def test_confirmation_notification_is_queued(self):
        order, _ = self.place()
        notification = OrderNotification.objects.get(order=order)

        self.assertEqual(notification.kind, OrderNotification.ORDER_CONFIRMATION)
        self.assertEqual(notification.recipient, 'asha@campus.edu')
        self.assertEqual(notification.payload['total_amount'], '250.00')
        self.assertEqual(len(notification.payload['items']), 2)


class StatusTransitionTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_transition_table(self):
        self.assertTrue(can_transition('accepted', 'processing'))
        self.assertTrue(can_transition('processing', 'ready'))
        self.assertTrue(can_transition('ready', 'picked_up'))
        self.assertFalse(can_transition('placed', 'accepted'))
        self.assertFalse(can_transition('placed', 'processing'))
        self.assertFalse(can_transition('ready', 'ready'))
        self.assertFalse(can_transition('ready', 'processing'))
        self.assertFalse(can_transition('picked_up', 'ready'))
        self.assertFalse(can_transition('accepted', 'cancelled'))

    def test_payment_success_accepts_placed_order(self):
        order, _ = self.place()
        order = self.workflow.update_payment_status(order.id, self.owner, Order.PAYMENT_SUCCESS)

        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_SUCCESS)
        self.assertEqual(order.order_status, Order.ACCEPTED)
        self.assertEqual(order.version, 2)

    def test_repeated_payment_success_does_not_renotify(self):
        order = self.accepted_order()
        self.workflow.transition_status(order.id, self.owner, Order.PROCESSING)
        updates = OrderNotification.objects.filter(order=order, kind=OrderNotification.STATUS_UPDATE)
        self.assertEqual(updates.count(), 2)

        order = self.workflow.update_payment_status(order.id, self.owner, Order.PAYMENT_SUCCESS)

        self.assertEqual(order.order_status, Order.PROCESSING)
        self.assertEqual(updates.count(), 2)
        self.assertEqual(
            [n.payload['status'] for n in updates.order_by('id')],
            [Order.ACCEPTED, Order.PROCESSING],
        )

    def test_placed_to_processing_is_rejected(self):
        order, _ = self.place()
        with self.assertRaisesMessage(InvalidTransition, 'Cannot transition from "placed" to "processing".'):
            self.workflow.transition_status(order.id, self.owner, Order.PROCESSING)

    def test_repeated_ready_is_rejected(self):
        order = self.ready_order()[0]
        with self.assertRaises(InvalidTransition):
            self.workflow.transition_status(order.id, self.owner, Order.READY)

    def test_unknown_status_is_rejected(self):
        order = self.accepted_order()
        with self.assertRaises(InvalidTransition):
            self.workflow.transition_status(order.id, self.owner, 'delivered')

    def test_ready_mints_otp(self):
        order, otp = self.ready_order()

        order.refresh_from_db()
        self.assertRegex(otp, r'^\d{6}$')
        self.assertEqual(order.otp, otp)
        self.assertFalse(order.is_otp_verified)
        self.assertEqual(order.otp_attempts, 0)
        kinds = list(OrderNotification.objects.filter(order=order).values_list('kind', flat=True))
        self.assertIn(OrderNotification.PICKUP_OTP, kinds)

    def test_pickup_requires_verified_otp(self):
        order = self.ready_order()[0]
        with self.assertRaisesMessage(InvalidState, 'OTP must be verified before marking as picked up'):
            self.workflow.transition_status(order.id, self.owner, Order.PICKED_UP)

    def test_unpaid_order_cannot_advance(self):
        order = self.accepted_order()
        self.workflow.update_payment_status(order.id, self.owner, Order.PAYMENT_PENDING)
        with self.assertRaises(InvalidState):
            self.workflow.transition_status(order.id, self.owner, Order.PROCESSING)

    def test_other_store_owner_is_forbidden(self):
        order = self.accepted_order()
        with self.assertRaises(Forbidden):
            self.workflow.transition_status(order.id, self.other_owner, Order.PROCESSING)
        with self.assertRaises(Forbidden):
            self.workflow.update_payment_status(order.id, self.other_owner, Order.PAYMENT_FAILED)

    def test_customer_cannot_advance_own_order(self):
        order = self.accepted_order()
        with self.assertRaises(Forbidden):
            self.workflow.transition_status(order.id, self.student, Order.PROCESSING)

    def test_missing_order(self):
        with self.assertRaises(NotFound):
            self.workflow.transition_status('00000000-0000-0000-0000-000000000000', self.owner, Order.READY)


class ConcurrencyTestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        order = self.accepted_order()
        self.workflow.transition_status(order.id, self.owner, Order.PROCESSING)
        self.order_id = order.id

    def test_second_concurrent_ready_is_rejected(self):
        first = Order.objects.get(pk=self.order_id)
        second = Order.objects.get(pk=self.order_id)

        _, winning_otp = self.workflow.transition_status(first, self.owner, Order.READY)
        with self.assertRaises(Conflict):
            self.workflow.transition_status(second, self.owner, Order.READY)

        stored = Order.objects.get(pk=self.order_id)
        self.assertEqual(stored.otp, winning_otp)
        self.assertEqual(stored.order_status, Order.READY)

    def test_stale_expected_version(self):
        order = Order.objects.get(pk=self.order_id)
        with self.assertRaises(PreconditionFailed):
            self.workflow.transition_status(order.id, self.owner, Order.READY, expected_version=order.version - 1)


class OrderAPITestCase(OrderFixtures, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.client = APIClient()

    def test_create_order(self):
        self.client.force_authenticate(user=self.student)
        url = reverse('order-list')
        data = {
            'storeId': str(self.store.id),
            'items': [
                {'menuItemId': str(self.dosa.id), 'quantity': 2},
                {'menuItemId': str(self.coffee.id), 'quantity': 1},
            ],
            'specialInstructions': '  less sugar  ',
        }
        response = self.client.post(url, data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['data']['order']['total_amount'], '250.00')
        self.assertEqual(response.data['data']['order']['special_instructions'], 'less sugar')
        self.assertTrue(response.data['data']['payment']['upiLink'].startswith('upi://pay?'))
        self.assertIn('ETag', response)

    def test_create_order_validation_envelope(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(reverse('order-list'), {'storeId': str(self.store.id), 'items': []}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['message'], 'Validation error')
        self.assertIn('items', response.data['errors'])

    def test_oversized_quantity_is_a_client_error(self):
        self.client.force_authenticate(user=self.student)
        data = {
            'storeId': str(self.store.id),
            'items': [{'menuItemId': str(self.dosa.id), 'quantity': '100000000000000000000'}],
        }
        response = self.client.post(reverse('order-list'), data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {
            'success': False,
            'message': 'Quantity for "Masala Dosa" cannot exceed 1000.',
        })
        self.assertFalse(Order.objects.exists())

    def test_order_number_collision_returns_409(self):
        existing, _ = self.place()
        self.client.force_authenticate(user=self.student)
        data = {'storeId': str(self.store.id), 'items': [{'menuItemId': str(self.dosa.id), 'quantity': 1}]}

        with mock.patch('orders.services.generate_order_number', return_value=existing.order_number):
            response = self.client.post(reverse('order-list'), data, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {'success': False, 'message': 'A record with this value already exists.'})
        self.assertEqual(Order.objects.count(), 1)

    def test_unauthenticated_request(self):
        response = self.client.get(reverse('order-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])

    def test_list_orders_for_customer_and_store(self):
        self.place()
        self.workflow.place_order(self.student, self.other_store.id, [{'menuItemId': self.juice.id}])

        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse('order-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 2)

        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('order-list'))
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['data'][0]['store_name'], 'Main Canteen')

    def test_list_orders_status_filter(self):
        self.place()
        self.accepted_order()

        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('order-list'), {'status': 'accepted,processing'})
        self.assertEqual(response.data['pagination']['total'], 1)

    def test_customer_cannot_view_someone_elses_order(self):
        order, _ = self.place()
        other = CustomUser.objects.create_user(
            email='ravi@campus.edu', password=PASSWORD, name='Ravi', role=CustomUser.ROLE_FACULTY, employee_id='F-9'
        )
        self.client.force_authenticate(user=other)
        response = self.client.get(reverse('order-detail', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'You are not authorized to view this order.')

    def test_payment_then_status_flow(self):
        order, _ = self.place()
        self.client.force_authenticate(user=self.owner)

        response = self.client.patch(
            reverse('order-payment-status', args=[order.id]),
            {'paymentStatus': 'success', 'transactionId': 'upi12345678'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['order']['order_status'], 'accepted')
        self.assertEqual(response.data['data']['order']['transaction_id'], 'UPI12345678')

        self.client.patch(reverse('order-status', args=[order.id]), {'status': 'processing'}, format='json')
        response = self.client.patch(reverse('order-status', args=[order.id]), {'status': 'ready'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertRegex(response.data['data']['otp'], r'^\d{6}$')

        response = self.client.post(
            reverse('order-verify-otp', args=[order.id]), {'otp': response.data['data']['otp']}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['order']['order_status'], 'picked_up')
        self.assertTrue(response.data['data']['order']['is_otp_verified'])

    def test_invalid_transition_envelope(self):
        order, _ = self.place()
        self.client.force_authenticate(user=self.owner)
        response = self.client.patch(reverse('order-status', args=[order.id]), {'status': 'processing'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {
            'success': False,
            'message': 'Cannot transition from "placed" to "processing".',
        })

    def test_customer_cannot_update_status(self):
        order = self.accepted_order()
        self.client.force_authenticate(user=self.student)
        response = self.client.patch(reverse('order-status', args=[order.id]), {'status': 'processing'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_stale_if_match_is_rejected(self):
        order = self.accepted_order()
        stale_etag = f'"{order.id}-{order.version - 1}"'
        self.client.force_authenticate(user=self.owner)

        response = self.client.patch(
            reverse('order-status', args=[order.id]), {'status': 'processing'},
            format='json', HTTP_IF_MATCH=stale_etag,
        )
        self.assertEqual(response.status_code, status.HTTP_412_PRECONDITION_FAILED)

        response = self.client.patch(
            reverse('order-status', args=[order.id]), {'status': 'processing'},
            format='json', HTTP_IF_MATCH=order.etag,
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['ETag'], f'"{order.id}-{order.version + 1}"')

    def test_pickup_otp_visible_only_to_customer(self):
        order, otp = self.ready_order()

        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse('order-detail', args=[order.id]))
        self.assertEqual(response.data['data']['order']['pickup_otp'], otp)

        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('order-detail', args=[order.id]))
        self.assertIsNone(response.data['data']['order']['pickup_otp'])

    def test_poll_status(self):
        order, _ = self.place()
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse('order-poll-status', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            set(response.data['data']),
            {'id', 'order_number', 'payment_status', 'order_status', 'updated_at'},
        )
        self.assertEqual(response.data['data']['order_status'], 'placed')

    def test_missing_order_envelope(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse('order-detail', args=['00000000-0000-0000-0000-000000000000']))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data, {'success': False, 'message': 'Order not found.'})

    def test_order_number_format_in_response(self):
        order, _ = self.place()
        self.assertTrue(re.match(r'^CB-\d{8}-[0-9A-F]{4}$', order.order_number))
