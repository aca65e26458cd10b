from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from unittest import mock
from urllib.parse import parse_qs, urlsplit

from django.test import SimpleTestCase, override_settings

from authentication.exceptions import Conflict, InvalidState
from orders.payments import format_amount, generate_upi_link, get_upi_app_links, is_valid_upi_id
from orders.utils import (
    generate_order_number, generate_payment_reference, generate_unique_payment_reference,
    parse_quantity, round_money,
)


class UpiLinkTestCase(SimpleTestCase):
    def test_link_fields(self):
        link = generate_upi_link('MainCanteen@OKAXIS', 'Main Canteen', Decimal('250'), 'CBPAY0123456789')
        self.assertTrue(link.startswith('upi://pay?'))

        params = parse_qs(urlsplit(link).query)
        self.assertEqual(params['pa'], ['maincanteen@okaxis'])
        self.assertEqual(params['pn'], ['Main Canteen'])
        self.assertEqual(params['am'], ['250.00'])
        self.assertEqual(params['cu'], ['INR'])
        self.assertEqual(params['tr'], ['CBPAY0123456789'])
        self.assertEqual(params['tn'], ['CampusBite Order CBPAY0123456789'])

    def test_link_is_url_encoded(self):
        link = generate_upi_link('store@ybl', 'Chai & Co', '20', 'REF1')
        self.assertIn('pa=store%40ybl', link)
        self.assertIn('pn=Chai+%26+Co', link)

    def test_reference_is_truncated(self):
        link = generate_upi_link('store@ybl', 'Shop', '10', 'R' * 50)
        self.assertEqual(parse_qs(urlsplit(link).query)['tr'], ['R' * 35])

    def test_default_reference_and_payee(self):
        link = generate_upi_link('store@ybl', '', '10', '')
        params = parse_qs(urlsplit(link).query)
        self.assertEqual(params['tr'], ['CBPAYMENT'])
        self.assertEqual(params['pn'], ['CampusBite Store'])

    def test_invalid_upi_id(self):
        with self.assertRaisesMessage(InvalidState, 'Store UPI ID is invalid. Please contact the store.'):
            generate_upi_link('not-a-upi-id', 'Shop', '10', 'REF')

    def test_invalid_amount(self):
        for amount in (0, '-5', 'abc', None):
            with self.assertRaisesMessage(InvalidState, 'Invalid payment amount.'):
                generate_upi_link('store@ybl', 'Shop', amount, 'REF')

    def test_app_links(self):
        link = generate_upi_link('store@ybl', 'Shop', '10', 'REF')
        links = get_upi_app_links(link)

        self.assertEqual(links['generic'], link)
        self.assertEqual(links['bhim'], link)
        query = link[len('upi://pay?'):]
        self.assertEqual(links['gpay'], 'tez://upi/pay?' + query)
        self.assertEqual(links['phonepe'], 'phonepe://pay?' + query)
        self.assertEqual(links['paytm'], 'paytmmp://pay?' + query)

    def test_upi_id_validation(self):
        self.assertTrue(is_valid_upi_id('canteen.main@okaxis'))
        self.assertFalse(is_valid_upi_id('a@1'))
        self.assertFalse(is_valid_upi_id(''))
        self.assertFalse(is_valid_upi_id(None))

    def test_format_amount(self):
        self.assertEqual(format_amount('12.345'), '12.35')
        self.assertEqual(format_amount(Decimal('0.01')), '0.01')
        self.assertIsNone(format_amount('0'))
        self.assertIsNone(format_amount('NaN'))


class OrderUtilsTestCase(SimpleTestCase):
    def test_parse_quantity(self):
        self.assertEqual(parse_quantity(3), 3)
        self.assertEqual(parse_quantity('4'), 4)
        self.assertEqual(parse_quantity('2abc'), 2)
        self.assertEqual(parse_quantity('abc'), 1)
        self.assertEqual(parse_quantity(0), 1)
        self.assertEqual(parse_quantity(-3), 1)
        self.assertEqual(parse_quantity(None), 1)
        self.assertEqual(parse_quantity(True), 1)

    def test_round_money(self):
        self.assertEqual(round_money('10.005'), Decimal('10.01'))
        self.assertEqual(round_money(Decimal('99.994')), Decimal('99.99'))

    @override_settings(TIME_ZONE='Asia/Kolkata')
    def test_order_number_uses_local_date(self):
        # 20:00 UTC is already the next day in Asia/Kolkata
        now = datetime(2025, 1, 14, 20, 0, tzinfo=dt_timezone.utc)
        self.assertRegex(generate_order_number(now), r'^CB-20250115-[0-9A-F]{4}$')

    def test_payment_reference_format(self):
        self.assertRegex(generate_payment_reference(), r'^CBPAY[0-9A-F]{10}$')


class UniquePaymentReferenceTestCase(SimpleTestCase):
    @mock.patch('orders.utils.Order')
    def test_gives_up_after_repeated_collisions(self, order_model):
        order_model.objects.filter.return_value.exists.return_value = True
        with self.assertRaises(Conflict):
            generate_unique_payment_reference()
        self.assertEqual(order_model.objects.filter.call_count, 5)
