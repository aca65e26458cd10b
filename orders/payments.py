import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from urllib.parse import urlencode

from authentication.exceptions import InvalidState
from authentication.models import UPI_ID_REGEX

UPI_LINK_PREFIX = 'upi://pay?'
DEFAULT_PAYEE_NAME = 'CampusBite Store'
DEFAULT_REFERENCE = 'CBPAYMENT'

UPI_APP_SCHEMES = {
    'gpay': 'tez://upi/pay?',
    'phonepe': 'phonepe://pay?',
    'paytm': 'paytmmp://pay?',
    'bhim': 'upi://pay?',
}


def is_valid_upi_id(upi_id):
    if not upi_id or not isinstance(upi_id, str):
        return False
    return re.match(UPI_ID_REGEX, upi_id.strip()) is not None


def format_amount(amount):
    """Two decimal string for a positive amount, None otherwise."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return str(value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def generate_upi_link(upi_id, payee_name, amount, reference):
    normalized_upi_id = (upi_id or '').strip().lower()
    if not is_valid_upi_id(normalized_upi_id):
        raise InvalidState('Store UPI ID is invalid. Please contact the store.')

    formatted_amount = format_amount(amount)
    if formatted_amount is None:
        raise InvalidState('Invalid payment amount.')

    payment_ref = (reference or '').strip()[:35] or DEFAULT_REFERENCE
    params = {
        'pa': normalized_upi_id,
        'pn': (payee_name or DEFAULT_PAYEE_NAME).strip(),
        'am': formatted_amount,
        'cu': 'INR',
        'tr': payment_ref,
        'tn': f'CampusBite Order {payment_ref}',
    }
    return UPI_LINK_PREFIX + urlencode(params)


def get_upi_app_links(upi_link):
    query = upi_link[len(UPI_LINK_PREFIX):] if upi_link.startswith(UPI_LINK_PREFIX) else upi_link
    links = {'generic': upi_link}
    for app, scheme in UPI_APP_SCHEMES.items():
        links[app] = scheme + query
    return links


def build_payment_payload(order, store):
    upi_link = generate_upi_link(store.upi_id, store.name, order.total_amount, order.payment_reference)
    return {
        'upiLink': upi_link,
        'upiAppLinks': get_upi_app_links(upi_link),
        'amount': format_amount(order.total_amount),
        'storeName': store.name,
        'storeUpiId': store.upi_id,
        'paymentReference': order.payment_reference,
    }
