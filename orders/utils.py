import re
import secrets
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.utils import timezone

from authentication.exceptions import Conflict
from .models import Order

PAYMENT_REFERENCE_PREFIX = 'CBPAY'
PAYMENT_REFERENCE_ATTEMPTS = 5
CENTS = Decimal('0.01')
# Largest value a DecimalField(max_digits=10, decimal_places=2) can hold
MAX_ORDER_TOTAL = Decimal('99999999.99')


def round_money(value):
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_quantity(value):
    """Leading integer of the value, at least 1. Missing or unparseable means 1."""
    if value is None or isinstance(value, bool):
        return 1
    match = re.match(r'\s*([+-]?\d+)', str(value))
    if not match:
        return 1
    return max(1, int(match.group(1)))


def generate_order_number(now=None):
    """e.g. CB-20250114-3FA9, dated in the configured local timezone."""
    now = now or timezone.now()
    prefix = settings.CAMPUSBITE['ORDER_NUMBER_PREFIX']
    date_str = timezone.localtime(now).strftime('%Y%m%d')
    return f"{prefix}-{date_str}-{secrets.token_hex(2).upper()}"


def generate_payment_reference():
    return f"{PAYMENT_REFERENCE_PREFIX}{secrets.token_hex(5).upper()}"


def generate_unique_payment_reference():
    for _ in range(PAYMENT_REFERENCE_ATTEMPTS):
        candidate = generate_payment_reference()
        if not Order.objects.filter(payment_reference=candidate).exists():
            return candidate
    raise Conflict('Unable to generate payment reference. Please retry.')
