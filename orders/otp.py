import secrets
from datetime import timedelta

from django.conf import settings
from django.utils import timezone


def generate_otp():
    """Six digit pickup code, 100000-999999 inclusive."""
    return str(secrets.randbelow(900000) + 100000)


def get_otp_expiry(issued_at=None):
    issued_at = issued_at or timezone.now()
    return issued_at + timedelta(minutes=settings.CAMPUSBITE['OTP_TTL_MINUTES'])


def validate_otp(stored_otp, supplied_otp, expires_at, now=None):
    """
    True only when all three values are present, the code has not expired
    and the supplied code equals the stored one exactly.
    """
    if not stored_otp or not supplied_otp or not expires_at:
        return False

    now = now or timezone.now()
    if now > expires_at:
        return False

    return stored_otp == supplied_otp


def get_ready_expiry(ready_at=None):
    """Deadline for collecting a ready order before it counts as a no-show."""
    ready_at = ready_at or timezone.now()
    return ready_at + timedelta(minutes=settings.CAMPUSBITE['READY_NO_SHOW_TIMEOUT_MINUTES'])
