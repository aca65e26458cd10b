from django.contrib.auth.tokens import PasswordResetTokenGenerator
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.encoding import force_bytes, force_str
from django.utils.http import urlsafe_base64_decode, urlsafe_base64_encode

from .models import CustomUser


class EmailVerificationTokenGenerator(PasswordResetTokenGenerator):
    """
    Signed, expiring e-mail verification token. Verifying the address changes
    ``is_email_verified`` and so invalidates every link issued before it.
    """
    key_salt = 'authentication.tokens.EmailVerificationTokenGenerator'

    def _make_hash_value(self, user, timestamp):
        return f"{user.pk}{user.email}{user.is_email_verified}{timestamp}"


email_verification_token = EmailVerificationTokenGenerator()


def encode_uid(user):
    return urlsafe_base64_encode(force_bytes(user.pk))


def user_from_uid(uidb64):
    try:
        pk = force_str(urlsafe_base64_decode(uidb64))
        return CustomUser.objects.get(pk=pk)
    except (TypeError, ValueError, OverflowError, CustomUser.DoesNotExist, DjangoValidationError):
        return None
