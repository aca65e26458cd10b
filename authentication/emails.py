"""
Account e-mails: address verification and password reset.

Links point at the frontend, which calls the matching API endpoint with the
uid and token taken from the URL.
"""
import logging

from django.conf import settings
from django.contrib.auth.tokens import default_token_generator
from django.core.mail import EmailMultiAlternatives, get_connection
from django.template.loader import render_to_string

from .tokens import email_verification_token, encode_uid

logger = logging.getLogger(__name__)


def _frontend_link(path, user, token):
    base = settings.CAMPUSBITE.get('FRONTEND_URL', '').rstrip('/')
    return f"{base}/{path}/{encode_uid(user)}/{token}"


def _send(user, template, subject, link):
    context = {
        'name': user.name,
        'link': link,
        'expires_minutes': settings.PASSWORD_RESET_TIMEOUT // 60,
    }
    html = render_to_string(f"authentication/emails/{template}.html", context)
    text = render_to_string(f"authentication/emails/{template}.txt", context)

    with get_connection() as connection:
        message = EmailMultiAlternatives(
            subject,
            text,
            settings.DEFAULT_FROM_EMAIL,
            [user.email],
            connection=connection,
        )
        message.attach_alternative(html, "text/html")
        message.send(fail_silently=False)
    logger.info(f"Sent {template} e-mail to {user.email}")


def send_verification_email(user):
    link = _frontend_link('verify-email', user, email_verification_token.make_token(user))
    _send(user, 'verify_email', 'Verify Your CampusBite Account', link)


def send_password_reset_email(user):
    link = _frontend_link('reset-password', user, default_token_generator.make_token(user))
    _send(user, 'password_reset', 'Reset Your CampusBite Password', link)
