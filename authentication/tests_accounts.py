import re
from unittest import mock

from django.conf import settings
from django.contrib.auth.tokens import default_token_generator
from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from authentication.models import CustomUser
from authentication.tokens import email_verification_token, encode_uid

PASSWORD = 'Tiffin4Lunch!'
NEW_PASSWORD = 'Samosa5Break!'

VERIFICATION_OPTIONAL = {**settings.CAMPUSBITE, 'REQUIRE_EMAIL_VERIFICATION': False}


def link_parts(body, path):
    match = re.search(rf'/{path}/([^/\s]+)/([^/\s]+)', body)
    return match.group(1), match.group(2)


class EmailVerificationTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001',
        )

    def login(self):
        return self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': PASSWORD}, format='json'
        )

    def test_register_sends_verification_link(self):
        response = self.client.post(reverse('register'), {
            'name': 'Ravi Kumar',
            'email': 'ravi@campus.edu',
            'password': PASSWORD,
            'confirmPassword': PASSWORD,
            'role': 'student',
            'registerNumber': '2341002',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Verify Your CampusBite Account')
        self.assertEqual(mail.outbox[0].to, ['ravi@campus.edu'])

        uidb64, token = link_parts(mail.outbox[0].body, 'verify-email')
        response = self.client.get(reverse('verify_email', args=[uidb64, token]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Email verified successfully. You can now log in.')
        self.assertTrue(CustomUser.objects.get(email='ravi@campus.edu').is_email_verified)

    def test_registration_succeeds_when_mail_fails(self):
        with mock.patch('authentication.views.send_verification_email', side_effect=ConnectionError('smtp down')):
            response = self.client.post(reverse('register'), {
                'name': 'Ravi Kumar',
                'email': 'ravi@campus.edu',
                'password': PASSWORD,
                'confirmPassword': PASSWORD,
                'role': 'student',
                'registerNumber': '2341002',
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(CustomUser.objects.filter(email='ravi@campus.edu').exists())

    def test_verification_link_works_once(self):
        url = reverse('verify_email', args=[encode_uid(self.user), email_verification_token.make_token(self.user)])

        self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)

        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Invalid or expired verification token.')

    def test_verification_rejects_tampered_links(self):
        token = email_verification_token.make_token(self.user)
        for uidb64, bad_token in (
            (encode_uid(self.user), 'abc-0123456789abcdef'),
            ('bm90LWEtdXVpZA', token),
            (encode_uid(self.user), default_token_generator.make_token(self.user)),
        ):
            response = self.client.get(reverse('verify_email', args=[uidb64, bad_token]))
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertFalse(response.data['success'])

        self.user.refresh_from_db()
        self.assertFalse(self.user.is_email_verified)

    def test_unverified_login_is_forbidden(self):
        response = self.login()

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Please verify your email before logging in.')

    @override_settings(CAMPUSBITE=VERIFICATION_OPTIONAL)
    def test_login_when_verification_is_optional(self):
        self.assertEqual(self.login().status_code, status.HTTP_200_OK)

    def test_resend_verification(self):
        response = self.client.post(reverse('resend_verification'), {'email': 'ASHA@campus.edu'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)

        self.user.is_email_verified = True
        self.user.save()
        response = self.client.post(reverse('resend_verification'), {'email': 'asha@campus.edu'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)


class PasswordResetTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001', is_email_verified=True,
        )

    def login(self, password=PASSWORD):
        return self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': password}, format='json'
        )

    def reset_url(self):
        return reverse('reset_password', args=[encode_uid(self.user), default_token_generator.make_token(self.user)])

    def test_forgot_password_sends_link(self):
        response = self.client.post(reverse('forgot_password'), {'email': 'Asha@Campus.edu'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data['message'], 'If an account with that email exists, a password reset link has been sent.'
        )
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Reset Your CampusBite Password')

        uidb64, token = link_parts(mail.outbox[0].body, 'reset-password')
        response = self.client.post(
            reverse('reset_password', args=[uidb64, token]), {'password': NEW_PASSWORD}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_forgot_password_unknown_email_looks_the_same(self):
        response = self.client.post(reverse('forgot_password'), {'email': 'nobody@campus.edu'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data['message'], 'If an account with that email exists, a password reset link has been sent.'
        )
        self.assertEqual(len(mail.outbox), 0)

    def test_reset_password(self):
        url = self.reset_url()
        response = self.client.post(url, {'password': NEW_PASSWORD, 'confirmPassword': NEW_PASSWORD}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data['message'], 'Password reset successful. Please log in with your new password.'
        )
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password(NEW_PASSWORD))
        self.assertEqual(self.login(NEW_PASSWORD).status_code, status.HTTP_200_OK)

        # The password hash is part of the token, so the link is now spent
        response = self.client.post(url, {'password': 'Another6Pass!'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Invalid or expired reset token.')

    def test_reset_password_enforces_password_rules(self):
        response = self.client.post(self.reset_url(), {'password': 'alllowercase1'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['errors'])
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password(PASSWORD))

    def test_reset_password_revokes_refresh_tokens(self):
        refresh = self.login().data['data']['refreshToken']

        self.client.post(self.reset_url(), {'password': NEW_PASSWORD}, format='json')
        response = self.client.post(reverse('token_refresh'), {'refresh': refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class LogoutTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001', is_email_verified=True,
        )
        login = self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': PASSWORD}, format='json'
        )
        self.refresh = login.data['data']['refreshToken']

    def test_logout_revokes_refresh_token(self):
        response = self.client.post(reverse('logout'), {'refreshToken': self.refresh}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'success': True, 'message': 'Logged out successfully.'})

        response = self.client.post(reverse('token_refresh'), {'refresh': self.refresh}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_with_revoked_or_garbage_token(self):
        self.client.post(reverse('logout'), {'refreshToken': self.refresh}, format='json')

        for token in (self.refresh, 'not-a-jwt'):
            response = self.client.post(reverse('logout'), {'refreshToken': token}, format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data['message'], 'Invalid refresh token.')

    def test_logout_requires_token(self):
        response = self.client.post(reverse('logout'), {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('refreshToken', response.data['errors'])
