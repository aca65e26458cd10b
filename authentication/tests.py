from types import SimpleNamespace

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from authentication.exceptions import custom_exception_handler
from authentication.models import CustomUser, Store
from authentication.permissions import Actions, can
from authentication.serializers import is_campus_email

PASSWORD = 'Tiffin4Lunch!'

CAMPUS_ONLY = {**settings.CAMPUSBITE, 'CAMPUS_EMAIL_DOMAIN': 'campus.edu'}


def student_payload(**overrides):
    data = {
        'name': 'Asha Rao',
        'email': 'Asha@Campus.edu',
        'password': PASSWORD,
        'confirmPassword': PASSWORD,
        'role': 'student',
        'registerNumber': '2341001',
    }
    data.update(overrides)
    return data


def store_employee_payload(**overrides):
    data = {
        'name': 'Canteen Manager',
        'email': 'canteen@gmail.com',
        'password': PASSWORD,
        'confirmPassword': PASSWORD,
        'role': 'store_employee',
        'employeeId': 'EMP-204',
        'phoneNumber': '9876543210',
        'storeName': 'Main Canteen',
        'storeUpiId': 'MainCanteen@OKAXIS',
    }
    data.update(overrides)
    return data


class RegisterTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse('register')

    def test_register_student(self):
        response = self.client.post(self.url, student_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(
            response.data['message'], 'Registration successful. Please check your email to verify your account.'
        )
        self.assertEqual(response.data['data']['email'], 'asha@campus.edu')
        self.assertNotIn('password', response.data['data'])
        self.assertTrue(CustomUser.objects.get(email='asha@campus.edu').check_password(PASSWORD))

    def test_register_store_employee_creates_store(self):
        response = self.client.post(self.url, store_employee_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        store = Store.objects.get(owner__email='canteen@gmail.com')
        self.assertEqual(store.name, 'Main Canteen')
        self.assertEqual(store.upi_id, 'maincanteen@okaxis')

    def test_student_requires_register_number(self):
        response = self.client.post(self.url, student_payload(registerNumber=''), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Validation error')
        self.assertIn('registerNumber', response.data['errors'])

    def test_faculty_requires_employee_id(self):
        response = self.client.post(
            self.url, student_payload(role='faculty', registerNumber=''), format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('employeeId', response.data['errors'])

    def test_store_employee_requirements(self):
        response = self.client.post(
            self.url,
            store_employee_payload(phoneNumber='12345', storeName='', storeUpiId='bad-upi'),
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        for field in ('phoneNumber', 'storeName', 'storeUpiId'):
            self.assertIn(field, response.data['errors'])
        self.assertFalse(CustomUser.objects.exists())

    def test_password_rules(self):
        for weak in ('alllowercase1', 'ALLUPPERCASE1', 'NoDigitsHere'):
            response = self.client.post(
                self.url, student_payload(password=weak, confirmPassword=weak), format='json'
            )
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertIn('password', response.data['errors'])

    def test_password_confirmation(self):
        response = self.client.post(self.url, student_payload(confirmPassword='Different1'), format='json')
        self.assertIn('confirmPassword', response.data['errors'])

    def test_duplicate_email(self):
        self.client.post(self.url, student_payload(), format='json')
        response = self.client.post(self.url, student_payload(email='ASHA@campus.edu'), format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {
            'success': False,
            'message': 'An account with this email already exists.',
        })

    @override_settings(CAMPUSBITE=CAMPUS_ONLY)
    def test_campus_domain_for_students(self):
        response = self.client.post(self.url, student_payload(email='asha@gmail.com'), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data['errors'])

        response = self.client.post(self.url, student_payload(email='asha@cs.campus.edu'), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    @override_settings(CAMPUSBITE=CAMPUS_ONLY)
    def test_campus_domain_not_required_for_store_employees(self):
        response = self.client.post(self.url, store_employee_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_is_campus_email(self):
        self.assertTrue(is_campus_email('a@campus.edu', 'campus.edu'))
        self.assertTrue(is_campus_email('a@mail.campus.edu', 'Campus.edu'))
        self.assertFalse(is_campus_email('a@notcampus.edu', 'campus.edu'))
        self.assertFalse(is_campus_email('no-at-sign', 'campus.edu'))
        self.assertTrue(is_campus_email('a@gmail.com', ''))


class LoginTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001', is_email_verified=True,
        )

    def test_login(self):
        response = self.client.post(
            reverse('token_obtain_pair'), {'email': 'ASHA@campus.edu', 'password': PASSWORD}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Login successful.')
        self.assertEqual(response.data['data']['user']['email'], 'asha@campus.edu')
        access = AccessToken(response.data['data']['accessToken'])
        self.assertEqual(access['user_id'], str(self.user.id))

        self.user.refresh_from_db()
        self.assertIsNotNone(self.user.last_login)

    def test_login_wrong_password(self):
        response = self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': 'Wrong1234'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Invalid email or password.')

    def test_refresh(self):
        login = self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': PASSWORD}, format='json'
        )
        response = self.client.post(
            reverse('token_refresh'), {'refresh': login.data['data']['refreshToken']}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['accessToken'])

    def test_bearer_token_authenticates(self):
        login = self.client.post(
            reverse('token_obtain_pair'), {'email': 'asha@campus.edu', 'password': PASSWORD}, format='json'
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['data']['accessToken']}")
        response = self.client.get(reverse('my_profile'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['data']['store'])


class ProfileAndStoreTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = CustomUser.objects.create_user(
            email='canteen@campus.edu', password=PASSWORD, name='Canteen Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-1', phone_number='9876543210',
        )
        self.store = Store.objects.create(name='Main Canteen', upi_id='maincanteen@okaxis', owner=self.owner)
        self.other_owner = CustomUser.objects.create_user(
            email='juice@campus.edu', password=PASSWORD, name='Juice Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-2', phone_number='9876543211',
        )
        self.other_store = Store.objects.create(
            name='Juice Bar', upi_id='juicebar@okicici', owner=self.other_owner, is_active=False
        )
        self.student = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001',
        )

    def test_profile_includes_owned_store(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('my_profile'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['store']['name'], 'Main Canteen')

    def test_update_profile(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.put(
            reverse('my_profile'), {'name': 'Asha R', 'phoneNumber': '9123456780'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.student.refresh_from_db()
        self.assertEqual(self.student.name, 'Asha R')
        self.assertEqual(self.student.phone_number, '9123456780')

    def test_store_list_is_public_and_active_only(self):
        response = self.client.get(reverse('store_list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = [store['name'] for store in response.data['data']['stores']]
        self.assertEqual(names, ['Main Canteen'])

    def test_store_detail(self):
        response = self.client.get(reverse('store_detail', args=[self.store.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['store']['owner_email'], 'canteen@campus.edu')

    def test_owner_updates_store(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.patch(
            reverse('store_detail', args=[self.store.id]),
            {'upi_id': '  NewCanteen@YBL ', 'operating_hours': {'mon': '08:00-20:00'}},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Store updated successfully.')
        self.store.refresh_from_db()
        self.assertEqual(self.store.upi_id, 'newcanteen@ybl')
        self.assertEqual(self.store.operating_hours, {'mon': '08:00-20:00'})

    def test_invalid_upi_id_rejected(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.patch(
            reverse('store_detail', args=[self.store.id]), {'upi_id': 'not a upi'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('upi_id', response.data['errors'])

    def test_other_owner_cannot_update_store(self):
        self.client.force_authenticate(user=self.other_owner)
        response = self.client.patch(reverse('store_detail', args=[self.store.id]), {'name': 'Mine'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'You are not authorized to update this store.')

    def test_customer_cannot_update_store(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.patch(reverse('store_detail', args=[self.store.id]), {'name': 'Mine'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Only store employees can perform this action.')

    def test_health_check(self):
        response = self.client.get(reverse('health_check'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'healthy')


class AuthorizationTestCase(TestCase):
    def setUp(self):
        self.owner = CustomUser.objects.create_user(
            email='canteen@campus.edu', password=PASSWORD, name='Owner', role=CustomUser.ROLE_STORE_EMPLOYEE,
        )
        self.store = Store.objects.create(name='Main Canteen', upi_id='maincanteen@okaxis', owner=self.owner)
        self.other_owner = CustomUser.objects.create_user(
            email='juice@campus.edu', password=PASSWORD, name='Other', role=CustomUser.ROLE_STORE_EMPLOYEE,
        )
        self.student = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha', role=CustomUser.ROLE_STUDENT,
        )

    def test_owner_can_operate_own_store(self):
        for action in Actions.STORE_OPERATIONS:
            self.assertTrue(can(self.owner, action, self.store))
            self.assertFalse(can(self.other_owner, action, self.store))
            self.assertFalse(can(self.student, action, self.store))

    def test_order_visibility(self):
        order = SimpleNamespace(store_id=self.store.id, user_id=self.student.id)

        self.assertTrue(can(self.student, Actions.VIEW_ORDER, order))
        self.assertTrue(can(self.owner, Actions.VIEW_ORDER, order))
        self.assertFalse(can(self.other_owner, Actions.VIEW_ORDER, order))
        self.assertFalse(can(self.student, Actions.UPDATE_ORDER_STATUS, order))

    def test_unknown_action_and_anonymous(self):
        self.assertFalse(can(self.owner, 'store.delete', self.store))
        self.assertFalse(can(None, Actions.UPDATE_STORE, self.store))


class ExceptionHandlerTestCase(TestCase):
    def test_integrity_error(self):
        response = custom_exception_handler(IntegrityError('UNIQUE constraint failed'), {})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data['success'])

    def test_django_validation_error(self):
        response = custom_exception_handler(DjangoValidationError({'upi_id': ['Invalid']}), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['errors'], {'upi_id': ['Invalid']})

    @override_settings(DEBUG=False)
    def test_unexpected_error_hides_stack(self):
        response = custom_exception_handler(RuntimeError('boom'), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data, {'success': False, 'message': 'Internal server error'})

    @override_settings(DEBUG=True)
    def test_unexpected_error_stack_in_debug(self):
        try:
            raise RuntimeError('boom')
        except RuntimeError as e:
            response = custom_exception_handler(e, {})
        self.assertIn('RuntimeError: boom', response.data['stack'])
