from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from authentication.models import CustomUser, Store
from inventory.models import MenuItem

PASSWORD = 'SecurePass123'


class MenuTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.owner = CustomUser.objects.create_user(
            email='canteen@campus.edu', password=PASSWORD, name='Canteen Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-1',
        )
        self.store = Store.objects.create(name='Main Canteen', upi_id='maincanteen@okaxis', owner=self.owner)
        self.other_owner = CustomUser.objects.create_user(
            email='juice@campus.edu', password=PASSWORD, name='Juice Owner',
            role=CustomUser.ROLE_STORE_EMPLOYEE, employee_id='EMP-2',
        )
        self.other_store = Store.objects.create(name='Juice Bar', upi_id='juicebar@okicici', owner=self.other_owner)
        self.student = CustomUser.objects.create_user(
            email='asha@campus.edu', password=PASSWORD, name='Asha',
            role=CustomUser.ROLE_STUDENT, register_number='2341001',
        )

        self.dosa = MenuItem.objects.create(
            store=self.store, name='Masala Dosa', price=Decimal('100.00'), category='South Indian'
        )
        self.idli = MenuItem.objects.create(
            store=self.store, name='Idli', price=Decimal('40.00'), category='South Indian', is_available=False
        )
        self.coffee = MenuItem.objects.create(
            store=self.store, name='Filter Coffee', price=Decimal('50.00'), category='Beverages'
        )
        MenuItem.objects.create(store=self.other_store, name='Mango Juice', price=Decimal('60.00'), category='Beverages')

    def test_public_store_menu(self):
        response = self.client.get(reverse('store_menu', args=[self.store.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = [item['name'] for item in response.data['data']['menuItems']]
        self.assertEqual(names, ['Filter Coffee', 'Idli', 'Masala Dosa'])

    def test_menu_filters(self):
        url = reverse('store_menu', args=[self.store.id])

        response = self.client.get(url, {'category': 'Beverages'})
        self.assertEqual([i['name'] for i in response.data['data']['menuItems']], ['Filter Coffee'])

        response = self.client.get(url, {'search': 'dosa'})
        self.assertEqual([i['name'] for i in response.data['data']['menuItems']], ['Masala Dosa'])

    def test_menu_of_unknown_store(self):
        response = self.client.get(reverse('store_menu', args=['00000000-0000-0000-0000-000000000000']))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(response.data['success'])

    def test_create_menu_item(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(
            reverse('menu_item_create'),
            {'name': '  Vada  ', 'price': '30.00', 'category': ' Snacks '},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['message'], 'Menu item added successfully.')
        item = MenuItem.objects.get(name='Vada')
        self.assertEqual(item.store, self.store)
        self.assertEqual(item.category, 'Snacks')
        self.assertTrue(item.is_available)

    def test_create_rejects_negative_price(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(reverse('menu_item_create'), {'name': 'Vada', 'price': '-1'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('price', response.data['errors'])

    def test_customer_cannot_create(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(reverse('menu_item_create'), {'name': 'Vada', 'price': '30'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_employee_without_store_cannot_create(self):
        orphan = CustomUser.objects.create_user(
            email='new@campus.edu', password=PASSWORD, name='New', role=CustomUser.ROLE_STORE_EMPLOYEE,
        )
        self.client.force_authenticate(user=orphan)
        response = self.client.post(reverse('menu_item_create'), {'name': 'Vada', 'price': '30'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['message'], 'You do not own a store.')

    def test_get_menu_item(self):
        response = self.client.get(reverse('menu_item_detail', args=[self.dosa.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['menuItem']['price'], '100.00')
        self.assertEqual(response.data['data']['menuItem']['store_id'], str(self.store.id))

    def test_update_menu_item(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.patch(
            reverse('menu_item_detail', args=[self.dosa.id]), {'price': '120.00'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.dosa.refresh_from_db()
        self.assertEqual(self.dosa.price, Decimal('120.00'))

    def test_other_owner_cannot_update_or_delete(self):
        self.client.force_authenticate(user=self.other_owner)
        url = reverse('menu_item_detail', args=[self.dosa.id])

        response = self.client.patch(url, {'price': '1.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'You are not authorized to update this menu item.')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(MenuItem.objects.filter(pk=self.dosa.id).exists())

    def test_delete_menu_item(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.delete(reverse('menu_item_detail', args=[self.coffee.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'success': True, 'message': 'Menu item deleted successfully.'})
        self.assertFalse(MenuItem.objects.filter(pk=self.coffee.id).exists())

    def test_toggle_availability(self):
        self.client.force_authenticate(user=self.owner)
        url = reverse('menu_item_availability', args=[self.idli.id])

        response = self.client.patch(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Menu item is now available.')
        self.idli.refresh_from_db()
        self.assertTrue(self.idli.is_available)

        response = self.client.patch(url)
        self.assertEqual(response.data['message'], 'Menu item is now unavailable.')

    def test_other_owner_cannot_toggle(self):
        self.client.force_authenticate(user=self.other_owner)
        response = self.client.patch(reverse('menu_item_availability', args=[self.idli.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.idli.refresh_from_db()
        self.assertFalse(self.idli.is_available)
