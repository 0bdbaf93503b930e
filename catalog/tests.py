"""
Tests for the catalog and its stock ledger.
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from catalog.models import Category, Product
from catalog.serializers import ProductSerializer
from catalog.services import (
    INSUFFICIENT_STOCK,
    UNKNOWN_PRODUCT,
    StockMode,
    adjust_stock,
    decrement_stock,
    increment_stock,
)
from core.permissions import ADMIN_ROLE
from orders.services import create_order

User = get_user_model()


class StockLedgerTestCase(TestCase):

    def setUp(self):
        self.product = Product.objects.create(name='Jasmine Rice 5kg', price=Decimal('75000.00'), stock=10)

    def test_decrement_within_stock(self):
        result = decrement_stock(self.product.id, 4)

        self.assertTrue(result.applied)
        self.assertIsNone(result.reason)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 6)

    def test_decrement_beyond_stock_is_noop(self):
        with self.assertLogs('catalog.services', level='WARNING'):
            result = decrement_stock(self.product.id, 11)

        self.assertFalse(result.applied)
        self.assertEqual(result.reason, INSUFFICIENT_STOCK)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 10)

    def test_decrement_unknown_product(self):
        result = decrement_stock(99999, 1)

        self.assertFalse(result.applied)
        self.assertEqual(result.reason, UNKNOWN_PRODUCT)

    def test_decrement_rejects_non_positive_quantity(self):
        with self.assertRaises(ValueError):
            decrement_stock(self.product.id, 0)

    def test_increment(self):
        result = increment_stock(self.product.id, 5)

        self.assertTrue(result.applied)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 15)

    def test_adjust_modes(self):
        self.assertEqual(adjust_stock(self.product, StockMode.ADD, 5).stock, 15)
        self.assertEqual(adjust_stock(self.product, StockMode.SUBTRACT, 3).stock, 12)
        self.assertEqual(adjust_stock(self.product, StockMode.SET, 40).stock, 40)

    def test_adjust_subtract_floors_at_zero(self):
        product = adjust_stock(self.product, StockMode.SUBTRACT, 25)

        self.assertEqual(product.stock, 0)
        self.assertTrue(product.is_out_of_stock)

    def test_adjust_unknown_mode(self):
        with self.assertRaises(ValueError):
            adjust_stock(self.product, 'multiply', 2)


class ProductModelTestCase(TestCase):

    @override_settings(LOW_STOCK_THRESHOLD=10)
    def test_low_stock_threshold(self):
        product = Product.objects.create(name='Eggs 10pcs', price=Decimal('28000.00'), stock=10)
        self.assertTrue(product.is_low_stock)

        product.stock = 11
        self.assertFalse(product.is_low_stock)


@override_settings(RATE_LIMIT_ENABLED=False)
class CatalogAPITestCase(TestCase):

    def setUp(self):
        self.fruits = Category.objects.create(name='Fruits')
        self.dairy = Category.objects.create(name='Dairy & Eggs')
        self.banana = Product.objects.create(
            name='Banana 1kg', price=Decimal('18000.00'), stock=40, category=self.fruits
        )
        self.milk = Product.objects.create(
            name='Fresh Milk 1L', price=Decimal('21000.00'), stock=3, category=self.dairy
        )
        self.cheese = Product.objects.create(
            name='Cheddar Cheese', price=Decimal('45000.00'), stock=0, category=self.dairy, is_active=False
        )

        self.buyer = User.objects.create_user(username='budi', password='secret')
        self.admin = User.objects.create_user(username='siti', password='secret')
        Group.objects.get_or_create(name=ADMIN_ROLE)[0].user_set.add(self.admin)
        self.client = APIClient()

    def test_buyer_lists_active_products(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/products/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = [product['name'] for product in response.data['results']]
        self.assertEqual(names, ['Banana 1kg', 'Fresh Milk 1L'])

    def test_buyer_cannot_create_product(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post('/api/products/', {'name': 'Mango', 'price': '20000'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_product(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            '/api/products/',
            {'name': 'Mango 1kg', 'price': '25000.00', 'stock': 12, 'category_id': self.fruits.id},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['category']['name'], 'Fruits')

    def test_search_filters(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/products/search/', {'q': 'dairy'})
        self.assertEqual([p['name'] for p in response.data['results']], ['Fresh Milk 1L'])

        response = self.client.get('/api/products/search/', {'max_price': '20000'})
        self.assertEqual([p['name'] for p in response.data['results']], ['Banana 1kg'])

        response = self.client.get('/api/products/search/', {'stock_status': 'low'})
        self.assertEqual([p['name'] for p in response.data['results']], ['Fresh Milk 1L'])

    def test_inactive_products_only_for_admin(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.get('/api/products/search/', {'include_inactive': 'true'})
        self.assertEqual(response.data['count'], 2)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/products/search/', {'include_inactive': 'true'})
        self.assertEqual(response.data['count'], 3)

    def test_autocomplete(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/products/autocomplete/', {'q': 'ban'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['name'], 'Banana 1kg')

        response = self.client.get('/api/products/autocomplete/', {'q': 'ba'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_low_stock_list(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get('/api/products/low-stock/')

        self.assertEqual([p['name'] for p in response.data['results']], ['Cheddar Cheese', 'Fresh Milk 1L'])

    def test_stock_adjustment(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(
            f'/api/products/{self.milk.id}/stock/',
            {'mode': 'add', 'stock': 20},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['old_stock'], 3)
        self.assertEqual(response.data['stock'], 23)
        self.assertFalse(response.data['is_low_stock'])

    def test_stock_adjustment_rejects_negative(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f'/api/products/{self.milk.id}/stock/', {'stock': -1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_product_with_orders_deactivated_instead_of_deleted(self):
        create_order(self.buyer, [{'product_id': self.banana.id, 'quantity': 1}], shipping_address='Jl. Merdeka 1')
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f'/api/products/{self.banana.id}/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.banana.refresh_from_db()
        self.assertFalse(self.banana.is_active)

    def test_product_update_leaves_stock_alone(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(
            f'/api/products/{self.banana.id}/',
            {'price': '19000.00', 'stock': 999},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['price'], '19000.00')
        self.assertEqual(response.data['stock'], 40)
        self.banana.refresh_from_db()
        self.assertEqual(self.banana.stock, 40)


class ProductSerializerTestCase(TestCase):

    def test_edit_keeps_concurrent_stock_decrement(self):
        """
        Given: A product loaded for editing with stock 5
        When: Checkout decrements 2 units before the price edit is saved
        Then: The edit keeps the decremented stock of 3
        """
        product = Product.objects.create(name='Palm Sugar 500g', price=Decimal('11000.00'), stock=5)
        loaded = Product.objects.get(pk=product.pk)
        decrement_stock(product.id, 2)

        serializer = ProductSerializer(loaded, data={'price': '12000.00'}, partial=True)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        serializer.save()

        product.refresh_from_db()
        self.assertEqual(product.price, Decimal('12000.00'))
        self.assertEqual(product.stock, 3)

    def test_stock_accepted_on_create(self):
        serializer = ProductSerializer(data={'name': 'Tempeh', 'price': '6000.00', 'stock': 25})
        self.assertTrue(serializer.is_valid(), serializer.errors)

        self.assertEqual(serializer.save().stock, 25)
