"""
Tests for the cart, buy-now stash and buyer checkout.
"""
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from cart.models import CartItem, CheckoutSession
from cart.services import add_to_cart, buy_now, cancel_checkout, restore_saved_cart
from catalog.models import Product
from orders.exceptions import InsufficientStockError
from orders.models import Order
from orders.services import checkout, update_order_status

User = get_user_model()


class CartFixturesMixin:

    def setUp(self):
        self.rice = Product.objects.create(name='Jasmine Rice 5kg', price=Decimal('10000.00'), stock=5)
        self.oil = Product.objects.create(name='Cooking Oil 2L', price=Decimal('38000.00'), stock=20)
        self.tea = Product.objects.create(name='Iced Tea', price=Decimal('5000.00'), stock=100)
        self.buyer = User.objects.create_user(username='budi', email='budi@example.com', password='secret')

    def cart_products(self):
        return {
            item.product_id: item.quantity
            for item in CartItem.objects.filter(user=self.buyer)
        }


class CartServiceTestCase(CartFixturesMixin, TestCase):

    def test_add_merges_rows(self):
        add_to_cart(self.buyer, self.oil, 2)
        item = add_to_cart(self.buyer, self.oil, 3)

        self.assertEqual(item.quantity, 5)
        self.assertEqual(CartItem.objects.filter(user=self.buyer).count(), 1)

    def test_add_beyond_stock_rejected(self):
        add_to_cart(self.buyer, self.rice, 4)

        with self.assertRaises(InsufficientStockError):
            add_to_cart(self.buyer, self.rice, 2)

        self.assertEqual(self.cart_products(), {self.rice.id: 4})


class BuyNowTestCase(CartFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        add_to_cart(self.buyer, self.oil, 2)
        add_to_cart(self.buyer, self.tea, 6)
        self.session = CheckoutSession.for_user(self.buyer)

    def test_buy_now_stashes_cart(self):
        buy_now(self.buyer, self.rice, 1, self.session)

        self.assertEqual(self.cart_products(), {self.rice.id: 1})
        self.session.refresh_from_db()
        self.assertTrue(self.session.buy_now_mode)
        self.assertEqual(
            sorted(self.session.saved_cart_items, key=lambda entry: entry['product_id']),
            [
                {'product_id': self.oil.id, 'quantity': 2},
                {'product_id': self.tea.id, 'quantity': 6},
            ]
        )

    def test_second_buy_now_keeps_first_stash(self):
        buy_now(self.buyer, self.rice, 1, self.session)
        buy_now(self.buyer, self.tea, 3, self.session)

        self.assertEqual(self.cart_products(), {self.tea.id: 3})
        self.assertEqual(len(self.session.saved_cart_items), 2)

    def test_cancel_restores_stash(self):
        buy_now(self.buyer, self.rice, 1, self.session)

        restored = cancel_checkout(self.buyer, self.session)

        self.assertTrue(restored)
        self.assertEqual(self.cart_products(), {self.oil.id: 2, self.tea.id: 6})
        self.session.refresh_from_db()
        self.assertFalse(self.session.buy_now_mode)
        self.assertFalse(self.session.has_saved_cart)

    def test_cancel_without_buy_now(self):
        self.assertFalse(cancel_checkout(self.buyer, self.session))
        self.assertEqual(self.cart_products(), {self.oil.id: 2, self.tea.id: 6})

    def test_restore_drops_rows_beyond_stock(self):
        buy_now(self.buyer, self.rice, 1, self.session)
        Product.objects.filter(pk=self.tea.pk).update(stock=4)

        restored = restore_saved_cart(self.buyer, self.session, check_stock=True)

        self.assertEqual(restored, 1)
        self.assertEqual(self.cart_products(), {self.oil.id: 2})

    def test_restore_without_stock_check(self):
        buy_now(self.buyer, self.rice, 1, self.session)
        Product.objects.filter(pk=self.tea.pk).update(stock=4)

        restored = restore_saved_cart(self.buyer, self.session, check_stock=False)

        self.assertEqual(restored, 2)

    def test_checkout_in_buy_now_mode_restores_cart(self):
        item = buy_now(self.buyer, self.rice, 2, self.session)

        order = checkout(
            self.buyer,
            [item.id],
            shipping_address='Jl. Merdeka 1, Jakarta',
            payment_method=Order.PaymentMethod.COD,
            session=self.session
        )

        self.assertEqual(order.items.get().product, self.rice)
        self.assertEqual(self.cart_products(), {self.oil.id: 2, self.tea.id: 6})
        self.session.refresh_from_db()
        self.assertFalse(self.session.buy_now_mode)


@override_settings(ORDER_SHIPPING_COST=Decimal('15000'), ORDER_TAX_RATE=Decimal('0.10'))
class CheckoutTestCase(CartFixturesMixin, TestCase):

    def test_checkout_totals_and_immediate_stock_reservation(self):
        """
        Given: A cart with 2 x rice (price 10000, stock 5)
        When: The buyer checks out with shipping 15000 and 10% tax
        Then: subtotal 20000, tax 2000, total 37000 and stock drops to 3
        """
        item = add_to_cart(self.buyer, self.rice, 2)

        order = checkout(
            self.buyer,
            [item.id],
            shipping_address='Jl. Merdeka 1, Jakarta',
            payment_method=Order.PaymentMethod.BANK_TRANSFER
        )

        self.assertEqual(order.subtotal, Decimal('20000.00'))
        self.assertEqual(order.shipping_cost, Decimal('15000.00'))
        self.assertEqual(order.tax_amount, Decimal('2000.00'))
        self.assertEqual(order.total_amount, Decimal('37000.00'))
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertTrue(order.order_number.endswith(f'-{self.buyer.pk}'))
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 3)
        self.assertFalse(CartItem.objects.filter(pk=item.pk).exists())

    def test_processing_does_not_deduct_again(self):
        item = add_to_cart(self.buyer, self.rice, 2)
        order = checkout(self.buyer, [item.id], shipping_address='Jl. Merdeka 1', payment_method='cod')

        update_order_status(order, Order.Status.PROCESSING)

        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 3)

    def test_checkout_only_consumes_selected_rows(self):
        rice = add_to_cart(self.buyer, self.rice, 1)
        add_to_cart(self.buyer, self.tea, 2)

        checkout(self.buyer, [rice.id], shipping_address='Jl. Merdeka 1', payment_method='cod')

        self.assertEqual(self.cart_products(), {self.tea.id: 2})

    def test_checkout_insufficient_stock_changes_nothing(self):
        oil = add_to_cart(self.buyer, self.oil, 1)
        rice = add_to_cart(self.buyer, self.rice, 4)
        Product.objects.filter(pk=self.rice.pk).update(stock=2)

        with self.assertRaises(InsufficientStockError):
            checkout(self.buyer, [oil.id, rice.id], shipping_address='Jl. Merdeka 1', payment_method='cod')

        self.assertEqual(Order.objects.count(), 0)
        self.oil.refresh_from_db()
        self.assertEqual(self.oil.stock, 20)
        self.assertEqual(self.cart_products(), {self.oil.id: 1, self.rice.id: 4})

    def test_confirmation_queued_after_commit(self):
        item = add_to_cart(self.buyer, self.tea, 1)

        with patch('orders.tasks.send_order_confirmation.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                order = checkout(self.buyer, [item.id], shipping_address='Jl. Merdeka 1', payment_method='cod')

        delay.assert_called_once_with(order.id)


@override_settings(
    RATE_LIMIT_ENABLED=False,
    ORDER_SHIPPING_COST=Decimal('15000'),
    ORDER_TAX_RATE=Decimal('0.10')
)
class CartAPITestCase(CartFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.buyer)

    def test_add_and_list(self):
        response = self.client.post('/api/cart/', {'product_id': self.rice.id, 'quantity': 2}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['total_amount'], '20000.00')
        self.assertFalse(response.data['buy_now_mode'])

    def test_add_beyond_stock(self):
        response = self.client.post('/api/cart/', {'product_id': self.rice.id, 'quantity': 6}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['available'], 5)

    def test_update_and_remove(self):
        item = add_to_cart(self.buyer, self.oil, 1)

        response = self.client.patch(f'/api/cart/{item.id}/', {'quantity': 3}, format='json')
        self.assertEqual(response.data['quantity'], 3)

        response = self.client.delete(f'/api/cart/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.cart_products(), {})

    def test_checkout_summary(self):
        item = add_to_cart(self.buyer, self.rice, 2)
        add_to_cart(self.buyer, self.tea, 1)

        response = self.client.get('/api/checkout/summary/', {'items': [item.id]})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary']['subtotal'], '20000.00')
        self.assertEqual(response.data['summary']['tax'], '2000.00')
        self.assertEqual(response.data['summary']['total'], '37000.00')

    def test_checkout_summary_without_items(self):
        response = self.client.get('/api/checkout/summary/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_checkout(self):
        item = add_to_cart(self.buyer, self.rice, 2)

        response = self.client.post(
            '/api/checkout/',
            {
                'cart_items': [item.id],
                'shipping_address': 'Jl. Merdeka 1, Jakarta',
                'payment_method': 'ewallet'
            },
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order']['total_amount'], '37000.00')
        self.assertIn(response.data['order']['order_number'], response.data['message'])

    def test_checkout_requires_payment_method(self):
        item = add_to_cart(self.buyer, self.rice, 2)

        response = self.client.post(
            '/api/checkout/',
            {'cart_items': [item.id], 'shipping_address': 'Jl. Merdeka 1'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('payment_method', response.data)

    def test_buy_now_then_cancel(self):
        add_to_cart(self.buyer, self.oil, 2)

        response = self.client.post('/api/cart/buy-now/', {'product_id': self.tea.id, 'quantity': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['saved_cart_items'], 1)
        self.assertEqual(self.cart_products(), {self.tea.id: 1})

        response = self.client.post('/api/checkout/cancel/')
        self.assertTrue(response.data['restored'])
        self.assertEqual(self.cart_products(), {self.oil.id: 2})

    def test_restore_without_saved_cart(self):
        response = self.client.post('/api/cart/restore/')

        self.assertEqual(response.data['restored'], 0)
