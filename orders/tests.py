"""
Tests for the order lifecycle.

Test Cases:
1. Order total stays equal to items subtotal + shipping + tax - discount
2. Creation is atomic: one short line rejects the whole order
3. Status transitions reconcile stock exactly once
4. Cancelled and delivered orders are terminal
5. Bulk status update rolls back entirely on a store failure
6. Only cancelled orders can be deleted
7. Status changes are recorded in an append-only log
8. CSV export and the admin/buyer API surface
9. Reports and the buyer dashboard
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from cart.services import add_to_cart
from catalog.models import Category, Product
from catalog.services import adjust_stock
from core.permissions import ADMIN_ROLE, BUYER_ROLE
from orders import services
from orders.exceptions import (
    InsufficientStockError,
    InvalidStatusTransition,
    OrderDeletionError,
    OrderValidationError,
)
from orders.exports import CSV_BOM, EXPORT_COLUMNS, export_orders_csv
from orders.models import Order, OrderItem, OrderStatusLog
from orders.reports import (
    ReportPeriod,
    buyer_stats,
    customers_report,
    financial_report,
    popular_products,
    products_report,
    sales_report,
)
from orders.services import (
    bulk_delete,
    bulk_update_status,
    cancel_order,
    checkout_order_number,
    create_order,
    delete_order,
    order_statistics,
    recompute_total,
    sequential_order_number,
    update_order_details,
    update_order_status,
)
from orders.tasks import generate_daily_order_report

User = get_user_model()


class OrderFixturesMixin:
    """Shared catalog and users for order tests."""

    def setUp(self):
        self.category = Category.objects.create(name='Fruits')
        self.apple = Product.objects.create(
            name='Apple 1kg',
            price=Decimal('30000.00'),
            stock=100,
            category=self.category
        )
        self.mango = Product.objects.create(
            name='Mango 1kg',
            price=Decimal('25000.00'),
            stock=50,
            category=self.category
        )
        self.durian = Product.objects.create(
            name='Durian',
            price=Decimal('120000.00'),
            stock=5,  # Low stock
            category=self.category
        )
        self.buyer = User.objects.create_user(
            username='budi',
            email='budi@example.com',
            password='secret',
            first_name='Budi',
            last_name='Santoso'
        )
        self.admin = User.objects.create_user(username='siti', email='siti@example.com', password='secret')
        Group.objects.get_or_create(name=BUYER_ROLE)[0].user_set.add(self.buyer)
        Group.objects.get_or_create(name=ADMIN_ROLE)[0].user_set.add(self.admin)

    def make_order(self, items=None, **kwargs):
        items = items or [{'product_id': self.apple.id, 'quantity': 2}]
        kwargs.setdefault('shipping_address', 'Jl. Merdeka 1, Jakarta')
        return create_order(self.buyer, items, **kwargs)

    def assertStock(self, product, expected):
        product.refresh_from_db()
        self.assertEqual(product.stock, expected)

    def assertTotalInvariant(self, order):
        order.refresh_from_db()
        items_total = sum((item.quantity * item.price for item in order.items.all()), Decimal('0'))
        self.assertEqual(
            order.total_amount,
            items_total + order.shipping_cost + order.tax_amount - order.discount_amount
        )


class OrderCreationTestCase(OrderFixturesMixin, TestCase):
    """Test cases for admin order creation."""

    def test_order_created_pending_without_touching_stock(self):
        """
        Given: Products with sufficient stock
        When: An admin creates an order
        Then: It is pending, prices are snapshotted and stock is unchanged
        """
        order = self.make_order([
            {'product_id': self.apple.id, 'quantity': 5},
            {'product_id': self.mango.id, 'quantity': 3}
        ])

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.items.count(), 2)
        # (5 * 30000) + (3 * 25000) = 225000
        self.assertEqual(order.total_amount, Decimal('225000.00'))
        self.assertFalse(order.items.filter(stock_deducted=True).exists())
        self.assertStock(self.apple, 100)
        self.assertStock(self.mango, 50)

    def test_total_includes_adjustments(self):
        order = self.make_order(
            shipping_cost=Decimal('15000'),
            tax_amount=Decimal('6000'),
            discount_amount=Decimal('1000')
        )

        # 60000 + 15000 + 6000 - 1000
        self.assertEqual(order.total_amount, Decimal('80000.00'))
        self.assertTotalInvariant(order)

    def test_insufficient_stock_creates_nothing(self):
        """
        Given: Durian has only 5 units
        When: An order asks for 2 apples and 8 durians
        Then: No order or item rows exist and stock is untouched
        """
        items = [
            {'product_id': self.apple.id, 'quantity': 2},
            {'product_id': self.durian.id, 'quantity': 8}
        ]

        with self.assertRaises(InsufficientStockError) as context:
            self.make_order(items, reserve_on_create=True)

        self.assertEqual(context.exception.product_name, 'Durian')
        self.assertEqual(context.exception.available, 5)
        self.assertIn('Durian', str(context.exception))
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)
        self.assertStock(self.apple, 100)
        self.assertStock(self.durian, 5)

    def test_order_with_exact_stock(self):
        order = self.make_order([{'product_id': self.durian.id, 'quantity': 5}], reserve_on_create=True)

        self.assertTrue(order.items.get().stock_deducted)
        self.assertStock(self.durian, 0)

    def test_inactive_product_rejected(self):
        self.mango.is_active = False
        self.mango.save()

        with self.assertRaises(OrderValidationError):
            self.make_order([{'product_id': self.mango.id, 'quantity': 1}])

        self.assertEqual(Order.objects.count(), 0)

    def test_unknown_product_rejected(self):
        with self.assertRaises(OrderValidationError) as context:
            self.make_order([{'product_id': 99999, 'quantity': 1}])

        self.assertIn('not found', str(context.exception))

    def test_validation_error_empty_items(self):
        with self.assertRaises(OrderValidationError) as context:
            create_order(self.buyer, [], shipping_address='Jl. Merdeka 1')

        self.assertIn('at least one item', str(context.exception))

    def test_validation_error_invalid_quantity(self):
        with self.assertRaises(OrderValidationError):
            self.make_order([{'product_id': self.apple.id, 'quantity': 0}])

    def test_validation_error_duplicate_products(self):
        items = [
            {'product_id': self.apple.id, 'quantity': 5},
            {'product_id': self.apple.id, 'quantity': 3}  # Duplicate
        ]

        with self.assertRaises(OrderValidationError) as context:
            self.make_order(items)

        self.assertIn('duplicate', str(context.exception).lower())

    def test_shipping_address_required(self):
        with self.assertRaises(OrderValidationError):
            self.make_order(shipping_address='')


class OrderNumberTestCase(OrderFixturesMixin, TestCase):

    def test_sequential_number_restarts_each_day(self):
        self.assertEqual(sequential_order_number(date(2026, 3, 1)), 'ORD-20260301-0001')

        self.make_order(order_number='ORD-20260301-0001')
        self.make_order(order_number='ORD-20260301-0002')

        self.assertEqual(sequential_order_number(date(2026, 3, 1)), 'ORD-20260301-0003')
        self.assertEqual(sequential_order_number(date(2026, 3, 2)), 'ORD-20260302-0001')

    def test_admin_orders_use_sequential_numbers(self):
        first = self.make_order()
        second = self.make_order()

        prefix = f"ORD-{timezone.localdate():%Y%m%d}-"
        self.assertEqual(first.order_number, f"{prefix}0001")
        self.assertEqual(second.order_number, f"{prefix}0002")

    def test_checkout_number_uses_timestamp_and_user(self):
        now = datetime(2026, 3, 1, 8, 30, tzinfo=dt_timezone.utc)

        self.assertEqual(
            checkout_order_number(self.buyer, now=now),
            f"ORD-{int(now.timestamp())}-{self.buyer.pk}"
        )


class OrderStatusTestCase(OrderFixturesMixin, TestCase):
    """Test cases for status transitions and stock reconciliation."""

    def test_processing_deducts_stock(self):
        order = self.make_order([{'product_id': self.apple.id, 'quantity': 4}])

        update_order_status(order, Order.Status.PROCESSING, actor=self.admin)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertTrue(order.items.get().stock_deducted)
        self.assertStock(self.apple, 96)
        self.assertTotalInvariant(order)

    def test_same_status_twice_deducts_once(self):
        """
        Given: An order already moved to processing
        When: processing is applied again
        Then: Stock is not deducted a second time, but the call is logged
        """
        order = self.make_order([{'product_id': self.apple.id, 'quantity': 4}])

        update_order_status(order, Order.Status.PROCESSING)
        update_order_status(order, Order.Status.PROCESSING)

        self.assertStock(self.apple, 96)
        self.assertEqual(order.status_logs.count(), 2)

    def test_cancel_restores_stock_and_is_terminal(self):
        order = self.make_order([{'product_id': self.mango.id, 'quantity': 7}])
        update_order_status(order, Order.Status.PROCESSING)
        self.assertStock(self.mango, 43)

        update_order_status(order, Order.Status.CANCELLED)
        self.assertStock(self.mango, 50)

        with self.assertRaises(InvalidStatusTransition):
            update_order_status(order, Order.Status.PROCESSING)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertStock(self.mango, 50)

    def test_delivered_is_terminal(self):
        order = self.make_order()
        update_order_status(order, Order.Status.DELIVERED)

        for new_status in (Order.Status.PENDING, Order.Status.PROCESSING, Order.Status.CANCELLED):
            with self.assertRaises(InvalidStatusTransition):
                update_order_status(order, new_status)

    def test_backward_transition_rejected(self):
        order = self.make_order()
        update_order_status(order, Order.Status.SHIPPED)

        with self.assertRaises(InvalidStatusTransition):
            update_order_status(order, Order.Status.PROCESSING)

    def test_unknown_status_rejected(self):
        order = self.make_order()

        with self.assertRaises(OrderValidationError):
            update_order_status(order, 'packed')

    def test_processing_skips_short_line_with_warning(self):
        """
        Given: Stock dropped below an order's quantity after creation
        When: The order moves to processing
        Then: That line is skipped (not failed), the others are deducted
        """
        order = self.make_order([
            {'product_id': self.apple.id, 'quantity': 2},
            {'product_id': self.durian.id, 'quantity': 4}
        ])
        adjust_stock(self.durian, 'set', 1)

        with self.assertLogs('orders.services', level='WARNING') as logs:
            update_order_status(order, Order.Status.PROCESSING)

        self.assertIn('Durian', '\n'.join(logs.output))
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertStock(self.apple, 98)
        self.assertStock(self.durian, 1)
        self.assertFalse(order.items.get(product=self.durian).stock_deducted)

        # Cancelling only returns what was actually deducted
        update_order_status(order, Order.Status.CANCELLED)
        self.assertStock(self.apple, 100)
        self.assertStock(self.durian, 1)

    def test_reserved_order_not_deducted_again_on_processing(self):
        order = self.make_order([{'product_id': self.mango.id, 'quantity': 5}], reserve_on_create=True)
        self.assertStock(self.mango, 45)

        update_order_status(order, Order.Status.PROCESSING)

        self.assertStock(self.mango, 45)

    def test_reserved_order_cancelled_from_pending_restores_stock(self):
        order = self.make_order([{'product_id': self.mango.id, 'quantity': 5}], reserve_on_create=True)

        update_order_status(order, Order.Status.CANCELLED)

        self.assertStock(self.mango, 50)

    def test_unreserved_order_cancelled_from_pending_keeps_stock(self):
        order = self.make_order([{'product_id': self.mango.id, 'quantity': 5}])

        update_order_status(order, Order.Status.CANCELLED)

        self.assertStock(self.mango, 50)

    def test_shipped_and_delivered_timestamps(self):
        order = self.make_order()

        update_order_status(order, Order.Status.SHIPPED)
        order.refresh_from_db()
        self.assertIsNotNone(order.shipped_at)
        self.assertIsNone(order.delivered_at)

        update_order_status(order, Order.Status.DELIVERED)
        order.refresh_from_db()
        self.assertIsNotNone(order.delivered_at)

    def test_stock_never_negative(self):
        first = self.make_order([{'product_id': self.durian.id, 'quantity': 4}])
        second = self.make_order([{'product_id': self.durian.id, 'quantity': 4}])

        update_order_status(first, Order.Status.PROCESSING)
        update_order_status(second, Order.Status.PROCESSING)

        self.assertStock(self.durian, 1)
        self.assertFalse(second.items.get().stock_deducted)


class BuyerCancelTestCase(OrderFixturesMixin, TestCase):

    def test_owner_cancels_processing_order(self):
        order = self.make_order([{'product_id': self.apple.id, 'quantity': 3}])
        update_order_status(order, Order.Status.PROCESSING)

        order = cancel_order(order, self.buyer)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertStock(self.apple, 100)
        log = order.status_logs.first()
        self.assertEqual(log.changed_by, self.buyer)

    def test_shipped_order_cannot_be_cancelled_by_buyer(self):
        order = self.make_order()
        update_order_status(order, Order.Status.SHIPPED)

        with self.assertRaises(InvalidStatusTransition):
            cancel_order(order, self.buyer)

    def test_other_user_cannot_cancel(self):
        order = self.make_order()

        with self.assertRaises(OrderValidationError):
            cancel_order(order, self.admin)

    def test_cancel_checks_stored_status(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(status=Order.Status.SHIPPED)

        with self.assertRaises(InvalidStatusTransition):
            cancel_order(order, self.buyer)

        self.assertStock(self.apple, 100)


class OrderDetailsTestCase(OrderFixturesMixin, TestCase):

    def test_adjustments_recompute_total(self):
        order = self.make_order()

        order = update_order_details(
            order,
            actor=self.admin,
            shipping_cost=Decimal('15000'),
            discount_amount=Decimal('5000'),
            tracking_number='JNE123'
        )

        self.assertEqual(order.total_amount, Decimal('70000.00'))
        self.assertEqual(order.tracking_number, 'JNE123')
        self.assertTotalInvariant(order)

    def test_negative_total_rejected(self):
        order = self.make_order()

        with self.assertRaises(OrderValidationError):
            update_order_details(order, discount_amount=Decimal('100000'))

        order.refresh_from_db()
        self.assertEqual(order.discount_amount, Decimal('0.00'))
        self.assertEqual(order.total_amount, Decimal('60000.00'))

    def test_negative_amount_rejected(self):
        order = self.make_order()

        with self.assertRaises(OrderValidationError):
            update_order_details(order, shipping_cost=Decimal('-1'))

    def test_unknown_field_rejected(self):
        order = self.make_order()

        with self.assertRaises(OrderValidationError):
            update_order_details(order, status='delivered')

    def test_recompute_total_after_item_change(self):
        order = self.make_order()
        OrderItem.objects.filter(order=order).update(quantity=5)

        recompute_total(order)

        self.assertEqual(order.total_amount, Decimal('150000.00'))
        self.assertTotalInvariant(order)


class OrderDeletionTestCase(OrderFixturesMixin, TestCase):

    def test_only_cancelled_orders_deleted(self):
        order = self.make_order()

        for order_status in (
            Order.Status.PENDING,
            Order.Status.PROCESSING,
            Order.Status.SHIPPED,
            Order.Status.DELIVERED,
        ):
            Order.objects.filter(pk=order.pk).update(status=order_status)
            order.refresh_from_db()
            with self.assertRaises(OrderDeletionError):
                delete_order(order)
            self.assertTrue(Order.objects.filter(pk=order.pk).exists())

    def test_cancelled_order_deleted_with_items(self):
        order = self.make_order()
        update_order_status(order, Order.Status.CANCELLED, actor=self.admin)
        order_number = order.order_number

        delete_order(order)

        self.assertFalse(Order.objects.filter(order_number=order_number).exists())
        self.assertEqual(OrderItem.objects.count(), 0)
        # The audit trail outlives the order
        log = OrderStatusLog.objects.get(order_number=order_number)
        self.assertIsNone(log.order)

    def test_status_change_updates_callers_instance(self):
        order = self.make_order()

        update_order_status(order, Order.Status.SHIPPED)

        self.assertEqual(order.status, Order.Status.SHIPPED)
        self.assertIsNotNone(order.shipped_at)

    def test_delete_uses_stored_status(self):
        """
        Given: An instance loaded while the order was pending
        When: The order is cancelled through another copy and then deleted
        Then: The stored status decides, so the stale copy can be deleted
        """
        stale = self.make_order()
        update_order_status(Order.objects.get(pk=stale.pk), Order.Status.CANCELLED)

        delete_order(stale)

        self.assertFalse(Order.objects.filter(pk=stale.pk).exists())

    def test_stale_cancelled_instance_not_deleted(self):
        order = self.make_order()
        order.status = Order.Status.CANCELLED

        with self.assertRaises(OrderDeletionError):
            delete_order(order)

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())


class OrderStatusLogTestCase(OrderFixturesMixin, TestCase):

    def test_change_recorded_with_actor_and_notes(self):
        order = self.make_order()

        update_order_status(order, Order.Status.PROCESSING, actor=self.admin, notes='Packed by warehouse B')

        log = order.status_logs.get()
        self.assertEqual(log.old_status, Order.Status.PENDING)
        self.assertEqual(log.new_status, Order.Status.PROCESSING)
        self.assertEqual(log.changed_by, self.admin)
        self.assertEqual(log.notes, 'Packed by warehouse B')
        order.refresh_from_db()
        self.assertEqual(order.notes, '')

    def test_log_entries_are_immutable(self):
        order = self.make_order()
        update_order_status(order, Order.Status.PROCESSING)
        log = order.status_logs.get()

        log.notes = 'rewritten'
        with self.assertRaises(ValueError):
            log.save()

    def test_rejected_transition_not_logged(self):
        order = self.make_order()
        update_order_status(order, Order.Status.CANCELLED)

        with self.assertRaises(InvalidStatusTransition):
            update_order_status(order, Order.Status.SHIPPED)

        self.assertEqual(order.status_logs.count(), 1)


class BulkActionTestCase(OrderFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.orders = [
            self.make_order([{'product_id': self.apple.id, 'quantity': 2}])
            for _ in range(5)
        ]
        self.order_ids = [order.id for order in self.orders]

    def test_bulk_update_status(self):
        result = bulk_update_status(self.order_ids, Order.Status.PROCESSING, actor=self.admin)

        self.assertEqual(result.updated, self.order_ids)
        self.assertEqual(result.skipped, {})
        self.assertEqual(Order.objects.filter(status=Order.Status.PROCESSING).count(), 5)
        self.assertStock(self.apple, 90)

    def test_bulk_update_skips_disallowed_transitions(self):
        update_order_status(self.orders[0], Order.Status.DELIVERED)

        result = bulk_update_status(self.order_ids + [99999], Order.Status.PROCESSING)

        self.assertEqual(result.updated, self.order_ids[1:])
        self.assertIn(self.order_ids[0], result.skipped)
        self.assertEqual(result.skipped[99999], 'order not found')
        self.orders[0].refresh_from_db()
        self.assertEqual(self.orders[0].status, Order.Status.DELIVERED)

    def test_bulk_update_rolls_back_on_store_failure(self):
        """
        Given: Five pending orders
        When: Writing the third order's status change fails
        Then: No order changes status and no stock deduction persists
        """
        real_record = services.record_status_change
        calls = []

        def failing_record(*args, **kwargs):
            calls.append(args)
            if len(calls) == 3:
                raise DatabaseError('simulated store failure')
            return real_record(*args, **kwargs)

        with patch('orders.services.record_status_change', side_effect=failing_record):
            with self.assertRaises(DatabaseError):
                bulk_update_status(self.order_ids, Order.Status.PROCESSING)

        self.assertEqual(Order.objects.filter(status=Order.Status.PENDING).count(), 5)
        self.assertStock(self.apple, 100)
        self.assertFalse(OrderItem.objects.filter(stock_deducted=True).exists())
        self.assertEqual(OrderStatusLog.objects.count(), 0)

    def test_bulk_delete_only_cancelled(self):
        update_order_status(self.orders[0], Order.Status.CANCELLED)
        update_order_status(self.orders[1], Order.Status.CANCELLED)

        result = bulk_delete(self.order_ids)

        self.assertEqual(sorted(result.updated), self.order_ids[:2])
        self.assertEqual(set(result.skipped), set(self.order_ids[2:]))
        self.assertEqual(Order.objects.count(), 3)


class OrderStatisticsTestCase(OrderFixturesMixin, TestCase):

    def test_counts_and_delivered_revenue(self):
        delivered = self.make_order()
        update_order_status(delivered, Order.Status.DELIVERED)
        cancelled = self.make_order()
        update_order_status(cancelled, Order.Status.CANCELLED)
        self.make_order()

        stats = order_statistics()

        self.assertEqual(stats['total_orders'], 3)
        self.assertEqual(stats['pending_orders'], 1)
        self.assertEqual(stats['completed_orders'], 1)
        self.assertEqual(stats['cancelled_orders'], 1)
        self.assertEqual(stats['total_revenue'], '60000.00')
        self.assertEqual(stats['today_orders'], 3)

    def test_daily_report_covers_yesterday_only(self):
        """
        Given: One delivered order from yesterday and one pending order from today
        When: The daily report task runs
        Then: Only yesterday's order is counted and no today/month figures are reported
        """
        yesterday_order = self.make_order()
        update_order_status(yesterday_order, Order.Status.DELIVERED)
        Order.objects.filter(pk=yesterday_order.pk).update(created_at=timezone.now() - timedelta(days=1))
        self.make_order()

        with self.assertLogs('orders.tasks', level='INFO'):
            stats = generate_daily_order_report()

        self.assertEqual(stats['total_orders'], 1)
        self.assertEqual(stats['completed_orders'], 1)
        self.assertEqual(stats['total_revenue'], '60000.00')
        self.assertNotIn('today_orders', stats)
        self.assertNotIn('month_revenue', stats)


class OrderExportTestCase(OrderFixturesMixin, TestCase):

    def test_csv_has_bom_header_and_one_row_per_order(self):
        order = self.make_order(
            [
                {'product_id': self.apple.id, 'quantity': 1},
                {'product_id': self.mango.id, 'quantity': 2}
            ],
            notes='Ring the bell'
        )

        content = export_orders_csv(Order.objects.prefetch_related('items'))

        self.assertTrue(content.startswith(CSV_BOM))
        lines = content[len(CSV_BOM):].splitlines()
        self.assertEqual(lines[0], ','.join(EXPORT_COLUMNS))
        self.assertEqual(len(lines), 2)
        row = lines[1].split(',')
        self.assertEqual(row[0], order.order_number)
        self.assertEqual(row[1], 'Budi Santoso')
        self.assertEqual(row[2], 'budi@example.com')
        self.assertEqual(row[3], 'pending')
        self.assertEqual(row[4], '80000.00')
        self.assertEqual(row[5], '2')
        self.assertEqual(row[-1], 'Ring the bell')


class OrderModelTestCase(OrderFixturesMixin, TestCase):
    """Test cases for Order model properties."""

    def test_order_status_properties(self):
        order = self.make_order()

        self.assertEqual(order.status_label, 'Awaiting Confirmation')
        self.assertFalse(order.is_terminal)

        update_order_status(order, Order.Status.CANCELLED)
        order.refresh_from_db()

        self.assertTrue(order.is_cancelled)
        self.assertTrue(order.is_terminal)

    def test_order_item_subtotal(self):
        order = self.make_order()
        item = order.items.get()

        self.assertEqual(item.price, Decimal('30000.00'))
        self.assertEqual(item.subtotal, Decimal('60000.00'))

    def test_price_snapshot_survives_product_price_change(self):
        order = self.make_order()
        Product.objects.filter(pk=self.apple.pk).update(price=Decimal('45000.00'))

        recompute_total(order)

        self.assertEqual(order.total_amount, Decimal('60000.00'))


@override_settings(RATE_LIMIT_ENABLED=False)
class BuyerOrderAPITestCase(OrderFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.buyer)

    def test_list_only_own_orders(self):
        own = self.make_order()
        create_order(self.admin, [{'product_id': self.apple.id, 'quantity': 1}], shipping_address='Jl. Lain')

        response = self.client.get('/api/orders/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['order_number'], own.order_number)

    def test_other_users_order_not_found(self):
        other = create_order(self.admin, [{'product_id': self.apple.id, 'quantity': 1}], shipping_address='Jl. Lain')

        response = self.client.get(f'/api/orders/{other.id}/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_cancel_pending_order(self):
        order = self.make_order()

        response = self.client.patch(f'/api/orders/{order.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order']['status'], 'cancelled')

    def test_cancel_shipped_order_conflict(self):
        order = self.make_order()
        update_order_status(order, Order.Status.SHIPPED)

        response = self.client.patch(f'/api/orders/{order.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Invalid Status Transition')

    def test_buyer_cannot_reach_admin_endpoints(self):
        response = self.client.get('/api/admin/orders/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


@override_settings(RATE_LIMIT_ENABLED=False)
class AdminOrderAPITestCase(OrderFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin)

    def test_create_order(self):
        payload = {
            'user_id': self.buyer.id,
            'items': [
                {'product_id': self.apple.id, 'quantity': 2},
                {'product_id': self.mango.id, 'quantity': 1}
            ],
            'shipping_address': 'Jl. Sudirman 5, Bandung',
            'shipping_cost': '15000.00'
        }

        response = self.client.post('/api/admin/orders/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['total_amount'], '100000.00')
        self.assertTrue(response.data['order_number'].startswith('ORD-'))
        self.assertStock(self.apple, 100)

    def test_create_order_insufficient_stock(self):
        payload = {
            'user_id': self.buyer.id,
            'items': [{'product_id': self.durian.id, 'quantity': 6}],
            'shipping_address': 'Jl. Sudirman 5, Bandung'
        }

        response = self.client.post('/api/admin/orders/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['product'], 'Durian')
        self.assertEqual(response.data['available'], 5)
        self.assertEqual(Order.objects.count(), 0)

    def test_list_filters(self):
        first = self.make_order()
        second = self.make_order()
        update_order_status(second, Order.Status.PROCESSING)

        response = self.client.get('/api/admin/orders/', {'status': 'processing'})
        self.assertEqual([row['id'] for row in response.data['results']], [second.id])

        response = self.client.get('/api/admin/orders/', {'search': 'budi'})
        self.assertEqual(response.data['count'], 2)

        response = self.client.get('/api/admin/orders/', {'search': first.order_number})
        self.assertEqual([row['id'] for row in response.data['results']], [first.id])

    def test_patch_status_and_adjustments(self):
        order = self.make_order()

        response = self.client.patch(
            f'/api/admin/orders/{order.id}/',
            {'status': 'processing', 'status_notes': 'Confirmed by phone', 'discount_amount': '10000'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'processing')
        self.assertEqual(response.data['total_amount'], '50000.00')
        self.assertEqual(response.data['status_history'][0]['notes'], 'Confirmed by phone')
        self.assertStock(self.apple, 98)

    def test_patch_negative_total_rolls_back_status(self):
        order = self.make_order()

        response = self.client.patch(
            f'/api/admin/orders/{order.id}/',
            {'status': 'processing', 'discount_amount': '999999'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertStock(self.apple, 100)

    def test_invalid_transition_conflict(self):
        order = self.make_order()
        update_order_status(order, Order.Status.CANCELLED)

        response = self.client.patch(
            f'/api/admin/orders/{order.id}/status/',
            {'status': 'processing'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_invalid_status_value(self):
        order = self.make_order()

        response = self.client.patch(
            f'/api/admin/orders/{order.id}/status/',
            {'status': 'packed'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('status', response.data)

    def test_delete_requires_cancelled(self):
        order = self.make_order()

        response = self.client.delete(f'/api/admin/orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        update_order_status(order, Order.Status.CANCELLED)
        response = self.client.delete(f'/api/admin/orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

    def test_bulk_update_status(self):
        orders = [self.make_order() for _ in range(3)]
        update_order_status(orders[0], Order.Status.DELIVERED)

        response = self.client.post(
            '/api/admin/orders/bulk-action/',
            {'action': 'update_status', 'order_ids': [o.id for o in orders], 'status': 'shipped'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['processed'], [orders[1].id, orders[2].id])
        self.assertIn(str(orders[0].id), response.data['skipped'])

    def test_bulk_update_requires_status(self):
        order = self.make_order()

        response = self.client.post(
            '/api/admin/orders/bulk-action/',
            {'action': 'update_status', 'order_ids': [order.id]},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_bulk_export(self):
        orders = [self.make_order() for _ in range(2)]

        response = self.client.post(
            '/api/admin/orders/bulk-action/',
            {'action': 'export', 'order_ids': [orders[0].id]},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/csv; charset=utf-8')
        self.assertIn('attachment; filename="orders_', response['Content-Disposition'])
        content = response.content.decode('utf-8')
        self.assertTrue(content.startswith(CSV_BOM))
        self.assertIn(orders[0].order_number, content)
        self.assertNotIn(orders[1].order_number, content)

    def test_export_with_filters(self):
        pending = self.make_order()
        cancelled = self.make_order()
        update_order_status(cancelled, Order.Status.CANCELLED)

        response = self.client.get('/api/admin/orders/export/', {'status': 'cancelled'})

        content = response.content.decode('utf-8')
        self.assertIn(cancelled.order_number, content)
        self.assertNotIn(pending.order_number, content)

    def test_stats(self):
        self.make_order()

        response = self.client.get('/api/admin/orders/stats/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pending_orders'], 1)

    def test_database_error_answers_generic_500(self):
        order = self.make_order()

        with patch('orders.views.update_order_status', side_effect=DatabaseError('connection lost')):
            response = self.client.patch(
                f'/api/admin/orders/{order.id}/status/',
                {'status': 'processing'},
                format='json'
            )

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['detail'], 'An unexpected error occurred')


@override_settings(LOW_STOCK_THRESHOLD=10)
class ReportTestCase(OrderFixturesMixin, TestCase):
    """Back-office reports over one delivered, one cancelled and one pending order."""

    def setUp(self):
        super().setUp()
        self.delivered = self.make_order(
            [{'product_id': self.apple.id, 'quantity': 2}],
            shipping_cost=Decimal('15000'),
            tax_amount=Decimal('6000')
        )
        update_order_status(self.delivered, Order.Status.DELIVERED)
        self.cancelled = self.make_order([{'product_id': self.mango.id, 'quantity': 1}])
        update_order_status(self.cancelled, Order.Status.CANCELLED)
        self.pending = self.make_order([{'product_id': self.durian.id, 'quantity': 1}])
        self.today = timezone.localdate()
        self.period = ReportPeriod(self.today, self.today)

    def test_sales_report(self):
        report = sales_report(self.period)

        self.assertEqual(report['status'], 'all')
        self.assertEqual(report['summary']['total_orders'], 3)
        self.assertEqual(report['summary']['completed_orders'], 1)
        self.assertEqual(report['summary']['cancelled_orders'], 1)
        # 81000 + 25000 + 120000
        self.assertEqual(report['summary']['gross_amount'], '226000.00')
        self.assertEqual(
            report['daily'],
            [{'date': self.today.isoformat(), 'orders': 3, 'amount': '226000.00'}]
        )
        self.assertEqual(len(report['orders']), 3)

    def test_sales_report_status_filter(self):
        report = sales_report(self.period, Order.Status.DELIVERED)

        self.assertEqual([row['order_number'] for row in report['orders']], [self.delivered.order_number])
        self.assertEqual(report['orders'][0]['items_count'], 1)
        self.assertEqual(report['orders'][0]['customer_name'], 'Budi Santoso')

    def test_sales_report_rejects_unknown_status(self):
        with self.assertRaises(OrderValidationError):
            sales_report(self.period, 'packed')

    def test_sales_report_outside_period_is_empty(self):
        period = ReportPeriod(self.today - timedelta(days=30), self.today - timedelta(days=1))

        report = sales_report(period)

        self.assertEqual(report['summary']['total_orders'], 0)
        self.assertEqual(report['summary']['gross_amount'], '0.00')
        self.assertEqual(report['orders'], [])

    def test_period_defaults_to_current_month(self):
        period = ReportPeriod.from_params({})

        self.assertEqual(period.start, self.today.replace(day=1))
        self.assertEqual(period.end.month, self.today.month)
        self.assertGreaterEqual(period.end, self.today)

    def test_period_rejects_bad_dates(self):
        with self.assertRaises(OrderValidationError):
            ReportPeriod.from_params({'start_date': '2026-13-01'})
        with self.assertRaises(OrderValidationError):
            ReportPeriod.from_params({'start_date': '2026-10-18', 'end_date': '2026-10-01'})

    def test_products_report_ignores_cancelled_orders(self):
        report = products_report()

        products = {record['name']: record for record in report['products']}
        self.assertEqual([record['name'] for record in report['products']], ['Apple 1kg', 'Durian', 'Mango 1kg'])
        self.assertEqual(products['Apple 1kg']['total_sold'], 2)
        self.assertEqual(products['Apple 1kg']['revenue'], '60000.00')
        self.assertEqual(products['Mango 1kg']['total_sold'], 0)
        self.assertEqual(products['Mango 1kg']['revenue'], '0.00')
        self.assertEqual(report['summary']['total_sold'], 3)
        self.assertEqual(report['summary']['total_revenue'], '180000.00')
        self.assertEqual(report['summary']['low_stock_products'], 1)

    def test_products_report_by_category(self):
        vegetables = Category.objects.create(name='Vegetables')
        Product.objects.create(name='Spinach', price=Decimal('5000.00'), stock=30, category=vegetables)

        report = products_report(vegetables.id)

        self.assertEqual([record['name'] for record in report['products']], ['Spinach'])

    def test_customers_report(self):
        report = customers_report()

        self.assertEqual(report['summary']['customer_count'], 1)
        customer = report['customers'][0]
        self.assertEqual(customer['email'], 'budi@example.com')
        self.assertEqual(customer['order_count'], 3)
        self.assertEqual(customer['total_spent'], '81000.00')
        self.assertIsNotNone(customer['last_order_at'])

    def test_financial_report_counts_delivered_orders_only(self):
        report = financial_report(self.period)

        self.assertEqual(report['summary']['order_count'], 1)
        self.assertEqual(report['summary']['gross_revenue'], '81000.00')
        self.assertEqual(report['summary']['tax'], '6000.00')
        self.assertEqual(report['summary']['shipping'], '15000.00')
        self.assertEqual(report['summary']['net_revenue'], '75000.00')
        self.assertEqual(report['orders'][0]['order_number'], self.delivered.order_number)
        self.assertEqual(report['orders'][0]['net_revenue'], '75000.00')


class BuyerDashboardTestCase(OrderFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.delivered = self.make_order([{'product_id': self.mango.id, 'quantity': 1}])
        update_order_status(self.delivered, Order.Status.DELIVERED)
        self.make_order([{'product_id': self.apple.id, 'quantity': 1}])
        Product.objects.create(name='Discontinued Jam', price=Decimal('9000.00'), stock=0, is_active=False)

    def test_popular_products_ranked_by_delivered_lines(self):
        products = list(popular_products())

        self.assertEqual(products[0], self.mango)
        self.assertEqual(products[0].sold_count, 1)
        self.assertEqual(products[1].sold_count, 0)
        self.assertNotIn('Discontinued Jam', [product.name for product in products])

    def test_buyer_stats(self):
        add_to_cart(self.buyer, self.durian, 2)

        stats = buyer_stats(self.buyer)

        self.assertEqual(stats['total_products'], 3)
        self.assertEqual(stats['cart_items_count'], 2)
        self.assertEqual(stats['cart_total_value'], '240000.00')
        self.assertEqual(stats['total_orders'], 2)
        self.assertEqual(stats['active_orders'], 1)
        self.assertEqual(stats['total_spent'], '25000.00')

    def test_stats_for_new_buyer(self):
        newcomer = User.objects.create_user(username='ani', password='secret')

        stats = buyer_stats(newcomer)

        self.assertEqual(stats['cart_items_count'], 0)
        self.assertEqual(stats['cart_total_value'], '0.00')
        self.assertEqual(stats['total_spent'], '0.00')


@override_settings(RATE_LIMIT_ENABLED=False)
class ReportAPITestCase(OrderFixturesMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.delivered = self.make_order(tax_amount=Decimal('6000'))
        update_order_status(self.delivered, Order.Status.DELIVERED)
        self.pending = self.make_order()
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin)

    def test_sales_report(self):
        response = self.client.get('/api/admin/reports/sales/', {'status': 'all'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary']['total_orders'], 2)
        self.assertEqual(response.data['period']['start_date'], timezone.localdate().replace(day=1).isoformat())

    def test_sales_report_bad_status(self):
        response = self.client.get('/api/admin/reports/sales/', {'status': 'packed'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_sales_report_bad_date(self):
        response = self.client.get('/api/admin/reports/sales/', {'start_date': 'yesterday'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_products_report_bad_category(self):
        response = self.client.get('/api/admin/reports/products/', {'category_id': 'fruits'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customers_report(self):
        response = self.client.get('/api/admin/reports/customers/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['customers'][0]['order_count'], 2)

    def test_financial_report_csv(self):
        today = timezone.localdate().isoformat()

        response = self.client.get(
            '/api/admin/reports/financial/',
            {'start_date': today, 'end_date': today, 'export': 'csv'}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/csv; charset=utf-8')
        self.assertIn(f'financial_report_{today}_to_{today}.csv', response['Content-Disposition'])
        content = response.content.decode('utf-8')
        self.assertTrue(content.startswith(CSV_BOM))
        lines = content[len(CSV_BOM):].splitlines()
        self.assertEqual(lines[0], 'Date,Order Number,Customer,Gross Revenue,Tax,Net Revenue,Status')
        self.assertEqual(len(lines), 2)
        self.assertIn(self.delivered.order_number, lines[1])

    def test_reports_are_admin_only(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/admin/reports/sales/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_buyer_dashboard(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/dashboard/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['popular_products'][0]['name'], 'Apple 1kg')
        self.assertEqual(response.data['popular_products'][0]['sold_count'], 1)
        self.assertEqual(response.data['popular_products'][0]['category'], 'Fruits')
        self.assertEqual(
            [order['order_number'] for order in response.data['recent_orders']],
            [self.pending.order_number, self.delivered.order_number]
        )
        self.assertEqual(response.data['cart_items'], [])
        self.assertEqual(response.data['stats']['total_orders'], 2)
