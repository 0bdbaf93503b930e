"""
Order Models - Order, OrderItem and the status audit log.

Order Status Flow:
    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled
    delivered and cancelled are terminal.
"""
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from catalog.models import Product


class Order(models.Model):
    """
    Order entity representing a customer's purchase.

    total_amount is derived: subtotal of items + shipping_cost + tax_amount
    - discount_amount, kept in sync by orders.services.recompute_total.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Awaiting Confirmation'
        PROCESSING = 'processing', 'Processing'
        SHIPPED = 'shipped', 'Shipped'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    class PaymentMethod(models.TextChoices):
        BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'
        COD = 'cod', 'Cash on Delivery'
        EWALLET = 'ewallet', 'E-Wallet'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='orders',
        help_text="Customer who owns the order"
    )
    order_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Human-facing order number"
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    total_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Items subtotal + shipping + tax - discount"
    )
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    shipping_address = models.TextField(help_text="Delivery address")
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        blank=True,
        default=''
    )
    notes = models.TextField(blank=True, default='')
    tracking_number = models.CharField(max_length=100, blank=True, default='')
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status'], name='orders_orde_user_id_5b1c3d_idx'),
            models.Index(fields=['status', 'created_at'], name='orders_orde_status_9e2f4a_idx'),
        ]

    def __str__(self):
        return f"Order {self.order_number} ({self.status})"

    @property
    def subtotal(self) -> Decimal:
        """Sum of quantity x snapshot price over all items."""
        return sum((item.subtotal for item in self.items.all()), Decimal('0.00'))

    @property
    def item_count(self) -> int:
        return len(self.items.all())

    @property
    def status_label(self) -> str:
        return self.get_status_display()

    @property
    def is_cancelled(self) -> bool:
        return self.status == self.Status.CANCELLED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({Order.Status.DELIVERED.value, Order.Status.CANCELLED.value})

# Statuses a buyer still sees as "in progress"
ACTIVE_STATUSES = (Order.Status.PENDING.value, Order.Status.PROCESSING.value, Order.Status.SHIPPED.value)

# Statuses from which the buyer may cancel their own order
BUYER_CANCELLABLE_STATUSES = (Order.Status.PENDING.value, Order.Status.PROCESSING.value)

# Forward moves only; re-applying the current status is always accepted
ALLOWED_TRANSITIONS = {
    Order.Status.PENDING.value: frozenset({
        Order.Status.PROCESSING.value,
        Order.Status.SHIPPED.value,
        Order.Status.DELIVERED.value,
        Order.Status.CANCELLED.value,
    }),
    Order.Status.PROCESSING.value: frozenset({
        Order.Status.SHIPPED.value,
        Order.Status.DELIVERED.value,
        Order.Status.CANCELLED.value,
    }),
    Order.Status.SHIPPED.value: frozenset({Order.Status.DELIVERED.value}),
    Order.Status.DELIVERED.value: frozenset(),
    Order.Status.CANCELLED.value: frozenset(),
}


class OrderItem(models.Model):
    """
    OrderItem entity representing a product line in an order.

    ``price`` is the unit price at order time and is never re-read from the
    product. ``stock_deducted`` records whether this line's quantity is
    currently taken out of the product's stock.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='order_items',
        help_text="Ordered product"
    )
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Unit price at time of order"
    )
    stock_deducted = models.BooleanField(
        default=False,
        help_text="Whether this quantity is currently deducted from stock"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product.name} @ Rp {self.price}"

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.quantity * self.price


class OrderStatusLog(models.Model):
    """
    Append-only record of every status change.

    Entries outlive their order: the foreign key is nulled on deletion and
    the order number is kept as a snapshot.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.SET_NULL,
        null=True,
        related_name='status_logs'
    )
    order_number = models.CharField(max_length=50, db_index=True)
    old_status = models.CharField(max_length=20, choices=Order.Status.choices)
    new_status = models.CharField(max_length=20, choices=Order.Status.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='order_status_changes'
    )
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Order Status Log'
        verbose_name_plural = 'Order Status Logs'
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.order_number}: {self.old_status} -> {self.new_status}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Order status log entries are immutable")
        super().save(*args, **kwargs)
