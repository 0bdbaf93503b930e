"""
Cart Models - persistent cart rows and the per-user checkout session.

CheckoutSession replaces ad-hoc session keys for the buy-now flow: it is
loaded explicitly for a user and handed to the services that need it.
"""
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from catalog.models import Product


class CartItem(models.Model):
    """
    A product line in a user's cart. One row per user and product.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='cart_items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='cart_items'
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Cart Item'
        verbose_name_plural = 'Cart Items'
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'product'],
                name='unique_user_product_cart_item'
            )
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product.name} ({self.user})"

    @property
    def subtotal(self) -> Decimal:
        """Line total at the product's current price."""
        return self.quantity * self.product.price


class CheckoutSession(models.Model):
    """
    Server-side checkout state for one user.

    In buy-now mode the user's previous cart is kept in saved_cart_items
    as a list of {"product_id", "quantity"} dicts until checkout completes
    or is cancelled.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='checkout_session'
    )
    buy_now_mode = models.BooleanField(default=False)
    saved_cart_items = models.JSONField(default=list, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Checkout Session'
        verbose_name_plural = 'Checkout Sessions'

    def __str__(self):
        mode = 'buy now' if self.buy_now_mode else 'cart'
        return f"Checkout session for {self.user} ({mode})"

    @classmethod
    def for_user(cls, user) -> 'CheckoutSession':
        session, _ = cls.objects.get_or_create(user=user)
        return session

    @property
    def has_saved_cart(self) -> bool:
        return bool(self.saved_cart_items)

    def stash(self, cart_items) -> None:
        self.buy_now_mode = True
        self.saved_cart_items = [
            {'product_id': item.product_id, 'quantity': item.quantity}
            for item in cart_items
        ]
        self.save(update_fields=['buy_now_mode', 'saved_cart_items', 'updated_at'])

    def clear(self) -> None:
        self.buy_now_mode = False
        self.saved_cart_items = []
        self.save(update_fields=['buy_now_mode', 'saved_cart_items', 'updated_at'])
