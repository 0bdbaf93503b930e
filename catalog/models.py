"""
Catalog Models - grocery categories and products with their stock level.

Models:
    - Category: Product categorization
    - Product: Items available for sale, carrying the stock ledger balance
"""
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Category(models.Model):
    """
    Product category for organizing the storefront.
    """
    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique category name"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product entity representing a grocery item available for sale.

    ``stock`` is only changed through catalog.services so that it can
    never drop below zero.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Unit price (must be positive)"
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Units currently available"
    )
    image = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Stored image path"
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='products',
        help_text="Product category"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active'], name='catalog_pro_name_6d4a2e_idx'),
            models.Index(fields=['category', 'is_active'], name='catalog_pro_categor_1f0b7c_idx'),
            models.Index(fields=['stock'], name='catalog_pro_stock_8c3e51_idx'),
        ]

    def __str__(self):
        return f"{self.name} (Rp {self.price})"

    @property
    def is_low_stock(self) -> bool:
        """Check if stock is at or below the low stock threshold."""
        return self.stock <= settings.LOW_STOCK_THRESHOLD

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock == 0
