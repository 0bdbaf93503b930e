"""
Stock Ledger - the only code path that changes Product.stock.

Decrements are conditional UPDATE statements (``stock >= quantity``), so
stock cannot go negative even with concurrent writers. A decrement that
would overdraw is a no-op that reports ``applied=False`` instead of raising.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.db.models import F

from .models import Product

logger = logging.getLogger(__name__)

INSUFFICIENT_STOCK = 'insufficient stock'
UNKNOWN_PRODUCT = 'product not found'


class StockMode:
    SET = 'set'
    ADD = 'add'
    SUBTRACT = 'subtract'

    choices = [SET, ADD, SUBTRACT]


@dataclass(frozen=True)
class StockAdjustment:
    """Outcome of a single stock ledger operation."""
    product_id: int
    quantity: int
    applied: bool
    reason: Optional[str] = None


def decrement_stock(product_id: int, quantity: int) -> StockAdjustment:
    """
    Take ``quantity`` units out of stock if enough are available.

    Returns:
        StockAdjustment with applied=False when stock is insufficient.
    """
    if quantity < 1:
        raise ValueError("quantity must be a positive integer")

    updated = Product.objects.filter(
        pk=product_id,
        stock__gte=quantity
    ).update(stock=F('stock') - quantity)

    if updated:
        logger.debug(f"Stock: -{quantity} for product {product_id}")
        return StockAdjustment(product_id, quantity, applied=True)

    reason = INSUFFICIENT_STOCK if Product.objects.filter(pk=product_id).exists() else UNKNOWN_PRODUCT
    logger.warning(
        f"Stock decrement skipped for product {product_id}: "
        f"requested {quantity}, {reason}"
    )
    return StockAdjustment(product_id, quantity, applied=False, reason=reason)


def increment_stock(product_id: int, quantity: int) -> StockAdjustment:
    """Return ``quantity`` units to stock unconditionally."""
    if quantity < 1:
        raise ValueError("quantity must be a positive integer")

    updated = Product.objects.filter(pk=product_id).update(stock=F('stock') + quantity)
    if not updated:
        logger.warning(f"Stock increment skipped: product {product_id} not found")
        return StockAdjustment(product_id, quantity, applied=False, reason=UNKNOWN_PRODUCT)

    logger.debug(f"Stock: +{quantity} for product {product_id}")
    return StockAdjustment(product_id, quantity, applied=True)


@transaction.atomic
def adjust_stock(product: Product, mode: str, quantity: int) -> Product:
    """
    Admin stock adjustment.

    Args:
        product: Product to adjust
        mode: 'set' replaces the level, 'add' adds, 'subtract' removes
            (floored at zero)
        quantity: Non-negative amount

    Raises:
        ValueError: On an unknown mode or negative quantity
    """
    if mode not in StockMode.choices:
        raise ValueError(f"Unknown stock mode '{mode}'")
    if quantity < 0:
        raise ValueError("quantity must not be negative")

    locked = Product.objects.select_for_update().get(pk=product.pk)
    old_stock = locked.stock

    if mode == StockMode.SET:
        new_stock = quantity
    elif mode == StockMode.ADD:
        new_stock = old_stock + quantity
    else:
        new_stock = max(0, old_stock - quantity)

    locked.stock = new_stock
    locked.save(update_fields=['stock', 'updated_at'])

    logger.info(f"Stock for '{locked.name}' adjusted ({mode} {quantity}): {old_stock} -> {new_stock}")
    return locked
