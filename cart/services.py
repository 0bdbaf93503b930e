"""
Cart services - cart row maintenance and the buy-now stash.

Buy now swaps the user's cart for a single product: the current rows are
stashed in the user's CheckoutSession, the cart is emptied and only the
chosen product is added. The stash is put back after checkout or when the
checkout is cancelled.
"""
import logging

from django.db import transaction
from django.db.models import F

from catalog.models import Product
from orders.exceptions import InsufficientStockError, OrderValidationError
from .models import CartItem, CheckoutSession

logger = logging.getLogger(__name__)


def _ensure_available(product: Product, quantity: int) -> None:
    if not product.is_active:
        raise OrderValidationError(f"Product '{product.name}' is no longer available")
    if product.stock < quantity:
        raise InsufficientStockError(product.id, product.name, quantity, product.stock)


@transaction.atomic
def add_to_cart(user, product: Product, quantity: int) -> CartItem:
    """Add ``quantity`` of a product, merging into an existing row."""
    item, created = CartItem.objects.select_for_update().get_or_create(
        user=user,
        product=product,
        defaults={'quantity': quantity}
    )
    if not created:
        _ensure_available(product, item.quantity + quantity)
        CartItem.objects.filter(pk=item.pk).update(quantity=F('quantity') + quantity)
        item.refresh_from_db()
    else:
        _ensure_available(product, quantity)

    logger.info(f"User {user.pk} cart: {product.name} now x{item.quantity}")
    return item


def update_cart_quantity(item: CartItem, quantity: int) -> CartItem:
    _ensure_available(item.product, quantity)
    item.quantity = quantity
    item.save(update_fields=['quantity', 'updated_at'])
    return item


def remove_from_cart(item: CartItem) -> str:
    """Delete a cart row; returns the product name for the confirmation message."""
    product_name = item.product.name
    item.delete()
    return product_name


@transaction.atomic
def buy_now(user, product: Product, quantity: int, session: CheckoutSession) -> CartItem:
    """
    Stash the current cart and leave only ``product`` in it.

    Raises:
        InsufficientStockError: If the product cannot cover ``quantity``
    """
    _ensure_available(product, quantity)

    existing = CartItem.objects.filter(user=user)
    # A second buy-now keeps the cart stashed by the first one
    if not session.buy_now_mode:
        session.stash(existing)
    existing.delete()

    item = CartItem.objects.create(user=user, product=product, quantity=quantity)
    logger.info(
        f"User {user.pk} buy now: {product.name} x{quantity}, "
        f"{len(session.saved_cart_items)} cart items stashed"
    )
    return item


@transaction.atomic
def restore_saved_cart(user, session: CheckoutSession, check_stock: bool = True) -> int:
    """
    Replace the cart with the stashed rows and clear the session.

    Rows for products that no longer exist are dropped; with check_stock,
    so are rows whose quantity now exceeds stock.

    Returns:
        Number of cart rows restored
    """
    saved = list(session.saved_cart_items or [])
    if not saved:
        session.clear()
        return 0

    CartItem.objects.filter(user=user).delete()

    products = Product.objects.in_bulk([entry['product_id'] for entry in saved])
    restored = []
    for entry in saved:
        product = products.get(entry['product_id'])
        if product is None:
            continue
        if check_stock and product.stock < entry['quantity']:
            logger.info(
                f"User {user.pk}: not restoring {product.name} x{entry['quantity']}, "
                f"only {product.stock} in stock"
            )
            continue
        restored.append(CartItem(user=user, product=product, quantity=entry['quantity']))

    CartItem.objects.bulk_create(restored)
    session.clear()
    return len(restored)


def cancel_checkout(user, session: CheckoutSession) -> bool:
    """
    Abandon checkout. In buy-now mode the stashed cart is restored.

    Returns:
        True if a stashed cart was restored
    """
    if not (session.buy_now_mode and session.has_saved_cart):
        if session.buy_now_mode:
            session.clear()
        return False

    restore_saved_cart(user, session, check_stock=True)
    return True
