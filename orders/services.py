"""
Order Service Layer - order creation, status lifecycle and stock reconciliation.

Creation validates stock for every line before any write and runs in a
single transaction; product rows are locked with select_for_update() in
primary key order.

Two creation paths exist and stay distinct:
    - admin create_order(): sequential ORD-YYYYMMDD-NNNN number, stock is
      left untouched until the order moves to processing
    - buyer checkout(): ORD-<timestamp>-<user id> number, stock is reserved
      immediately (reserve_on_create)

Status changes reconcile stock per order item:
    -> processing  deduct each line not yet deducted, skipping lines whose
                   product cannot cover the quantity
    -> cancelled   return every deducted line to stock
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from cart.models import CartItem, CheckoutSession
from cart.services import restore_saved_cart
from catalog.models import Product
from catalog.services import StockAdjustment, decrement_stock, increment_stock
from .exceptions import (
    InsufficientStockError,
    InvalidStatusTransition,
    OrderDeletionError,
    OrderValidationError,
)
from .models import (
    ALLOWED_TRANSITIONS,
    BUYER_CANCELLABLE_STATUSES,
    Order,
    OrderItem,
    OrderStatusLog,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

EDITABLE_ORDER_FIELDS = (
    'shipping_address',
    'payment_method',
    'tracking_number',
    'notes',
    'shipping_cost',
    'tax_amount',
    'discount_amount',
)
AMOUNT_FIELDS = ('shipping_cost', 'tax_amount', 'discount_amount')
STATUS_FIELDS = ['status', 'shipped_at', 'delivered_at', 'updated_at']


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CheckoutSummary:
    """Price breakdown shown before and applied at checkout."""
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    item_count: int


@dataclass
class BulkResult:
    """Outcome of a bulk action: processed order ids and skipped ids with reasons."""
    updated: List[int] = field(default_factory=list)
    skipped: Dict[int, str] = field(default_factory=dict)


# =============================================================================
# Order numbers
# =============================================================================

def sequential_order_number(day=None) -> str:
    """
    Admin creation path: ORD-YYYYMMDD-NNNN, sequence restarting each day.
    """
    day = day or timezone.localdate()
    prefix = f"ORD-{day:%Y%m%d}-"
    last_number = (
        Order.objects.filter(order_number__startswith=prefix)
        .order_by('-id')
        .values_list('order_number', flat=True)
        .first()
    )
    sequence = int(last_number.rsplit('-', 1)[1]) + 1 if last_number else 1
    return f"{prefix}{sequence:04d}"


def checkout_order_number(user, now=None) -> str:
    """Buyer checkout path: ORD-<unix timestamp>-<user id>."""
    now = now or timezone.now()
    return f"ORD-{int(now.timestamp())}-{user.pk}"


# =============================================================================
# Pricing
# =============================================================================

def calculate_checkout_summary(subtotal: Decimal, item_count: int) -> CheckoutSummary:
    """Apply the flat shipping cost and tax rate to a cart subtotal."""
    subtotal = to_money(subtotal)
    shipping_cost = to_money(settings.ORDER_SHIPPING_COST)
    tax = to_money(subtotal * settings.ORDER_TAX_RATE)
    return CheckoutSummary(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=subtotal + shipping_cost + tax,
        item_count=item_count,
    )


def checkout_summary(cart_items: Iterable[CartItem]) -> CheckoutSummary:
    """Checkout totals for cart rows at current product prices."""
    cart_items = list(cart_items)
    subtotal = sum((item.subtotal for item in cart_items), Decimal('0.00'))
    return calculate_checkout_summary(subtotal, len(cart_items))


def recompute_total(order: Order, save: bool = True) -> Order:
    """
    Recompute total_amount = items subtotal + shipping + tax - discount.

    Raises:
        OrderValidationError: If the adjustments would make the total negative
    """
    total = order.subtotal + order.shipping_cost + order.tax_amount - order.discount_amount
    if total < 0:
        raise OrderValidationError(
            f"Order {order.order_number}: total would be negative ({total}); "
            "reduce the discount"
        )
    order.total_amount = to_money(total)
    if save:
        order.save(update_fields=['total_amount', 'updated_at'])
    return order


# =============================================================================
# Creation
# =============================================================================

def validate_order_items(items: List[Dict]) -> None:
    """
    Validate order items structure.

    Args:
        items: List of dicts with 'product_id' and 'quantity'

    Raises:
        OrderValidationError: If validation fails
    """
    if not items:
        raise OrderValidationError("Order must contain at least one item")

    seen_products = set()
    for idx, item in enumerate(items):
        if 'product_id' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'product_id'")
        if 'quantity' not in item:
            raise OrderValidationError(f"Item {idx}: missing 'quantity'")

        product_id = item['product_id']
        quantity = item['quantity']

        if not isinstance(quantity, int) or quantity < 1:
            raise OrderValidationError(f"Item {idx}: quantity must be a positive integer")

        if product_id in seen_products:
            raise OrderValidationError(f"Item {idx}: duplicate product_id {product_id}")
        seen_products.add(product_id)


def _lock_products(product_ids: Iterable[int]) -> Dict[int, Product]:
    # Lock in primary key order to avoid deadlocks between concurrent orders
    products = Product.objects.select_for_update().filter(id__in=set(product_ids)).order_by('id')
    return {product.id: product for product in products}


def _place_order(
    user,
    lines: List[Tuple[Product, int]],
    *,
    order_number: str,
    shipping_address: str,
    payment_method: str = '',
    notes: str = '',
    shipping_cost: Decimal = Decimal('0.00'),
    tax_amount: Decimal = Decimal('0.00'),
    discount_amount: Decimal = Decimal('0.00'),
    reserve_on_create: bool = False,
) -> Order:
    """
    Persist an order and its items from locked products. Must run inside
    a transaction.
    """
    # Check every line before writing anything
    for product, quantity in lines:
        if not product.is_active:
            raise OrderValidationError(f"Product '{product.name}' is no longer available")
        if product.stock < quantity:
            raise InsufficientStockError(product.id, product.name, quantity, product.stock)

    order = Order.objects.create(
        user=user,
        order_number=order_number,
        status=Order.Status.PENDING,
        shipping_address=shipping_address,
        payment_method=payment_method or '',
        notes=notes or '',
        shipping_cost=to_money(shipping_cost),
        tax_amount=to_money(tax_amount),
        discount_amount=to_money(discount_amount),
    )

    order_items = []
    for product, quantity in lines:
        if reserve_on_create:
            result = decrement_stock(product.id, quantity)
            if not result.applied:
                product.refresh_from_db(fields=['stock'])
                raise InsufficientStockError(product.id, product.name, quantity, product.stock)
        order_items.append(OrderItem(
            order=order,
            product=product,
            quantity=quantity,
            price=product.price,
            stock_deducted=reserve_on_create,
        ))
    OrderItem.objects.bulk_create(order_items)

    recompute_total(order)

    logger.info(
        f"Created order {order.order_number} for user {user.pk}: "
        f"{len(order_items)} items, total Rp {order.total_amount}, "
        f"stock {'reserved' if reserve_on_create else 'not reserved'}"
    )
    return order


def create_order(
    user,
    items: List[Dict],
    shipping_address: str,
    payment_method: str = '',
    notes: str = '',
    shipping_cost: Decimal = Decimal('0.00'),
    tax_amount: Decimal = Decimal('0.00'),
    discount_amount: Decimal = Decimal('0.00'),
    reserve_on_create: bool = False,
    order_number: Optional[str] = None,
) -> Order:
    """
    Create an order on behalf of a customer (admin path).

    The order starts pending; stock is only deducted when it moves to
    processing unless reserve_on_create is set.

    Args:
        user: Customer owning the order
        items: List of dicts with 'product_id' and 'quantity'

    Raises:
        OrderValidationError: Malformed items, unknown or inactive products,
            or adjustments producing a negative total
        InsufficientStockError: Any line exceeds available stock; nothing
            is written
    """
    validate_order_items(items)
    if not shipping_address:
        raise OrderValidationError("Shipping address is required")

    with transaction.atomic():
        products = _lock_products(item['product_id'] for item in items)
        missing_products = {item['product_id'] for item in items} - set(products)
        if missing_products:
            raise OrderValidationError(f"Products not found: {sorted(missing_products)}")

        lines = [(products[item['product_id']], item['quantity']) for item in items]
        return _place_order(
            user,
            lines,
            order_number=order_number or sequential_order_number(),
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
            shipping_cost=shipping_cost,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            reserve_on_create=reserve_on_create,
        )


def checkout(
    user,
    cart_item_ids: List[int],
    shipping_address: str,
    payment_method: str,
    notes: str = '',
    session: Optional[CheckoutSession] = None,
) -> Order:
    """
    Buyer checkout: turn selected cart rows into an order.

    Reserves stock immediately, applies the flat shipping cost and tax,
    deletes the consumed cart rows and, in buy-now mode, restores the
    cart stashed in the checkout session. All in one transaction.

    Raises:
        OrderValidationError: No matching cart rows
        InsufficientStockError: A product cannot cover its cart quantity
    """
    with transaction.atomic():
        cart_items = list(
            CartItem.objects.filter(user=user, id__in=cart_item_ids).order_by('id')
        )
        if not cart_items:
            raise OrderValidationError("Cart items not found")

        products = _lock_products(item.product_id for item in cart_items)
        lines = [(products[item.product_id], item.quantity) for item in cart_items]

        subtotal = sum((product.price * quantity for product, quantity in lines), Decimal('0.00'))
        summary = calculate_checkout_summary(subtotal, len(lines))

        order = _place_order(
            user,
            lines,
            order_number=checkout_order_number(user),
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
            shipping_cost=summary.shipping_cost,
            tax_amount=summary.tax,
            reserve_on_create=True,
        )

        CartItem.objects.filter(id__in=[item.id for item in cart_items]).delete()

        if session is not None and session.buy_now_mode:
            restored = restore_saved_cart(user, session)
            logger.info(f"Checkout {order.order_number}: restored {restored} stashed cart items")

        transaction.on_commit(lambda: _queue_confirmation(order.id))

    return order


def _queue_confirmation(order_id: int) -> None:
    try:
        from .tasks import send_order_confirmation
        send_order_confirmation.delay(order_id)
        logger.info(f"Triggered confirmation task for order #{order_id}")
    except Exception as e:
        # Don't fail the order if task queuing fails
        logger.error(f"Failed to queue confirmation task: {e}")


# =============================================================================
# Status lifecycle
# =============================================================================

def reserve_stock(order: Order) -> List[StockAdjustment]:
    """
    Deduct stock for every line not yet deducted.

    Lines whose product cannot cover the quantity are skipped, not failed;
    they are reported with applied=False.
    """
    results = []
    for item in order.items.filter(stock_deducted=False).select_related('product'):
        result = decrement_stock(item.product_id, item.quantity)
        if result.applied:
            item.stock_deducted = True
            item.save(update_fields=['stock_deducted'])
        else:
            logger.warning(
                f"Order {order.order_number}: stock not deducted for "
                f"'{item.product.name}' x{item.quantity} ({result.reason})"
            )
        results.append(result)
    return results


def release_stock(order: Order) -> List[StockAdjustment]:
    """Return every deducted line to stock."""
    results = []
    for item in order.items.filter(stock_deducted=True):
        result = increment_stock(item.product_id, item.quantity)
        if result.applied:
            item.stock_deducted = False
            item.save(update_fields=['stock_deducted'])
        results.append(result)
    return results


def record_status_change(order: Order, old_status: str, new_status: str, actor=None, notes: Optional[str] = None) -> OrderStatusLog:
    return OrderStatusLog.objects.create(
        order=order,
        order_number=order.order_number,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor if actor is not None and actor.is_authenticated else None,
        notes=notes or '',
    )


def update_order_status(order: Order, new_status: str, actor=None, notes: Optional[str] = None) -> Order:
    """
    Move an order to ``new_status`` and apply the stock side effects.

    Setting the current status again is accepted and changes nothing
    besides the audit entry.

    Raises:
        OrderValidationError: Unknown status value
        InvalidStatusTransition: Move out of a terminal status or backwards
    """
    if new_status not in Order.Status.values:
        raise OrderValidationError(f"Invalid status '{new_status}'")

    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        old_status = locked.status

        if new_status != old_status and new_status not in ALLOWED_TRANSITIONS[old_status]:
            raise InvalidStatusTransition(locked.order_number, old_status, new_status)

        adjustments = []
        if new_status != old_status:
            now = timezone.now()
            if new_status == Order.Status.PROCESSING:
                adjustments = reserve_stock(locked)
            elif new_status == Order.Status.CANCELLED:
                adjustments = release_stock(locked)
            elif new_status == Order.Status.SHIPPED:
                locked.shipped_at = now
            elif new_status == Order.Status.DELIVERED:
                locked.delivered_at = now

            locked.status = new_status
            locked.save(update_fields=STATUS_FIELDS)

        record_status_change(locked, old_status, new_status, actor=actor, notes=notes)

    for name in STATUS_FIELDS:
        setattr(order, name, getattr(locked, name))

    skipped = sum(1 for adjustment in adjustments if not adjustment.applied)
    logger.info(
        f"Order {order.order_number}: {old_status} -> {new_status} "
        f"({len(adjustments) - skipped} stock adjustments, {skipped} skipped)"
    )
    return order


def cancel_order(order: Order, user) -> Order:
    """
    Buyer self-cancel, allowed only for the owner while pending or processing.
    """
    if order.user_id != user.pk:
        raise OrderValidationError("You can only cancel your own orders")

    with transaction.atomic():
        current_status = Order.objects.select_for_update().values_list('status', flat=True).get(pk=order.pk)
        if current_status not in BUYER_CANCELLABLE_STATUSES:
            raise InvalidStatusTransition(order.order_number, current_status, Order.Status.CANCELLED)
        return update_order_status(order, Order.Status.CANCELLED, actor=user, notes='Cancelled by customer')


def update_order_details(order: Order, actor=None, **changes) -> Order:
    """
    Admin edit of shipping details and price adjustments; recomputes the total.

    Raises:
        OrderValidationError: Unknown field, negative amount or negative total
    """
    unknown = set(changes) - set(EDITABLE_ORDER_FIELDS)
    if unknown:
        raise OrderValidationError(f"Fields cannot be edited: {sorted(unknown)}")

    saved_fields = list(changes) + ['total_amount', 'updated_at']
    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        for name, value in changes.items():
            if name in AMOUNT_FIELDS:
                value = to_money(value)
                if value < 0:
                    raise OrderValidationError(f"{name} cannot be negative")
            setattr(locked, name, value)

        recompute_total(locked, save=False)
        locked.save(update_fields=saved_fields)

    for name in saved_fields:
        setattr(order, name, getattr(locked, name))

    actor_id = actor.pk if actor is not None else None
    logger.info(f"Order {order.order_number} updated by {actor_id}: {sorted(changes)}")
    return order


def delete_order(order: Order) -> None:
    """
    Hard delete a cancelled order together with its items.

    Raises:
        OrderDeletionError: If the order is not cancelled
    """
    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        if locked.status != Order.Status.CANCELLED:
            raise OrderDeletionError(
                f"Order {locked.order_number} is '{locked.status}'; only cancelled orders can be deleted"
            )
        order_number = locked.order_number
        locked.delete()
    logger.info(f"Deleted cancelled order {order_number}")


# =============================================================================
# Bulk actions
# =============================================================================

def bulk_update_status(order_ids: List[int], new_status: str, actor=None, notes: Optional[str] = None) -> BulkResult:
    """
    Apply one status change to many orders in a single transaction.

    Orders whose transition is not allowed are skipped and reported; any
    other error rolls back the whole batch.
    """
    if new_status not in Order.Status.values:
        raise OrderValidationError(f"Invalid status '{new_status}'")

    result = BulkResult()
    with transaction.atomic():
        orders = list(Order.objects.filter(id__in=order_ids).order_by('id'))
        found = {order.id for order in orders}
        for order_id in order_ids:
            if order_id not in found:
                result.skipped[order_id] = 'order not found'

        for order in orders:
            try:
                update_order_status(order, new_status, actor=actor, notes=notes)
            except InvalidStatusTransition as e:
                result.skipped[order.id] = str(e)
                continue
            result.updated.append(order.id)

    logger.info(
        f"Bulk status update to '{new_status}': {len(result.updated)} updated, "
        f"{len(result.skipped)} skipped"
    )
    return result


def bulk_delete(order_ids: List[int]) -> BulkResult:
    """Delete the cancelled orders among ``order_ids``; report the rest as skipped."""
    result = BulkResult()
    orders = Order.objects.filter(id__in=order_ids)
    statuses = dict(orders.values_list('id', 'status'))

    for order_id in order_ids:
        order_status = statuses.get(order_id)
        if order_status is None:
            result.skipped[order_id] = 'order not found'
        elif order_status != Order.Status.CANCELLED:
            result.skipped[order_id] = f"order is '{order_status}'; only cancelled orders can be deleted"
        else:
            result.updated.append(order_id)

    if result.updated:
        orders.filter(id__in=result.updated).delete()
    logger.info(f"Bulk delete: {len(result.updated)} deleted, {len(result.skipped)} skipped")
    return result


# =============================================================================
# Reporting
# =============================================================================

def status_breakdown(queryset=None) -> Dict:
    """Order counts per status and delivered revenue for ``queryset``."""
    queryset = Order.objects.all() if queryset is None else queryset
    stats = queryset.aggregate(
        total_orders=Count('id'),
        pending_orders=Count('id', filter=Q(status=Order.Status.PENDING)),
        processing_orders=Count('id', filter=Q(status=Order.Status.PROCESSING)),
        shipped_orders=Count('id', filter=Q(status=Order.Status.SHIPPED)),
        completed_orders=Count('id', filter=Q(status=Order.Status.DELIVERED)),
        cancelled_orders=Count('id', filter=Q(status=Order.Status.CANCELLED)),
        total_revenue=Sum('total_amount', filter=Q(status=Order.Status.DELIVERED)),
    )
    stats['total_revenue'] = str(to_money(stats['total_revenue'] or 0))
    return stats


def order_statistics(queryset=None) -> Dict:
    """Order counts per status and delivered revenue, overall, today and this month."""
    queryset = Order.objects.all() if queryset is None else queryset
    today = timezone.localdate()
    month_start = today.replace(day=1)
    delivered = Q(status=Order.Status.DELIVERED)

    stats = status_breakdown(queryset)
    stats.update(queryset.aggregate(
        today_orders=Count('id', filter=Q(created_at__date=today)),
        today_revenue=Sum('total_amount', filter=delivered & Q(created_at__date=today)),
        month_orders=Count('id', filter=Q(created_at__date__gte=month_start)),
        month_revenue=Sum('total_amount', filter=delivered & Q(created_at__date__gte=month_start)),
    ))

    for key in ('today_revenue', 'month_revenue'):
        stats[key] = str(to_money(stats[key] or 0))
    return stats
