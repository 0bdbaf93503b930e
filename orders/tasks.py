"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after buyer checkout
    - generate_daily_order_report: Yesterday's order statistics (Celery Beat)
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def send_order_confirmation(self, order_id: int):
    """
    Async task triggered after the checkout transaction commits.

    Args:
        order_id: ID of the created order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.select_related('user').prefetch_related(
            'items__product'
        ).get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for confirmation")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if order.status == Order.Status.CANCELLED:
        logger.warning(f"Order {order.order_number} was cancelled, skipping confirmation")
        return {
            'status': 'skipped',
            'message': f'Order {order.order_number} is cancelled'
        }

    items_summary = [
        f"  - {item.quantity}x {item.product.name} @ Rp {item.price}"
        for item in order.items.all()
    ]

    confirmation_message = f"""
    ===============================================
    ORDER CONFIRMATION - {order.order_number}
    ===============================================
    Customer: {order.user.get_full_name() or order.user.get_username()} <{order.user.email}>
    Status: {order.status_label}
    Ship to: {order.shipping_address}
    Payment: {order.get_payment_method_display() or '-'}

    Items:
    {chr(10).join(items_summary)}

    Subtotal: Rp {order.subtotal}
    Shipping: Rp {order.shipping_cost}
    Tax: Rp {order.tax_amount}
    Total: Rp {order.total_amount}

    Created: {timezone.localtime(order.created_at):%Y-%m-%d %H:%M:%S}
    ===============================================
    """

    logger.info(confirmation_message)

    return {
        'status': 'success',
        'order_id': order.id,
        'message': f'Confirmation sent for order {order.order_number}'
    }


@shared_task
def generate_daily_order_report():
    """
    Generate yesterday's order statistics report.

    Can be scheduled via Celery Beat for daily execution.
    """
    from orders.models import Order
    from orders.services import status_breakdown

    yesterday = timezone.localdate() - timedelta(days=1)
    stats = status_breakdown(Order.objects.filter(created_at__date=yesterday))

    report = f"""
    ===============================================
    DAILY ORDER REPORT - {yesterday}
    ===============================================
    Total Orders: {stats['total_orders']}
    Pending: {stats['pending_orders']}
    Processing: {stats['processing_orders']}
    Shipped: {stats['shipped_orders']}
    Delivered: {stats['completed_orders']}
    Cancelled: {stats['cancelled_orders']}
    Delivered Revenue: Rp {stats['total_revenue']}
    ===============================================
    """

    logger.info(report)

    return stats
