"""
Back-office reports and the buyer dashboard.

Reports:
    - sales_report: orders created in a period, optionally one status
    - products_report: units sold and revenue per product
    - customers_report: order count and spend per buyer
    - financial_report: delivered orders in a period with tax and net revenue

Every report is a plain dict with a ``summary`` and a list of records that
AdminReportView can also download as CSV. Money values are strings with two
decimals, the same as order_statistics().
"""
from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db.models import Count, DecimalField, F, Max, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from cart.models import CartItem
from catalog.models import Product
from core.permissions import BUYER_ROLE
from .exceptions import OrderValidationError
from .models import ACTIVE_STATUSES, Order
from .services import status_breakdown, to_money

User = get_user_model()

MONEY = DecimalField(max_digits=14, decimal_places=2)

# Items on cancelled orders never left the shelf
SOLD_STATUSES = tuple(value for value in Order.Status.values if value != Order.Status.CANCELLED)

DASHBOARD_LIMIT = 6


def money(value) -> str:
    return str(to_money(value or 0))


def _local_timestamp(value) -> Optional[str]:
    if value is None:
        return None
    return timezone.localtime(value).strftime('%Y-%m-%d %H:%M:%S')


def _param_date(params, name: str, default: date) -> date:
    value = params.get(name, '').strip()
    if not value:
        return default
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise OrderValidationError(f"Invalid {name} '{value}', expected YYYY-MM-DD")


@dataclass(frozen=True)
class ReportPeriod:
    """Inclusive range of local creation dates."""
    start: date
    end: date

    @classmethod
    def current_month(cls) -> 'ReportPeriod':
        today = timezone.localdate()
        last_day = monthrange(today.year, today.month)[1]
        return cls(today.replace(day=1), today.replace(day=last_day))

    @classmethod
    def from_params(cls, params) -> 'ReportPeriod':
        """
        Read ``start_date`` and ``end_date`` query parameters.

        Either bound defaults to the current month's.

        Raises:
            OrderValidationError: Malformed date or start after end
        """
        month = cls.current_month()
        start = _param_date(params, 'start_date', month.start)
        end = _param_date(params, 'end_date', month.end)
        if start > end:
            raise OrderValidationError("start_date cannot be after end_date")
        return cls(start, end)

    def filter(self, queryset, field: str = 'created_at'):
        return queryset.filter(**{
            f'{field}__date__gte': self.start,
            f'{field}__date__lte': self.end,
        })

    def as_dict(self) -> Dict:
        return {'start_date': self.start.isoformat(), 'end_date': self.end.isoformat()}


# =============================================================================
# Admin reports
# =============================================================================

def sales_report(period: ReportPeriod, status: Optional[str] = None) -> Dict:
    """
    Orders created within ``period``, with per-status counts and a daily series.

    Raises:
        OrderValidationError: Unknown status value
    """
    orders = period.filter(Order.objects.all())
    if status is not None:
        if status not in Order.Status.values:
            raise OrderValidationError(f"Invalid status '{status}'")
        orders = orders.filter(status=status)

    summary = status_breakdown(orders)
    summary['gross_amount'] = money(orders.aggregate(total=Sum('total_amount'))['total'])

    daily = (
        orders.annotate(day=TruncDate('created_at'))
        .values('day')
        .annotate(order_count=Count('id'), amount=Sum('total_amount'))
        .order_by('day')
    )
    rows = (
        orders.select_related('user')
        .annotate(items_count=Count('items'))
        .order_by('-created_at', '-id')
    )

    return {
        'period': period.as_dict(),
        'status': status or 'all',
        'summary': summary,
        'daily': [
            {'date': entry['day'].isoformat(), 'orders': entry['order_count'], 'amount': money(entry['amount'])}
            for entry in daily
        ],
        'orders': [
            {
                'order_number': order.order_number,
                'customer_name': order.user.get_full_name() or order.user.get_username(),
                'customer_email': order.user.email,
                'total_amount': money(order.total_amount),
                'status': order.status,
                'created_at': _local_timestamp(order.created_at),
                'items_count': order.items_count,
            }
            for order in rows
        ],
    }


def products_report(category_id: Optional[int] = None) -> Dict:
    """Units sold and item revenue per product, best sellers first."""
    sold = Q(order_items__order__status__in=SOLD_STATUSES)
    products = (
        Product.objects.select_related('category')
        .annotate(
            total_sold=Sum('order_items__quantity', filter=sold),
            revenue=Sum(F('order_items__quantity') * F('order_items__price'), filter=sold, output_field=MONEY),
        )
        .order_by(F('total_sold').desc(nulls_last=True), 'name')
    )
    if category_id is not None:
        products = products.filter(category_id=category_id)

    records = [
        {
            'id': product.id,
            'name': product.name,
            'category': product.category.name if product.category else None,
            'price': money(product.price),
            'stock': product.stock,
            'total_sold': product.total_sold or 0,
            'revenue': money(product.revenue),
            'is_active': product.is_active,
            'created_at': _local_timestamp(product.created_at),
        }
        for product in products
    ]

    return {
        'category_id': category_id,
        'summary': {
            'product_count': len(records),
            'active_products': sum(1 for record in records if record['is_active']),
            'low_stock_products': sum(
                1 for record in records if record['stock'] <= settings.LOW_STOCK_THRESHOLD
            ),
            'out_of_stock_products': sum(1 for record in records if record['stock'] == 0),
            'total_sold': sum(record['total_sold'] for record in records),
            'total_revenue': money(sum((product.revenue or 0 for product in products), 0)),
        },
        'products': records,
    }


def customers_report() -> Dict:
    """Buyers with their order count, delivered spend and last order date."""
    buyers = (
        User.objects.filter(groups__name=BUYER_ROLE)
        .annotate(
            order_count=Count('orders'),
            total_spent=Sum('orders__total_amount', filter=Q(orders__status=Order.Status.DELIVERED)),
            last_order_at=Max('orders__created_at'),
        )
        .order_by(F('total_spent').desc(nulls_last=True), 'username')
    )

    records = [
        {
            'id': user.id,
            'name': user.get_full_name() or user.get_username(),
            'email': user.email,
            'order_count': user.order_count,
            'total_spent': money(user.total_spent),
            'last_order_at': _local_timestamp(user.last_order_at),
            'date_joined': _local_timestamp(user.date_joined),
            'last_login': _local_timestamp(user.last_login),
            'is_active': user.is_active,
        }
        for user in buyers
    ]

    return {
        'summary': {
            'customer_count': len(records),
            'customers_with_orders': sum(1 for record in records if record['order_count']),
            'total_spent': money(sum((user.total_spent or 0 for user in buyers), 0)),
        },
        'customers': records,
    }


def financial_report(period: ReportPeriod) -> Dict:
    """
    Delivered orders created within ``period``.

    Net revenue is the order total less the tax charged on it.
    """
    orders = (
        period.filter(Order.objects.filter(status=Order.Status.DELIVERED))
        .select_related('user')
        .order_by('created_at', 'id')
    )
    totals = orders.aggregate(
        gross=Sum('total_amount'),
        tax=Sum('tax_amount'),
        shipping=Sum('shipping_cost'),
        discount=Sum('discount_amount'),
    )
    gross = to_money(totals['gross'] or 0)
    tax = to_money(totals['tax'] or 0)

    return {
        'period': period.as_dict(),
        'summary': {
            'order_count': len(orders),
            'gross_revenue': str(gross),
            'tax': str(tax),
            'shipping': money(totals['shipping']),
            'discount': money(totals['discount']),
            'net_revenue': str(gross - tax),
        },
        'orders': [
            {
                'date': timezone.localtime(order.created_at).date().isoformat(),
                'order_number': order.order_number,
                'customer_name': order.user.get_full_name() or order.user.get_username(),
                'gross_revenue': money(order.total_amount),
                'tax': money(order.tax_amount),
                'net_revenue': money(order.total_amount - order.tax_amount),
                'status': order.status,
            }
            for order in orders
        ],
    }


# =============================================================================
# Buyer dashboard
# =============================================================================

def popular_products(limit: int = DASHBOARD_LIMIT):
    """Active products ranked by how many delivered order lines include them."""
    return (
        Product.objects.filter(is_active=True)
        .select_related('category')
        .annotate(sold_count=Count(
            'order_items',
            filter=Q(order_items__order__status=Order.Status.DELIVERED)
        ))
        .order_by('-sold_count', 'name')[:limit]
    )


def recent_cart_items(user, limit: int = DASHBOARD_LIMIT):
    return CartItem.objects.filter(user=user).select_related('product').order_by('-created_at', '-id')[:limit]


def recent_orders(user, limit: int = DASHBOARD_LIMIT):
    return (
        Order.objects.filter(user=user)
        .select_related('user')
        .prefetch_related('items')
        .order_by('-created_at', '-id')[:limit]
    )


def buyer_stats(user) -> Dict:
    """Cart size and value, order counts and delivered spend for one buyer."""
    cart = CartItem.objects.filter(user=user).aggregate(
        item_count=Sum('quantity'),
        total_value=Sum(F('quantity') * F('product__price'), output_field=MONEY),
    )
    orders = Order.objects.filter(user=user).aggregate(
        total_orders=Count('id'),
        active_orders=Count('id', filter=Q(status__in=ACTIVE_STATUSES)),
        total_spent=Sum('total_amount', filter=Q(status=Order.Status.DELIVERED)),
    )

    return {
        'total_products': Product.objects.filter(is_active=True).count(),
        'cart_items_count': cart['item_count'] or 0,
        'cart_total_value': money(cart['total_value']),
        'total_orders': orders['total_orders'],
        'active_orders': orders['active_orders'],
        'total_spent': money(orders['total_spent']),
    }
