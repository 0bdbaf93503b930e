"""
Order API Views.

Buyer:
- GET /orders/ - Own orders
- GET /orders/{id}/ - Own order detail
- PATCH /orders/{id}/cancel/ - Cancel while pending or processing

Admin:
- GET/POST /admin/orders/ - Filtered, paginated list; create an order
- GET/PATCH/DELETE /admin/orders/{id}/ - Detail, status/adjustment edit, delete cancelled
- PATCH /admin/orders/{id}/status/ - Status change only
- POST /admin/orders/bulk-action/ - update_status, delete or export
- GET /admin/orders/export/ - CSV download
- GET /admin/orders/stats/ - Dashboard statistics
- GET /admin/reports/{sales,products,customers,financial}/ - Reports, ?export=csv to download

Buyer dashboard:
- GET /dashboard/ - Popular products, cart, recent orders and totals
"""
import logging
from datetime import date

from django.db import transaction
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from cart.serializers import CartItemSerializer
from core.permissions import IsAdminRole
from .exports import export_filename, export_orders_csv, export_report_csv, report_filename
from .models import Order
from .reports import (
    ReportPeriod,
    buyer_stats,
    customers_report,
    financial_report,
    popular_products,
    products_report,
    recent_cart_items,
    recent_orders,
    sales_report,
)
from .serializers import (
    AdminOrderCreateSerializer,
    AdminOrderSerializer,
    AdminOrderUpdateSerializer,
    BulkActionSerializer,
    OrderListSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PopularProductSerializer,
)
from .services import (
    EDITABLE_ORDER_FIELDS,
    bulk_delete,
    bulk_update_status,
    cancel_order,
    create_order,
    delete_order,
    order_statistics,
    update_order_details,
    update_order_status,
)

logger = logging.getLogger(__name__)


def order_queryset():
    return Order.objects.select_related('user').prefetch_related('items__product')


def _parse_date(value):
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def apply_order_filters(queryset, params):
    """
    Filter orders by query parameters.

    Query Parameters:
        - status: One of the order statuses
        - search: Order number, customer name or email (substring)
        - date_from / date_to: Creation date range (YYYY-MM-DD, inclusive)
    """
    status_filter = params.get('status', '').lower()
    if status_filter in Order.Status.values:
        queryset = queryset.filter(status=status_filter)

    search = params.get('search', '').strip()
    if search:
        queryset = queryset.filter(
            Q(order_number__icontains=search) |
            Q(user__username__icontains=search) |
            Q(user__first_name__icontains=search) |
            Q(user__last_name__icontains=search) |
            Q(user__email__icontains=search)
        )

    date_from = _parse_date(params.get('date_from', ''))
    if date_from:
        queryset = queryset.filter(created_at__date__gte=date_from)

    date_to = _parse_date(params.get('date_to', ''))
    if date_to:
        queryset = queryset.filter(created_at__date__lte=date_to)

    return queryset.order_by('-created_at', '-id')


def csv_response(orders) -> HttpResponse:
    response = HttpResponse(export_orders_csv(orders), content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{export_filename()}"'
    return response


# =============================================================================
# Buyer Views
# =============================================================================

class BuyerOrderListView(generics.ListAPIView):
    """GET: The current user's orders, newest first."""
    serializer_class = OrderSerializer

    def get_queryset(self):
        return order_queryset().filter(user=self.request.user).order_by('-created_at', '-id')


class BuyerOrderDetailView(generics.RetrieveAPIView):
    serializer_class = OrderSerializer

    def get_queryset(self):
        return order_queryset().filter(user=self.request.user)


class BuyerOrderCancelView(APIView):
    """
    PATCH: Cancel an own order while it is pending or processing.
    Deducted stock is returned.
    """

    def patch(self, request, pk):
        order = get_object_or_404(Order, pk=pk, user=request.user)
        order = cancel_order(order, request.user)
        return Response({
            'message': 'Order cancelled.',
            'order': OrderSerializer(order_queryset().get(pk=order.pk)).data,
        })


# =============================================================================
# Admin Views
# =============================================================================

class AdminOrderListCreateView(generics.ListCreateAPIView):
    """
    GET: Orders filtered by status, search and date range (15 per page)
    POST: Create an order for a customer; it starts pending with stock untouched
    """
    permission_classes = [IsAdminRole]

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return AdminOrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        return apply_order_filters(order_queryset(), self.request.query_params)

    def create(self, request, *args, **kwargs):
        serializer = AdminOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = create_order(
            data['user'],
            [dict(item) for item in data['items']],
            shipping_address=data['shipping_address'],
            payment_method=data['payment_method'],
            notes=data['notes'],
            shipping_cost=data['shipping_cost'],
            tax_amount=data['tax_amount'],
            discount_amount=data['discount_amount'],
        )

        order = order_queryset().get(pk=order.pk)
        return Response(AdminOrderSerializer(order).data, status=status.HTTP_201_CREATED)


class AdminOrderDetailView(APIView):
    """
    GET: Order detail with status history
    PATCH: Change status and/or shipping details and price adjustments
    DELETE: Delete a cancelled order
    """
    permission_classes = [IsAdminRole]

    def get_object(self, pk):
        return get_object_or_404(
            order_queryset().prefetch_related('status_logs__changed_by'),
            pk=pk
        )

    def get(self, request, pk):
        return Response(AdminOrderSerializer(self.get_object(pk)).data)

    def patch(self, request, pk):
        order = self.get_object(pk)
        serializer = AdminOrderUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        changes = {name: data[name] for name in EDITABLE_ORDER_FIELDS if name in data}
        with transaction.atomic():
            if 'status' in data:
                order = update_order_status(
                    order,
                    data['status'],
                    actor=request.user,
                    notes=data.get('status_notes')
                )
            if changes:
                update_order_details(order, actor=request.user, **changes)

        return Response(AdminOrderSerializer(self.get_object(pk)).data)

    def delete(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        delete_order(order)
        return Response(status=status.HTTP_204_NO_CONTENT)


class AdminOrderStatusView(APIView):
    """
    PATCH: Change an order's status.

    Request Body:
    {
        "status": "processing",
        "notes": "Packed by warehouse B"
    }
    """
    permission_classes = [IsAdminRole]

    def patch(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        update_order_status(
            order,
            serializer.validated_data['status'],
            actor=request.user,
            notes=serializer.validated_data.get('notes')
        )

        order = order_queryset().prefetch_related('status_logs__changed_by').get(pk=pk)
        return Response({
            'message': 'Order status updated.',
            'order': AdminOrderSerializer(order).data,
        })


class AdminOrderBulkActionView(APIView):
    """
    POST: Apply one action to many orders.

    - update_status: one transaction; disallowed transitions are skipped
    - delete: only cancelled orders are deleted
    - export: CSV of the selected orders
    """
    permission_classes = [IsAdminRole]

    def post(self, request):
        serializer = BulkActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        action = data['action']
        order_ids = data['order_ids']
        logger.info(f"Bulk {action} by user {request.user.pk} on {len(order_ids)} orders")

        if action == 'export':
            orders = order_queryset().filter(id__in=order_ids).order_by('-created_at', '-id')
            return csv_response(orders)

        if action == 'update_status':
            result = bulk_update_status(
                order_ids,
                data['status'],
                actor=request.user,
                notes=data.get('notes')
            )
            message = 'Order statuses updated.'
        else:
            result = bulk_delete(order_ids)
            message = 'Orders deleted.'

        return Response({
            'message': message,
            'action': action,
            'processed': result.updated,
            'skipped': {str(order_id): reason for order_id, reason in result.skipped.items()},
        })


class AdminOrderExportView(APIView):
    """GET: CSV download; accepts the same filters as the order list."""
    permission_classes = [IsAdminRole]

    def get(self, request):
        orders = apply_order_filters(order_queryset(), request.query_params)
        return csv_response(orders)


class OrderStatsView(APIView):
    """
    GET: Order statistics for the admin dashboard.
    """
    permission_classes = [IsAdminRole]

    def get(self, request):
        return Response(order_statistics())


# =============================================================================
# Reports
# =============================================================================

def report_csv_response(name: str, records, period=None) -> HttpResponse:
    response = HttpResponse(export_report_csv(name, records), content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{report_filename(name, period)}"'
    return response


class AdminReportView(APIView):
    """
    GET: JSON report; ``?export=csv`` downloads its records instead.

    Subclasses set ``report_name``, ``records_key`` and implement build().
    """
    permission_classes = [IsAdminRole]
    report_name = None
    records_key = None
    uses_period = False

    def build(self, params, period):
        raise NotImplementedError

    def get(self, request):
        params = request.query_params
        period = ReportPeriod.from_params(params) if self.uses_period else None
        report = self.build(params, period)

        if params.get('export') == 'csv':
            return report_csv_response(self.report_name, report[self.records_key], period)
        return Response(report)


class SalesReportView(AdminReportView):
    """
    GET: Orders created between start_date and end_date (default: this month).

    Query Parameters:
        - start_date / end_date: YYYY-MM-DD, inclusive
        - status: One order status, or "all"
    """
    report_name = 'sales'
    records_key = 'orders'
    uses_period = True

    def build(self, params, period):
        status_filter = params.get('status', 'all').lower()
        return sales_report(period, None if status_filter == 'all' else status_filter)


class ProductsReportView(AdminReportView):
    """GET: Units sold and revenue per product; ``category_id`` narrows it down."""
    report_name = 'products'
    records_key = 'products'

    def build(self, params, period):
        category_id = params.get('category_id', '')
        if category_id and not category_id.isdigit():
            raise ValidationError({'category_id': 'Must be a category id'})
        return products_report(int(category_id) if category_id else None)


class CustomersReportView(AdminReportView):
    report_name = 'customers'
    records_key = 'customers'

    def build(self, params, period):
        return customers_report()


class FinancialReportView(AdminReportView):
    """GET: Delivered orders between start_date and end_date with tax and net revenue."""
    report_name = 'financial'
    records_key = 'orders'
    uses_period = True

    def build(self, params, period):
        return financial_report(period)


# =============================================================================
# Buyer Dashboard
# =============================================================================

class BuyerDashboardView(APIView):
    """
    GET: Popular products, latest cart rows, recent orders and account totals.
    """

    def get(self, request):
        user = request.user
        return Response({
            'popular_products': PopularProductSerializer(popular_products(), many=True).data,
            'cart_items': CartItemSerializer(recent_cart_items(user), many=True).data,
            'recent_orders': OrderListSerializer(recent_orders(user), many=True).data,
            'stats': buyer_stats(user),
        })
