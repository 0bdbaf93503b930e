"""
CSV export of orders for the back-office.

UTF-8 with a byte order mark so spreadsheet applications pick the right
encoding. The order export has one row per order; report downloads have
one row per report record.
"""
import csv
import io

from django.utils import timezone

CSV_BOM = '\ufeff'

EXPORT_COLUMNS = [
    'Order Number',
    'Customer Name',
    'Customer Email',
    'Status',
    'Total',
    'Item Count',
    'Date',
    'Address',
    'Notes',
]


def export_filename(now=None) -> str:
    now = timezone.localtime(now or timezone.now())
    return f"orders_{now:%Y-%m-%d_%H-%M-%S}.csv"


def export_orders_csv(orders) -> str:
    """
    Render orders as CSV text (BOM included).

    Args:
        orders: Iterable of Order, ideally with user selected and items
            prefetched
    """
    buffer = io.StringIO()
    buffer.write(CSV_BOM)
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)

    for order in orders:
        user = order.user
        writer.writerow([
            order.order_number,
            user.get_full_name() or user.get_username(),
            user.email,
            order.status,
            order.total_amount,
            len(order.items.all()),
            timezone.localtime(order.created_at).strftime('%Y-%m-%d %H:%M:%S'),
            order.shipping_address,
            order.notes,
        ])

    return buffer.getvalue()


# Header and record key per column of each report download
REPORT_COLUMNS = {
    'sales': [
        ('Order Number', 'order_number'),
        ('Customer Name', 'customer_name'),
        ('Customer Email', 'customer_email'),
        ('Total Amount', 'total_amount'),
        ('Status', 'status'),
        ('Created Date', 'created_at'),
        ('Items Count', 'items_count'),
    ],
    'products': [
        ('Product Name', 'name'),
        ('Category', 'category'),
        ('Price', 'price'),
        ('Stock', 'stock'),
        ('Total Sold', 'total_sold'),
        ('Revenue', 'revenue'),
        ('Active', 'is_active'),
        ('Created Date', 'created_at'),
    ],
    'customers': [
        ('Customer Name', 'name'),
        ('Email', 'email'),
        ('Total Orders', 'order_count'),
        ('Total Spent', 'total_spent'),
        ('Last Order', 'last_order_at'),
        ('Registration Date', 'date_joined'),
        ('Last Login', 'last_login'),
        ('Active', 'is_active'),
    ],
    'financial': [
        ('Date', 'date'),
        ('Order Number', 'order_number'),
        ('Customer', 'customer_name'),
        ('Gross Revenue', 'gross_revenue'),
        ('Tax', 'tax'),
        ('Net Revenue', 'net_revenue'),
        ('Status', 'status'),
    ],
}


def report_filename(name: str, period=None) -> str:
    if period is not None:
        return f"{name}_report_{period.start:%Y-%m-%d}_to_{period.end:%Y-%m-%d}.csv"
    return f"{name}_report_{timezone.localdate():%Y-%m-%d}.csv"


def export_report_csv(name: str, records) -> str:
    """Render report records as CSV text (BOM included); missing values become empty cells."""
    columns = REPORT_COLUMNS[name]
    buffer = io.StringIO()
    buffer.write(CSV_BOM)
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in columns])

    for record in records:
        writer.writerow(['' if record[key] is None else record[key] for _, key in columns])

    return buffer.getvalue()
