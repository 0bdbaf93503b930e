"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    # Buyer
    path('orders/', views.BuyerOrderListView.as_view(), name='order-list'),
    path('orders/<int:pk>/', views.BuyerOrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/cancel/', views.BuyerOrderCancelView.as_view(), name='order-cancel'),
    path('dashboard/', views.BuyerDashboardView.as_view(), name='buyer-dashboard'),

    # Admin
    path('admin/orders/', views.AdminOrderListCreateView.as_view(), name='admin-order-list'),
    path('admin/orders/bulk-action/', views.AdminOrderBulkActionView.as_view(), name='admin-order-bulk-action'),
    path('admin/orders/export/', views.AdminOrderExportView.as_view(), name='admin-order-export'),
    path('admin/orders/stats/', views.OrderStatsView.as_view(), name='admin-order-stats'),
    path('admin/orders/<int:pk>/', views.AdminOrderDetailView.as_view(), name='admin-order-detail'),
    path('admin/orders/<int:pk>/status/', views.AdminOrderStatusView.as_view(), name='admin-order-status'),

    # Reports
    path('admin/reports/sales/', views.SalesReportView.as_view(), name='admin-report-sales'),
    path('admin/reports/products/', views.ProductsReportView.as_view(), name='admin-report-products'),
    path('admin/reports/customers/', views.CustomersReportView.as_view(), name='admin-report-customers'),
    path('admin/reports/financial/', views.FinancialReportView.as_view(), name='admin-report-financial'),
]
