"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItem, OrderStatusLog


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'quantity', 'price', 'stock_deducted', 'subtotal']
    can_delete = False

    @admin.display(description='Subtotal')
    def subtotal(self, obj):
        return f"Rp {obj.subtotal}"


class OrderStatusLogInline(admin.TabularInline):
    model = OrderStatusLog
    extra = 0
    fields = ['created_at', 'old_status', 'new_status', 'changed_by', 'notes']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user', 'status', 'total_amount', 'item_count', 'created_at']
    list_filter = ['status', 'payment_method', 'created_at']
    search_fields = ['order_number', 'user__username', 'user__email']
    ordering = ['-created_at']
    # Status and total go through the service layer so stock and the audit log stay consistent
    readonly_fields = ['order_number', 'status', 'total_amount', 'shipped_at', 'delivered_at', 'created_at', 'updated_at']
    inlines = [OrderItemInline, OrderStatusLogInline]

    @admin.display(description='Items')
    def item_count(self, obj):
        return obj.items.count()


@admin.register(OrderStatusLog)
class OrderStatusLogAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'old_status', 'new_status', 'changed_by', 'created_at']
    list_filter = ['new_status', 'created_at']
    search_fields = ['order_number', 'notes']
    ordering = ['-created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
