"""
Django Admin configuration for cart models.
"""
from django.contrib import admin
from .models import CartItem, CheckoutSession


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'product', 'quantity', 'updated_at']
    search_fields = ['user__username', 'user__email', 'product__name']
    raw_id_fields = ['user', 'product']


@admin.register(CheckoutSession)
class CheckoutSessionAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'buy_now_mode', 'updated_at']
    list_filter = ['buy_now_mode']
    readonly_fields = ['saved_cart_items', 'updated_at']
    raw_id_fields = ['user']
