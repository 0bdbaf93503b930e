"""
Django Admin configuration for catalog models.
"""
from django.contrib import admin
from .models import Category, Product


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'product_count', 'created_at']
    search_fields = ['name']
    ordering = ['name']

    @admin.display(description='Products')
    def product_count(self, obj):
        return obj.products.count()


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'price', 'stock', 'is_low_stock', 'category', 'is_active', 'created_at']
    list_filter = ['category', 'is_active', 'created_at']
    search_fields = ['name', 'description']
    ordering = ['name']
    raw_id_fields = ['category']

    @admin.display(boolean=True, description='Low Stock')
    def is_low_stock(self, obj):
        return obj.is_low_stock
