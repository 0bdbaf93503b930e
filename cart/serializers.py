"""
Serializers for cart and checkout requests.
"""
from rest_framework import serializers

from catalog.models import Product
from catalog.serializers import ProductMinimalSerializer
from orders.models import Order
from .models import CartItem


class CartItemSerializer(serializers.ModelSerializer):
    """Cart row with product details and line subtotal."""
    product = ProductMinimalSerializer(read_only=True)
    stock = serializers.IntegerField(source='product.stock', read_only=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = ['id', 'product', 'quantity', 'stock', 'subtotal', 'created_at', 'updated_at']


class CartAddSerializer(serializers.Serializer):
    product_id = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.filter(is_active=True),
        source='product'
    )
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class BuyNowSerializer(CartAddSerializer):
    quantity = serializers.IntegerField(min_value=1, max_value=100, default=1)


class CheckoutSerializer(serializers.Serializer):
    """
    Request format:
    {
        "cart_items": [3, 4],
        "shipping_address": "Jl. Merdeka 1, Jakarta",
        "payment_method": "bank_transfer",
        "notes": "Leave at the front door"
    }
    """
    cart_items = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False
    )
    shipping_address = serializers.CharField(max_length=500)
    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class CheckoutSummarySerializer(serializers.Serializer):
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2)
    shipping_cost = serializers.DecimalField(max_digits=14, decimal_places=2)
    tax = serializers.DecimalField(max_digits=14, decimal_places=2)
    total = serializers.DecimalField(max_digits=14, decimal_places=2)
    item_count = serializers.IntegerField()
