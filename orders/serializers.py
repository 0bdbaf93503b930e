"""
Serializers for order models and admin order requests.
"""
from django.contrib.auth import get_user_model
from rest_framework import serializers

from catalog.serializers import ProductMinimalSerializer
from .models import Order, OrderItem, OrderStatusLog


def display_name(user) -> str:
    return user.get_full_name() or user.get_username()


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with product details."""
    product = ProductMinimalSerializer(read_only=True)
    subtotal = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'quantity', 'price', 'subtotal']


class OrderItemCreateSerializer(serializers.Serializer):
    """Serializer for creating order items in order creation request."""
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class CustomerSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.SerializerMethodField()
    email = serializers.EmailField()

    def get_name(self, obj):
        return display_name(obj)


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items.
    Uses prefetch_related for optimized queries.
    """
    customer = CustomerSerializer(source='user', read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    item_count = serializers.IntegerField(read_only=True)
    status_label = serializers.CharField(read_only=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer', 'status', 'status_label',
            'items', 'item_count', 'subtotal', 'shipping_cost', 'tax_amount',
            'discount_amount', 'total_amount', 'shipping_address',
            'payment_method', 'notes', 'tracking_number',
            'shipped_at', 'delivered_at', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderStatusLogSerializer(serializers.ModelSerializer):
    changed_by = serializers.SerializerMethodField()

    class Meta:
        model = OrderStatusLog
        fields = ['id', 'old_status', 'new_status', 'changed_by', 'notes', 'created_at']

    def get_changed_by(self, obj):
        return display_name(obj.changed_by) if obj.changed_by else None


class AdminOrderSerializer(OrderSerializer):
    """Order detail for the back-office, including the status history."""
    status_history = OrderStatusLogSerializer(source='status_logs', many=True, read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['status_history']
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """
    Optimized serializer for listing orders.
    Uses select_related for customer data.
    """
    customer_name = serializers.SerializerMethodField()
    customer_email = serializers.EmailField(source='user.email', read_only=True)
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer_name', 'customer_email', 'status',
            'total_amount', 'item_count', 'created_at'
        ]

    def get_customer_name(self, obj):
        return display_name(obj.user)

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class AdminOrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /admin/orders/

    Request format:
    {
        "user_id": 7,
        "items": [
            {"product_id": 1, "quantity": 2},
            {"product_id": 3, "quantity": 1}
        ],
        "shipping_address": "Jl. Sudirman 5, Bandung",
        "shipping_cost": "15000.00"
    }
    """
    user_id = serializers.PrimaryKeyRelatedField(
        queryset=get_user_model().objects.all(),
        source='user'
    )
    items = OrderItemCreateSerializer(many=True)
    shipping_address = serializers.CharField(max_length=500)
    payment_method = serializers.ChoiceField(
        choices=Order.PaymentMethod.choices,
        required=False,
        allow_blank=True,
        default=''
    )
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    shipping_cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    tax_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")

        product_ids = [item['product_id'] for item in value]
        if len(product_ids) != len(set(product_ids)):
            raise serializers.ValidationError("Duplicate products in order items")

        return value


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)


class AdminOrderUpdateSerializer(serializers.Serializer):
    """PATCH /admin/orders/{id}/ - status and/or shipping and price adjustments."""
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    status_notes = serializers.CharField(max_length=500, required=False, allow_blank=True)
    shipping_address = serializers.CharField(max_length=500, required=False)
    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices, required=False, allow_blank=True)
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)
    shipping_cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    tax_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)


class BulkActionSerializer(serializers.Serializer):
    """
    Request format:
    {
        "action": "update_status" | "delete" | "export",
        "order_ids": [1, 2, 3],
        "status": "processing"
    }
    """
    ACTIONS = ['update_status', 'delete', 'export']

    action = serializers.ChoiceField(choices=ACTIONS)
    order_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False
    )
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs['action'] == 'update_status' and not attrs.get('status'):
            raise serializers.ValidationError({'status': 'This field is required for update_status.'})
        return attrs


class PopularProductSerializer(ProductMinimalSerializer):
    """Product card on the buyer dashboard."""
    category = serializers.CharField(source='category.name', default=None, read_only=True)
    sold_count = serializers.IntegerField(read_only=True)

    class Meta(ProductMinimalSerializer.Meta):
        fields = ProductMinimalSerializer.Meta.fields + ['image', 'category', 'sold_count']
