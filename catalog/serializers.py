"""
Serializers for catalog models.
Provides data validation and JSON conversion for API endpoints.
"""
from rest_framework import serializers

from .models import Category, Product
from .services import StockMode


class CategorySerializer(serializers.ModelSerializer):
    """Serializer for Category model."""
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = ['id', 'name', 'product_count', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_product_count(self, obj):
        """Get count of products in this category."""
        return obj.products.count()


class CategoryMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested category representation."""
    class Meta:
        model = Category
        fields = ['id', 'name']


class ProductSerializer(serializers.ModelSerializer):
    """Serializer for Product model with nested category."""
    category = CategoryMinimalSerializer(read_only=True)
    category_id = serializers.PrimaryKeyRelatedField(
        queryset=Category.objects.all(),
        source='category',
        write_only=True,
        required=False,
        allow_null=True
    )
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'price', 'stock', 'image',
            'category', 'category_id', 'is_active',
            'is_low_stock', 'is_out_of_stock',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_stock(self, value):
        if value > 999999:
            raise serializers.ValidationError("Stock cannot exceed 999999")
        return value

    def update(self, instance, validated_data):
        # Stock only moves through the stock ledger once a product exists
        validated_data.pop('stock', None)
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save(update_fields=list(validated_data) + ['updated_at'])
        instance.refresh_from_db(fields=['stock'])
        return instance


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for autocomplete and nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'price']


class ProductStockSerializer(serializers.Serializer):
    """Payload for PATCH /products/{id}/stock/."""
    mode = serializers.ChoiceField(choices=StockMode.choices, default=StockMode.SET)
    stock = serializers.IntegerField(min_value=0, max_value=999999)
