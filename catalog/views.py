"""
Catalog API Views.

Implements:
- CRUD operations for Category and Product (writes restricted to admins)
- Product search with keyword, price and stock filters
- Low stock listing and admin stock adjustment
- Autocomplete with rate limiting
"""
import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db.models import Q
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsAdminOrReadOnly, IsAdminRole
from core.rate_limiting import rate_limit
from .models import Category, Product
from .serializers import (
    CategorySerializer,
    ProductSerializer,
    ProductMinimalSerializer,
    ProductStockSerializer,
)
from .services import adjust_stock

logger = logging.getLogger(__name__)


def parse_price(value):
    if not value:
        return None
    try:
        price = Decimal(value)
    except InvalidOperation:
        return None
    return price if price.is_finite() else None


# =============================================================================
# Category Views
# =============================================================================

class CategoryListCreateView(generics.ListCreateAPIView):
    """
    GET: List all categories
    POST: Create a new category (admin)
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAdminOrReadOnly]


class CategoryDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a category
    PUT/PATCH/DELETE: Admin only
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAdminOrReadOnly]


# =============================================================================
# Product Views
# =============================================================================

class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List active products with category info
    POST: Create a new product (admin)
    """
    serializer_class = ProductSerializer
    permission_classes = [IsAdminOrReadOnly]

    def get_queryset(self):
        return Product.objects.select_related('category').filter(is_active=True)


class ProductDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = ProductSerializer
    permission_classes = [IsAdminOrReadOnly]

    def get_queryset(self):
        return Product.objects.select_related('category')

    def perform_destroy(self, instance):
        # Products referenced by orders are deactivated rather than deleted
        if instance.order_items.exists():
            instance.is_active = False
            instance.save(update_fields=['is_active', 'updated_at'])
            logger.info(f"Product '{instance.name}' has orders, deactivated instead of deleted")
            return
        instance.delete()


class ProductSearchView(generics.ListAPIView):
    """
    GET: Search products with keyword and filters.

    Query Parameters:
        - q: Keyword to search in name, description, and category name
        - category_id: Filter by category ID
        - min_price / max_price: Price range
        - stock_status: low, out or available
        - include_inactive: admins may list inactive products (true/false)
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related('category')

        include_inactive = self.request.query_params.get('include_inactive', '').lower() == 'true'
        if not (include_inactive and IsAdminRole().has_permission(self.request, self)):
            queryset = queryset.filter(is_active=True)

        keyword = self.request.query_params.get('q', '').strip()
        if keyword:
            queryset = queryset.filter(
                Q(name__icontains=keyword) |
                Q(description__icontains=keyword) |
                Q(category__name__icontains=keyword)
            )

        category_id = self.request.query_params.get('category_id')
        if category_id and category_id.isdigit():
            queryset = queryset.filter(category_id=category_id)

        # Unparseable bounds are ignored
        min_price = parse_price(self.request.query_params.get('min_price'))
        if min_price is not None:
            queryset = queryset.filter(price__gte=min_price)

        max_price = parse_price(self.request.query_params.get('max_price'))
        if max_price is not None:
            queryset = queryset.filter(price__lte=max_price)

        stock_status = self.request.query_params.get('stock_status', '').lower()
        if stock_status == 'low':
            queryset = queryset.filter(stock__lte=settings.LOW_STOCK_THRESHOLD)
        elif stock_status == 'out':
            queryset = queryset.filter(stock=0)
        elif stock_status == 'available':
            queryset = queryset.filter(stock__gt=0)

        return queryset.order_by('name')


class ProductAutocompleteView(APIView):
    """
    GET: Fast prefix-matching autocomplete for product names.

    Query Parameters:
        - q: Search query (minimum 3 characters)

    Returns top 10 matching products.
    Rate limited to 20 requests per minute.
    """

    @rate_limit(max_requests=20, window_seconds=60)
    def get(self, request):
        query = request.query_params.get('q', '').strip()

        if len(query) < 3:
            return Response(
                {'error': 'Query must be at least 3 characters'},
                status=status.HTTP_400_BAD_REQUEST
            )

        products = Product.objects.filter(
            name__istartswith=query,
            is_active=True
        )[:10]

        return Response(ProductMinimalSerializer(products, many=True).data)


class LowStockProductListView(generics.ListAPIView):
    """
    GET: Products at or below the low stock threshold, lowest first (admin).
    """
    serializer_class = ProductSerializer
    permission_classes = [IsAdminRole]

    def get_queryset(self):
        return Product.objects.select_related('category').filter(
            stock__lte=settings.LOW_STOCK_THRESHOLD
        ).order_by('stock', 'name')


class ProductStockView(APIView):
    """
    PATCH: Adjust a product's stock (admin).

    Request Body:
    {
        "mode": "set" | "add" | "subtract",
        "stock": 25
    }
    """
    permission_classes = [IsAdminRole]

    def patch(self, request, pk):
        product = generics.get_object_or_404(Product, pk=pk)
        serializer = ProductStockSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        old_stock = product.stock
        product = adjust_stock(
            product,
            serializer.validated_data['mode'],
            serializer.validated_data['stock']
        )

        return Response({
            'id': product.id,
            'name': product.name,
            'old_stock': old_stock,
            'stock': product.stock,
            'is_low_stock': product.is_low_stock,
        })
