"""
Cart and Checkout API Views.

Implements:
- GET/POST /cart/ - List cart with total, add a product
- PATCH/DELETE /cart/{id}/ - Change quantity, remove a row
- POST /cart/buy-now/ - Stash the cart and keep only one product
- POST /cart/restore/ - Put a stashed cart back
- GET /checkout/summary/ - Price breakdown for selected cart rows
- POST /checkout/ - Create an order from cart rows
- POST /checkout/cancel/ - Abandon checkout, restoring a buy-now stash
"""
import logging
from decimal import Decimal

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import RateLimitMixin
from orders.serializers import OrderSerializer
from orders.services import checkout, checkout_summary
from .models import CartItem, CheckoutSession
from .serializers import (
    BuyNowSerializer,
    CartAddSerializer,
    CartItemSerializer,
    CartQuantitySerializer,
    CheckoutSerializer,
    CheckoutSummarySerializer,
)
from .services import (
    add_to_cart,
    buy_now,
    cancel_checkout,
    remove_from_cart,
    restore_saved_cart,
    update_cart_quantity,
)

logger = logging.getLogger(__name__)


def user_cart(user):
    return CartItem.objects.filter(user=user).select_related('product').order_by('id')


class CartListCreateView(APIView):
    """
    GET: Current cart rows, total and checkout session state
    POST: Add a product ({"product_id": 1, "quantity": 2})
    """

    def get(self, request):
        items = list(user_cart(request.user))
        session = CheckoutSession.for_user(request.user)
        return Response({
            'items': CartItemSerializer(items, many=True).data,
            'total_amount': str(sum((item.subtotal for item in items), Decimal('0.00'))),
            'buy_now_mode': session.buy_now_mode,
            'has_saved_cart': session.has_saved_cart,
        })

    def post(self, request):
        serializer = CartAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        item = add_to_cart(
            request.user,
            serializer.validated_data['product'],
            serializer.validated_data['quantity']
        )
        return Response(CartItemSerializer(item).data, status=status.HTTP_201_CREATED)


class CartItemDetailView(APIView):
    """
    PATCH: Change quantity ({"quantity": 3})
    DELETE: Remove the row
    """

    def get_object(self, request, pk):
        return get_object_or_404(user_cart(request.user), pk=pk)

    def patch(self, request, pk):
        item = self.get_object(request, pk)
        serializer = CartQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        item = update_cart_quantity(item, serializer.validated_data['quantity'])
        return Response(CartItemSerializer(item).data)

    def delete(self, request, pk):
        product_name = remove_from_cart(self.get_object(request, pk))
        return Response({'message': f'{product_name} removed from cart'})


class BuyNowView(APIView):
    """
    POST: Express checkout of a single product.

    The current cart is stashed and restored after checkout or cancel.
    """

    def post(self, request):
        serializer = BuyNowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = CheckoutSession.for_user(request.user)
        item = buy_now(
            request.user,
            serializer.validated_data['product'],
            serializer.validated_data['quantity'],
            session
        )
        return Response(
            {
                'cart_item': CartItemSerializer(item).data,
                'buy_now_mode': True,
                'saved_cart_items': len(session.saved_cart_items),
            },
            status=status.HTTP_201_CREATED
        )


class RestoreCartView(APIView):
    """POST: Put the stashed cart back without checking stock."""

    def post(self, request):
        session = CheckoutSession.for_user(request.user)
        if not session.has_saved_cart:
            return Response({'restored': 0, 'message': 'No saved cart to restore'})

        restored = restore_saved_cart(request.user, session, check_stock=False)
        return Response({'restored': restored, 'message': 'Cart restored'})


class CheckoutSummaryView(APIView):
    """
    GET: Price breakdown for the selected cart rows.

    Query Parameters:
        - items: cart item id, repeatable (all rows when omitted)
    """

    def get(self, request):
        queryset = user_cart(request.user)
        item_ids = request.query_params.getlist('items')
        if item_ids:
            try:
                queryset = queryset.filter(id__in=[int(item_id) for item_id in item_ids])
            except ValueError:
                return Response(
                    {'error': 'Validation Error', 'detail': 'items must be cart item ids'},
                    status=status.HTTP_400_BAD_REQUEST
                )

        items = list(queryset)
        if not items:
            return Response(
                {'error': 'Validation Error', 'detail': 'No items selected'},
                status=status.HTTP_400_BAD_REQUEST
            )

        session = CheckoutSession.for_user(request.user)
        return Response({
            'items': CartItemSerializer(items, many=True).data,
            'summary': CheckoutSummarySerializer(checkout_summary(items)).data,
            'buy_now_mode': session.buy_now_mode,
            'has_saved_cart': session.has_saved_cart,
        })


class CheckoutView(RateLimitMixin, APIView):
    """
    POST: Create an order from the selected cart rows.

    Returns:
        - 201: Order created, stock reserved
        - 400: Validation error or insufficient stock
    """
    rate_limit_max_requests = 10
    rate_limit_window_seconds = 60

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        session = CheckoutSession.for_user(request.user)
        buy_now_mode = session.buy_now_mode and session.has_saved_cart
        order = checkout(
            request.user,
            data['cart_items'],
            shipping_address=data['shipping_address'],
            payment_method=data['payment_method'],
            notes=data['notes'],
            session=session,
        )

        message = f'Order created! Order number: {order.order_number}'
        if buy_now_mode:
            message += ' Your previous cart has been restored.'

        return Response(
            {'message': message, 'order': OrderSerializer(order).data},
            status=status.HTTP_201_CREATED
        )


class CheckoutCancelView(APIView):
    """POST: Abandon checkout; a buy-now stash is put back."""

    def post(self, request):
        session = CheckoutSession.for_user(request.user)
        restored = cancel_checkout(request.user, session)
        logger.info(f"User {request.user.pk} cancelled checkout, stashed cart restored: {restored}")
        message = 'Checkout cancelled. Your previous cart has been restored.' if restored else 'Checkout cancelled.'
        return Response({'restored': restored, 'message': message})
