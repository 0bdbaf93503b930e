"""
URL routing for cart and checkout endpoints.
"""
from django.urls import path
from . import views

app_name = 'cart'

urlpatterns = [
    path('cart/', views.CartListCreateView.as_view(), name='cart-list'),
    path('cart/buy-now/', views.BuyNowView.as_view(), name='cart-buy-now'),
    path('cart/restore/', views.RestoreCartView.as_view(), name='cart-restore'),
    path('cart/<int:pk>/', views.CartItemDetailView.as_view(), name='cart-detail'),

    path('checkout/', views.CheckoutView.as_view(), name='checkout'),
    path('checkout/summary/', views.CheckoutSummaryView.as_view(), name='checkout-summary'),
    path('checkout/cancel/', views.CheckoutCancelView.as_view(), name='checkout-cancel'),
]
