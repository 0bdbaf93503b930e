"""
URL configuration for the grocery storefront and admin back-office.
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def health_check(request):
    """Health check endpoint for container orchestration."""
    return JsonResponse({'status': 'healthy', 'service': 'grocery-api'})


urlpatterns = [
    path('admin/', admin.site.urls),
    path('health/', health_check, name='health-check'),
    path('api/', include('catalog.urls')),
    path('api/', include('cart.urls')),
    path('api/', include('orders.urls')),
]
