"""
Role checks backed by Django auth groups.

Users belong to the ``admin`` or ``buyer`` group; superusers are treated as
admins so the Django admin account can operate the back-office API.
"""
from rest_framework.permissions import BasePermission

ADMIN_ROLE = 'admin'
BUYER_ROLE = 'buyer'


def has_role(user, role: str) -> bool:
    """Return True if an authenticated user holds the given role."""
    if user is None or not user.is_authenticated:
        return False
    if role == ADMIN_ROLE and user.is_superuser:
        return True
    return user.groups.filter(name=role).exists()


class IsAdminRole(BasePermission):
    """Allows access only to users holding the admin role."""
    message = 'Admin role required.'

    def has_permission(self, request, view):
        return has_role(request.user, ADMIN_ROLE)


class IsAdminOrReadOnly(BasePermission):
    """Authenticated users may read; writes require the admin role."""

    def has_permission(self, request, view):
        if request.method in ('GET', 'HEAD', 'OPTIONS'):
            return bool(request.user and request.user.is_authenticated)
        return has_role(request.user, ADMIN_ROLE)
