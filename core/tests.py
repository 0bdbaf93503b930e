"""
Tests for role checks, rate limiting and the API exception handler.
"""
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser, Group
from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate

from cart.views import CheckoutView

from core.exceptions import api_exception_handler
from core.permissions import ADMIN_ROLE, BUYER_ROLE, has_role
from core.rate_limiting import check_rate_limit
from orders.exceptions import InsufficientStockError, OrderDeletionError

User = get_user_model()


class RoleTestCase(TestCase):

    def test_group_membership(self):
        user = User.objects.create_user(username='budi', password='secret')
        Group.objects.create(name=BUYER_ROLE).user_set.add(user)

        self.assertTrue(has_role(user, BUYER_ROLE))
        self.assertFalse(has_role(user, ADMIN_ROLE))

    def test_superuser_is_admin(self):
        user = User.objects.create_superuser(username='root', email='root@example.com', password='secret')

        self.assertTrue(has_role(user, ADMIN_ROLE))

    def test_anonymous_has_no_role(self):
        self.assertFalse(has_role(AnonymousUser(), BUYER_ROLE))


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(TestCase):

    def setUp(self):
        self.request = APIRequestFactory().get('/api/products/autocomplete/', REMOTE_ADDR='10.0.0.7')
        self.request.user = AnonymousUser()
        self.redis = MagicMock()
        self.redis.ttl.return_value = 42

    def test_within_limit_returns_headers(self):
        self.redis.incr.return_value = 1

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            blocked, headers = check_rate_limit('autocomplete', self.request, 20, 60)

        self.assertIsNone(blocked)
        self.assertEqual(headers['X-RateLimit-Remaining'], '19')
        self.redis.incr.assert_called_once_with('rate_limit:autocomplete:ip:10.0.0.7')
        self.redis.expire.assert_called_once_with('rate_limit:autocomplete:ip:10.0.0.7', 60)

    def test_over_limit_blocked(self):
        self.redis.incr.return_value = 21

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            blocked, headers = check_rate_limit('autocomplete', self.request, 20, 60)

        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked['Retry-After'], '42')
        self.assertIsNone(headers)

    def test_redis_down_lets_request_through(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            self.assertEqual(check_rate_limit('autocomplete', self.request, 20, 60), (None, None))

    def test_rate_limited_view_uses_decorator_body(self):
        """
        Given: A buyer who has used up the checkout window
        When: They post to the checkout view
        Then: The 429 body matches the one the rate_limit decorator returns
        """
        self.redis.incr.return_value = 11
        user = User.objects.create_user(username='budi', password='secret')
        request = APIRequestFactory().post('/api/checkout/', {}, format='json')
        force_authenticate(request, user=user)

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            response = CheckoutView.as_view()(request)

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.data['error'], 'Rate limit exceeded')
        self.assertEqual(response.data['detail'], 'Maximum 10 requests per 60 seconds allowed.')
        self.assertEqual(response.data['retry_after'], 42)
        self.assertEqual(response['Retry-After'], '42')
        self.redis.incr.assert_called_once_with(f'rate_limit:CheckoutView:user:{user.pk}')

    @override_settings(RATE_LIMIT_ENABLED=False)
    def test_disabled(self):
        with patch('core.rate_limiting.get_redis_client') as get_client:
            self.assertEqual(check_rate_limit('autocomplete', self.request, 20, 60), (None, None))

        get_client.assert_not_called()


class ExceptionHandlerTestCase(TestCase):

    def test_insufficient_stock(self):
        exc = InsufficientStockError(3, 'Durian', 8, 5)

        response = api_exception_handler(exc, {'view': None})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Insufficient Stock')
        self.assertEqual(response.data['product'], 'Durian')
        self.assertEqual(response.data['available'], 5)

    def test_conflict(self):
        response = api_exception_handler(OrderDeletionError('not cancelled'), {'view': None})

        self.assertEqual(response.status_code, 409)

    def test_database_error_is_generic(self):
        with self.assertLogs('core.exceptions', level='ERROR'):
            response = api_exception_handler(DatabaseError('disk full'), {'view': None})

        self.assertEqual(response.status_code, 500)
        self.assertNotIn('disk full', str(response.data))

    def test_unknown_exception_left_to_django(self):
        self.assertIsNone(api_exception_handler(RuntimeError('boom'), {'view': None}))
