"""
Redis-based rate limiting for API endpoints.

Fixed-window counters keyed by view name and caller (user id when
authenticated, client IP otherwise). Requests are let through whenever
Redis is unreachable or RATE_LIMIT_ENABLED is off.
"""
import logging
from functools import wraps
from typing import Optional

import redis
from django.conf import settings
from rest_framework import exceptions, status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client() -> Optional[redis.Redis]:
    """Lazily connect to Redis; returns None if the server is unavailable."""
    global _redis_client
    if _redis_client is None:
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis connection failed: {e}. Rate limiting disabled for this request.")
            return None
        _redis_client = client
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def get_caller_id(request) -> str:
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return f"user:{user.pk}"
    return f"ip:{get_client_ip(request)}"


def _limit_headers(max_requests: int, remaining: int, ttl: int) -> dict:
    return {
        'X-RateLimit-Limit': str(max_requests),
        'X-RateLimit-Remaining': str(max(0, remaining)),
        'X-RateLimit-Reset': str(ttl),
    }


def check_rate_limit(scope: str, request, max_requests: int, window_seconds: int):
    """
    Count this request against the caller's window.

    Returns:
        Tuple of (429 Response or None, headers dict or None). Both are None
        when limiting is disabled or Redis is down.
    """
    if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
        return None, None

    client = get_redis_client()
    if client is None:
        return None, None

    key = f"rate_limit:{scope}:{get_caller_id(request)}"
    try:
        current_count = client.incr(key)
        if current_count == 1:
            client.expire(key, window_seconds)
        ttl = client.ttl(key)
    except redis.RedisError as e:
        logger.error(f"Redis error in rate limiting: {e}")
        return None, None

    if current_count > max_requests:
        headers = _limit_headers(max_requests, 0, ttl)
        headers['Retry-After'] = str(ttl)
        blocked = Response(
            {
                'error': 'Rate limit exceeded',
                'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                'retry_after': ttl
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS,
            headers=headers
        )
        return blocked, None

    return None, _limit_headers(max_requests, max_requests - current_count, ttl)


def rate_limit(max_requests: int = 20, window_seconds: int = 60):
    """
    Rate limiting decorator for DRF view methods.

    Usage:
        @rate_limit(20, 60)  # 20 requests per minute
        def get(self, request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            blocked, headers = check_rate_limit(
                view_func.__qualname__, request, max_requests, window_seconds
            )
            if blocked is not None:
                return blocked

            response = view_func(self, request, *args, **kwargs)
            for name, value in (headers or {}).items():
                response[name] = value
            return response

        return wrapper
    return decorator


class RateLimitExceeded(exceptions.APIException):
    """Raised from ``RateLimitMixin.initial``; carries the prepared 429 response."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = 'Rate limit exceeded'

    def __init__(self, response):
        super().__init__(detail=response.data['detail'])
        self.response = response


class RateLimitMixin:
    """
    Rate limiting for whole class-based views.

    Blocked requests get the same 429 body as the ``rate_limit`` decorator.

    Usage:
        class CheckoutView(RateLimitMixin, APIView):
            rate_limit_max_requests = 10
            rate_limit_window_seconds = 60
    """
    rate_limit_max_requests = 20
    rate_limit_window_seconds = 60

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        blocked, headers = check_rate_limit(
            self.__class__.__name__,
            request,
            self.rate_limit_max_requests,
            self.rate_limit_window_seconds
        )
        if blocked is not None:
            raise RateLimitExceeded(blocked)
        self.rate_limit_headers = headers or {}

    def handle_exception(self, exc):
        if isinstance(exc, RateLimitExceeded):
            return exc.response
        return super().handle_exception(exc)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        for name, value in getattr(self, 'rate_limit_headers', {}).items():
            response[name] = value
        return response
