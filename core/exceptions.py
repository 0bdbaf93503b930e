"""
REST framework exception handler translating order domain errors.
"""
import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from orders.exceptions import (
    InsufficientStockError,
    InvalidStatusTransition,
    OrderDeletionError,
    OrderError,
)

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (InvalidStatusTransition, OrderDeletionError)


def api_exception_handler(exc, context):
    """
    Fall back to DRF's handler, then map domain errors to JSON responses.

    Validation and stock errors answer 400; state conflicts answer 409;
    database failures answer a generic 500 after the transaction rolled back.
    """
    response = exception_handler(exc, context)
    if response is not None:
        return response

    if isinstance(exc, OrderError):
        view = context.get('view')
        logger.warning(f"{type(exc).__name__} in {type(view).__name__}: {exc}")
        body = {'error': exc.title, 'detail': str(exc)}
        if isinstance(exc, InsufficientStockError):
            body['product'] = exc.product_name
            body['available'] = exc.available
        code = status.HTTP_409_CONFLICT if isinstance(exc, CONFLICT_ERRORS) else status.HTTP_400_BAD_REQUEST
        return Response(body, status=code)

    if isinstance(exc, DatabaseError):
        view = context.get('view')
        logger.error(f"Database error in {type(view).__name__}: {exc}", exc_info=exc)
        return Response(
            {'error': 'Server Error', 'detail': 'An unexpected error occurred'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return None
