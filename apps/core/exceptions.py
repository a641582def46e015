"""
Exception hierarchy and the DRF exception handler.

Every authorization denial reaches API clients as the same 403 body so a
caller cannot tell a missing resource from a foreign-tenant one or from an
unknown permission key.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework import exceptions as drf_exceptions

logger = logging.getLogger(__name__)

NOT_PERMITTED = 'Not permitted'


class WorkshopException(Exception):
    """Base exception for workshop-specific errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(WorkshopException):
    """Unknown role, permission or principal, or one owned by another tenant."""
    status_code = 404
    code = 'NOT_FOUND'


class Unauthorized(WorkshopException):
    """Caller lacks administrative rights over the target tenant."""
    status_code = 403
    code = 'NOT_PERMITTED'

    def __init__(self, message=NOT_PERMITTED, details=None):
        super().__init__(message, details)


class Conflict(WorkshopException):
    """A write collided with existing state and could not be applied as an update."""
    status_code = 409
    code = 'CONFLICT'


class ValidationError(WorkshopException):
    """Raised when input validation fails."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class StaleCache(WorkshopException):
    """
    A cached permission snapshot can no longer be trusted.

    Internal only: the permission cache raises and catches it to fall back to
    a direct resolve. It never reaches a caller.
    """


class CacheUnavailable(WorkshopException):
    """The permission cache backend could not be read or written during a rebuild."""
    status_code = 503
    code = 'CACHE_UNAVAILABLE'


class SelfReferenceError(WorkshopException):
    """
    An administrator check tried to evaluate a permission.

    The administrator check is a leaf query, so nothing raises this today.
    """


def _error_body(error, code, request_id, details=None):
    body = {
        'error': error,
        'code': code,
        'request_id': request_id,
    }
    if details:
        body['details'] = details
    return body


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        }
    )

    if isinstance(exc, Unauthorized) or isinstance(exc, drf_exceptions.PermissionDenied):
        return Response(
            _error_body(NOT_PERMITTED, 'NOT_PERMITTED', request_id),
            status=status.HTTP_403_FORBIDDEN
        )

    if isinstance(exc, WorkshopException):
        return Response(
            _error_body(exc.message, exc.code, request_id, exc.details),
            status=exc.status_code
        )

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"Unhandled API exception: {exc.__class__.__name__}",
            extra={'request_id': request_id},
            exc_info=exc
        )
        return Response(
            _error_body('Internal server error', 'INTERNAL_ERROR', request_id),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
