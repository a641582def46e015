"""
Core middleware for request processing.
"""
import uuid
import logging
import threading
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id

        thread = threading.current_thread()
        thread.request_id = request_id
        # Set by JWTAuthentication once the principal is known
        thread.tenant_id = None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        thread = threading.current_thread()
        thread.request_id = None
        thread.tenant_id = None
        return response


def bind_tenant_to_thread(tenant_id):
    """Record the active tenant for log records emitted on this thread."""
    threading.current_thread().tenant_id = str(tenant_id) if tenant_id else None


class LoggingFilter(logging.Filter):
    """
    Add request_id and tenant_id to log records from thread-local storage.
    """

    def filter(self, record):
        thread = threading.current_thread()

        request_id = getattr(thread, 'request_id', None)
        if request_id and not hasattr(record, 'request_id'):
            record.request_id = request_id

        tenant_id = getattr(thread, 'tenant_id', None)
        if tenant_id and not hasattr(record, 'tenant_id'):
            record.tenant_id = tenant_id

        return True
