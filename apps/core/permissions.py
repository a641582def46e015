"""
DRF permission classes and decorators for permission enforcement.

This module provides:
- HasTenantPermissions: DRF permission class that enforces permission requirements
- @requires_permissions: Decorator to declare required permissions on views
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _as_set(permissions):
    if not permissions:
        return set()
    if isinstance(permissions, str):
        return {permissions}
    return set(permissions)


class HasTenantPermissions(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.

    This permission class:
    1. Reads required_permissions from the handler method, then from the view
    2. Requires an authenticated principal
    3. Verifies every required permission through AuthorizationService
    4. Applies the tenant isolation guard in has_object_permission

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasTenantPermissions]
            required_permissions = ['roles.view']

    Or with the decorator:
        class RoleListView(APIView):
            permission_classes = [HasTenantPermissions]

            @requires_permissions('roles.view')
            def get(self, request):
                pass
    """

    def _required(self, request, view):
        handler = getattr(view, request.method.lower(), None)
        required = getattr(handler, 'required_permissions', None)
        if required is None:
            required = getattr(view, 'required_permissions', None)
        return _as_set(required)

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            return False

        required = self._required(request, view)
        if not required:
            return True

        from apps.rbac.services import AuthorizationService

        if AuthorizationService.has_all_permissions(user, required):
            return True

        SecurityLogger.log_permission_denied(
            user_id=user.pk,
            tenant_id=getattr(user, 'tenant_id', None),
            required_permissions=required,
            path=request.path,
        )
        logger.warning(
            f"Permission denied for {view.__class__.__name__}",
            extra={
                'required_permissions': sorted(required),
                'method': request.method,
                'path': request.path,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return False

    def has_object_permission(self, request, view, obj):
        """
        Tenant isolation for objects exposing ``tenant``/``tenant_id``.

        Objects without a tenant are not guarded here.
        """
        if getattr(obj, 'tenant_id', None) is None and getattr(obj, 'tenant', None) is None:
            return True

        from apps.rbac.guards import TenantIsolationGuard

        required = self._required(request, view)
        if not required:
            return str(getattr(obj, 'tenant_id', None)) == str(request.user.tenant_id)

        return all(
            TenantIsolationGuard.allowed_for_object(request.user, obj, key)
            for key in sorted(required)
        )


def requires_permissions(*permissions):
    """
    Decorator to declare required permissions on view classes or methods.

    The attribute is read by HasTenantPermissions before the handler runs.

    Args:
        *permissions: Permission keys, all of which are required

    Returns:
        Decorator function that sets required_permissions attribute
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permissions = set(permissions)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permissions = set(permissions)
        return wrapped

    return decorator
