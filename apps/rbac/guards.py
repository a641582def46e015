"""
Tenant isolation guard.

A resource may only be acted on by a principal of the tenant that owns it,
and only with the required permission. Both conditions always apply; holding
``admin`` in one tenant grants nothing in another.
"""
import logging

from apps.core.exceptions import Unauthorized
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _tenant_id(value):
    return getattr(value, 'pk', value)


class TenantIsolationGuard:
    """allowed = (resource tenant == principal tenant) AND has_permission."""

    @classmethod
    def allowed(cls, principal, resource_tenant, permission_key) -> bool:
        """
        Check whether a principal may act on a resource.

        Args:
            principal: User instance or id
            resource_tenant: Tenant instance or id owning the resource
            permission_key: Permission required for the operation

        Returns:
            True only if the tenants match and the permission is held
        """
        from apps.rbac.services import AuthorizationService

        user = AuthorizationService.get_principal(principal)
        resource_tenant_id = _tenant_id(resource_tenant)
        if user is None or resource_tenant_id is None:
            return False

        same_tenant = str(user.tenant_id) == str(resource_tenant_id)
        if not same_tenant:
            SecurityLogger.log_cross_tenant_access(
                user_id=user.pk,
                tenant_id=user.tenant_id,
                resource_tenant_id=resource_tenant_id,
                permission_key=permission_key,
            )
            return False

        return AuthorizationService.has_permission(user, permission_key)

    @classmethod
    def check(cls, principal, resource_tenant, permission_key):
        """Like allowed(), but raises Unauthorized on denial."""
        if not cls.allowed(principal, resource_tenant, permission_key):
            raise Unauthorized()

    @classmethod
    def allowed_for_object(cls, principal, obj, permission_key) -> bool:
        """Guard an object exposing ``tenant_id`` or ``tenant``."""
        resource_tenant = getattr(obj, 'tenant_id', None)
        if resource_tenant is None:
            resource_tenant = getattr(obj, 'tenant', None)
        return cls.allowed(principal, resource_tenant, permission_key)
