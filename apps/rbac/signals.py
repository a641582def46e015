"""
RBAC signals for role seeding and permission cache invalidation.

Seeds the system roles when a new tenant is created, and drops cached
effective permissions whenever something they were computed from changes.
Handlers run on every ORM write, including the Django shell and management
commands; bulk ``update()`` calls bypass them and fall back to the cache TTL.
"""
import logging

from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


def _cache():
    from apps.rbac.services import AuthorizationService
    return AuthorizationService.cache


def _invalidate_users(user_ids):
    cache = _cache()
    for user_id in set(user_ids):
        cache.invalidate(user_id)


def _role_holders(role_id):
    from apps.rbac.models import UserRole
    return UserRole.objects.filter(role_id=role_id).values_list('user_id', flat=True)


@receiver(post_save, sender='tenants.Tenant')
def seed_roles_on_tenant_creation(sender, instance, created, **kwargs):
    """
    Seed the system roles (admin, customer_service, receptionist) for a new
    tenant and record it in the audit log.
    """
    if not created:
        return

    from apps.rbac.models import AuditLog
    from apps.rbac.management.commands.seed_tenant_roles import seed_roles

    with transaction.atomic():
        results = seed_roles(instance)

        AuditLog.log_action(
            action='tenant_roles_seeded',
            user=None,
            tenant=instance,
            target_type='Tenant',
            target_id=instance.id,
            metadata={
                'roles_created': [key for key, status in results.items() if status == 'created'],
                'total_roles': len(results),
                'trigger': 'post_save_signal'
            }
        )


@receiver(post_save, sender='rbac.Role')
@receiver(post_delete, sender='rbac.Role')
def invalidate_on_role_change(sender, instance, **kwargs):
    """Activation, deactivation and deletion change what every holder gets."""
    _invalidate_users(_role_holders(instance.pk))


@receiver(post_save, sender='rbac.RolePermission')
@receiver(post_delete, sender='rbac.RolePermission')
def invalidate_on_role_permission_change(sender, instance, **kwargs):
    _invalidate_users(_role_holders(instance.role_id))


@receiver(post_save, sender='rbac.UserRole')
@receiver(post_delete, sender='rbac.UserRole')
def invalidate_on_assignment_change(sender, instance, **kwargs):
    _invalidate_users([instance.user_id])


@receiver(post_save, sender='rbac.PermissionOverride')
@receiver(post_delete, sender='rbac.PermissionOverride')
def invalidate_on_override_change(sender, instance, **kwargs):
    _invalidate_users([instance.user_id])


@receiver(post_save, sender='rbac.User')
def invalidate_on_user_change(sender, instance, created, **kwargs):
    """Deactivation and soft deletion empty the user's permissions."""
    if not created:
        _invalidate_users([instance.pk])


@receiver(post_save, sender='rbac.Permission')
@receiver(post_delete, sender='rbac.Permission')
def invalidate_on_permission_change(sender, instance, **kwargs):
    """A catalog change can affect anyone, admins included."""
    logger.info(
        "Permission catalog changed, retiring all cached permissions",
        extra={'permission_key': instance.key}
    )
    _cache().invalidate_all()
