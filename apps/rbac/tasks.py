"""
Celery tasks for the permission cache.

- rebuild_permission_cache: full recompute with era swap
- purge_expired_grants: drops expired overrides and lapsed role assignments
"""
import logging
from django.db import DatabaseError, transaction
from django.utils import timezone
from celery import shared_task

from apps.core.exceptions import CacheUnavailable
from apps.rbac.models import AuditLog, PermissionOverride, UserRole
from apps.rbac.services import RBACService
from apps.tenants.models import Tenant

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def rebuild_permission_cache(self, tenant_id=None):
    """
    Recompute effective permissions for active users.

    Covers every tenant, or only ``tenant_id`` when given. Retries with
    exponential backoff on database or cache backend errors.

    Returns:
        dict: Result with status and number of users rebuilt
    """
    tenant = None
    if tenant_id is not None:
        tenant = Tenant.objects.filter(pk=tenant_id).first()
        if tenant is None:
            logger.warning(
                "Permission cache rebuild skipped, tenant not found",
                extra={'tenant_id': tenant_id}
            )
            return {'status': 'skipped', 'users': 0}

    try:
        count = RBACService.rebuild_cache(actor=None, tenant=tenant)
    except (DatabaseError, CacheUnavailable, ConnectionError) as e:
        logger.warning(
            f"Permission cache rebuild failed, retrying: {str(e)}",
            extra={'retry': self.request.retries, 'tenant_id': tenant_id}
        )
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))

    return {'status': 'success', 'users': count}


@shared_task(bind=True, max_retries=3)
def purge_expired_grants(self):
    """
    Remove overrides past their expiry and deactivate lapsed assignments.

    Expired grants already resolve as absent; this keeps the tables small and
    makes the audit trail show when they lapsed. Rows are changed one at a
    time so the signal handlers invalidate each affected user.

    Returns:
        dict: Counts of purged overrides and deactivated assignments
    """
    now = timezone.now()
    overrides_purged = 0
    assignments_deactivated = 0

    try:
        with transaction.atomic():
            expired_overrides = PermissionOverride.objects.expired(now).select_related(
                'user__tenant', 'permission'
            )
            for override in expired_overrides:
                AuditLog.log_action(
                    action='override_expired',
                    tenant=override.user.tenant,
                    target_type='PermissionOverride',
                    target_id=override.id,
                    diff={'before': {'is_granted': override.is_granted}, 'after': None},
                    metadata={
                        'target_user_id': str(override.user_id),
                        'permission_key': override.permission.key,
                        'expired_at': override.expires_at.isoformat(),
                    }
                )
                override.delete()
                overrides_purged += 1

            lapsed = UserRole.objects.expired(now).select_related('user__tenant', 'role')
            for assignment in lapsed:
                assignment.is_active = False
                assignment.save(update_fields=['is_active', 'updated_at'])
                AuditLog.log_action(
                    action='role_assignment_expired',
                    tenant=assignment.user.tenant,
                    target_type='UserRole',
                    target_id=assignment.id,
                    metadata={
                        'target_user_id': str(assignment.user_id),
                        'role_key': assignment.role.key,
                        'expired_at': assignment.expires_at.isoformat(),
                    }
                )
                assignments_deactivated += 1
    except DatabaseError as e:
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))

    logger.info(
        "Purged expired grants",
        extra={
            'overrides_purged': overrides_purged,
            'assignments_deactivated': assignments_deactivated,
        }
    )
    return {
        'status': 'success',
        'overrides_purged': overrides_purged,
        'assignments_deactivated': assignments_deactivated,
    }
