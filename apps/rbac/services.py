"""
RBAC services.

Implements:
- AuthorizationService: permission checks used by resource subsystems
- RBACService: administrative operations on roles, assignments and overrides

Cache invalidation for every mutation below happens in apps.rbac.signals,
so changes made through the ORM anywhere else are covered the same way.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import Conflict, NotFound, Unauthorized, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.cache import PermissionCache
from apps.rbac.models import (
    ADMIN_ROLE_KEY, ROLE_KEY_RE, AuditLog, Permission, PermissionOverride,
    Role, RolePermission, User, UserRole,
)
from apps.rbac.resolver import AdminBypass, EffectivePermissionResolver

logger = logging.getLogger(__name__)


class AuthorizationService:
    """
    Permission checks for the rest of the system.

    Every principal argument accepts a User or a user id. Unknown principals
    are denied, never reported.
    """

    cache = PermissionCache()

    @classmethod
    def get_principal(cls, principal) -> Optional[User]:
        if isinstance(principal, User):
            return principal
        if principal is None:
            return None
        try:
            return User.objects.select_related('tenant').get(id=principal)
        except (User.DoesNotExist, ValueError, DjangoValidationError):
            return None

    @classmethod
    def _effective(cls, principal) -> frozenset:
        user = cls.get_principal(principal)
        if user is None:
            return frozenset()
        return cls.cache.get(user)

    @classmethod
    def has_permission(cls, principal, permission_key: str) -> bool:
        """Check if principal currently holds a permission."""
        return permission_key in cls._effective(principal)

    @classmethod
    def has_any_permission(cls, principal, permission_keys: Iterable[str]) -> bool:
        """Check if principal holds at least one of the permissions."""
        return bool(set(permission_keys) & cls._effective(principal))

    @classmethod
    def has_all_permissions(cls, principal, permission_keys: Iterable[str]) -> bool:
        """Check if principal holds every one of the permissions."""
        return set(permission_keys).issubset(cls._effective(principal))

    @classmethod
    def get_effective_permissions(cls, principal) -> List[str]:
        """Sorted list of permission keys currently in force."""
        return sorted(cls._effective(principal))

    @classmethod
    def principal_tenant(cls, principal):
        """
        Tenant id the principal belongs to.

        Raises:
            NotFound: if the principal does not exist
        """
        user = cls.get_principal(principal)
        if user is None:
            raise NotFound('Principal not found')
        return user.tenant_id

    @classmethod
    def is_allowed(cls, principal, resource_tenant, permission_key: str) -> bool:
        """Tenant isolation guard: same tenant AND permission held."""
        from apps.rbac.guards import TenantIsolationGuard
        return TenantIsolationGuard.allowed(principal, resource_tenant, permission_key)

    @classmethod
    def resolve_direct(cls, principal):
        """Resolve from the database, bypassing the cache."""
        user = cls.get_principal(principal)
        if user is None:
            raise NotFound('Principal not found')
        return EffectivePermissionResolver.resolve(user)


class RBACService:
    """
    Administrative operations.

    ``actor`` is the principal performing the change; None means a system
    action (management command, Celery task, signal). A human actor must
    belong to the target tenant and hold the relevant permission, resolved
    directly from the database rather than from the cache.
    """

    # Helpers

    @classmethod
    def _require(cls, actor, tenant, permission_key, action):
        if actor is None:
            return
        if actor.is_active and actor.tenant_id == tenant.pk:
            if AdminBypass.check(actor):
                return
            if permission_key and permission_key in EffectivePermissionResolver.resolve(actor).keys:
                return
        SecurityLogger.log_admin_action_denied(
            actor_id=actor.pk,
            tenant_id=tenant.pk,
            action=action,
            required_permission=permission_key,
        )
        raise Unauthorized()

    @classmethod
    def require_admin(cls, actor, tenant, action):
        if actor is None:
            return
        if actor.is_active and actor.tenant_id == tenant.pk and AdminBypass.check(actor):
            return
        SecurityLogger.log_admin_action_denied(
            actor_id=actor.pk,
            tenant_id=tenant.pk,
            action=action,
            required_permission=ADMIN_ROLE_KEY,
        )
        raise Unauthorized()

    @staticmethod
    def _check_expiry(expires_at: Optional[datetime]):
        if expires_at is not None and expires_at <= timezone.now():
            raise ValidationError(
                'expires_at must be in the future',
                {'expires_at': expires_at.isoformat()}
            )

    @classmethod
    def get_role(cls, tenant, role_id) -> Role:
        """Role of the tenant, or NotFound."""
        try:
            return Role.objects.get(id=role_id, tenant=tenant)
        except (Role.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFound('Role not found', {'role_id': str(role_id)})

    @classmethod
    def get_user(cls, tenant, user_id) -> User:
        """Principal of the tenant, or NotFound."""
        try:
            return User.objects.select_related('tenant').get(id=user_id, tenant=tenant)
        except (User.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFound('User not found', {'user_id': str(user_id)})

    @classmethod
    def get_permission(cls, permission_key: str, active_only=True) -> Permission:
        """Catalog entry for a key, or NotFound."""
        if active_only:
            permission = Permission.objects.active_by_key(permission_key)
        else:
            permission = Permission.objects.by_key(permission_key)
        if permission is None:
            raise NotFound(
                f"Permission '{permission_key}' does not exist",
                {'permission_key': permission_key}
            )
        return permission

    # Roles

    @classmethod
    @transaction.atomic
    def create_role(cls, actor, tenant, key: str, name: str = '', description: str = '',
                    permission_keys: Optional[Iterable[str]] = None, request=None) -> Role:
        """
        Create a custom role in a tenant.

        Raises:
            Unauthorized: actor lacks roles.create in the tenant
            ValidationError: malformed key
            NotFound: unknown or inactive permission key
            Conflict: a role with this key already exists
        """
        cls._require(actor, tenant, 'roles.create', 'create_role')

        if not ROLE_KEY_RE.match(key or ''):
            raise ValidationError(
                'Role key must start with a letter and contain only lowercase letters, digits and underscores',
                {'key': key}
            )
        if Role.objects_with_deleted.filter(tenant=tenant, key=key).exists():
            raise Conflict(f"Role '{key}' already exists", {'key': key})

        permissions = [cls.get_permission(k) for k in sorted(set(permission_keys or []))]

        try:
            role = Role.objects.create(
                tenant=tenant,
                key=key,
                name=name or key.replace('_', ' ').title(),
                description=description,
                is_system=False,
                created_by=actor,
            )
        except IntegrityError:
            raise Conflict(f"Role '{key}' already exists", {'key': key})

        for permission in permissions:
            RolePermission.objects.grant_permission(role, permission, granted_by=actor)

        AuditLog.log_action(
            action='role_created',
            user=actor,
            tenant=tenant,
            target_type='Role',
            target_id=role.id,
            diff={'key': key, 'permissions': [p.key for p in permissions]},
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def deactivate_role(cls, actor, role: Role, request=None) -> Role:
        """
        Deactivate a role. Deactivating an inactive role changes nothing.

        Holders keep the assignment but lose every permission that only this
        role provided.
        """
        cls._require(actor, role.tenant, 'roles.update', 'deactivate_role')

        if role.is_admin:
            raise ValidationError('The admin role cannot be deactivated', {'role': role.key})
        if not role.is_active:
            return role

        role.is_active = False
        role.save(update_fields=['is_active', 'updated_at'])

        AuditLog.log_action(
            action='role_deactivated',
            user=actor,
            tenant=role.tenant,
            target_type='Role',
            target_id=role.id,
            diff={'is_active': {'before': True, 'after': False}},
            metadata={'role_key': role.key},
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def activate_role(cls, actor, role: Role, request=None) -> Role:
        """Reactivate a role (idempotent)."""
        cls._require(actor, role.tenant, 'roles.update', 'activate_role')

        if role.is_active:
            return role

        role.is_active = True
        role.save(update_fields=['is_active', 'updated_at'])

        AuditLog.log_action(
            action='role_activated',
            user=actor,
            tenant=role.tenant,
            target_type='Role',
            target_id=role.id,
            diff={'is_active': {'before': False, 'after': True}},
            metadata={'role_key': role.key},
            request=request,
        )
        return role

    @classmethod
    @transaction.atomic
    def attach_permission(cls, actor, role: Role, permission_key: str, request=None) -> RolePermission:
        """Attach a permission to a role (idempotent)."""
        cls._require(actor, role.tenant, 'roles.manage_permissions', 'attach_permission')
        permission = cls.get_permission(permission_key)

        role_permission, created = RolePermission.objects.grant_permission(
            role, permission, granted_by=actor
        )

        if created:
            AuditLog.log_action(
                action='role_permission_attached',
                user=actor,
                tenant=role.tenant,
                target_type='RolePermission',
                target_id=role_permission.id,
                diff={'permission': permission_key, 'attached': True},
                metadata={'role_key': role.key},
                request=request,
            )
        return role_permission

    @classmethod
    @transaction.atomic
    def detach_permission(cls, actor, role: Role, permission_key: str, request=None):
        """
        Detach a permission from a role.

        Raises:
            NotFound: unknown permission key
            Conflict: the role does not hold the permission
        """
        cls._require(actor, role.tenant, 'roles.manage_permissions', 'detach_permission')
        permission = cls.get_permission(permission_key, active_only=False)

        if not RolePermission.objects.revoke_permission(role, permission):
            raise Conflict(
                f"Role '{role.key}' does not hold '{permission_key}'",
                {'role': role.key, 'permission_key': permission_key}
            )

        AuditLog.log_action(
            action='role_permission_detached',
            user=actor,
            tenant=role.tenant,
            target_type='Role',
            target_id=role.id,
            diff={'permission': permission_key, 'attached': False},
            metadata={'role_key': role.key},
            request=request,
        )

    # Assignments

    @classmethod
    @transaction.atomic
    def assign_role(cls, actor, user: User, role: Role, expires_at: Optional[datetime] = None,
                    request=None) -> UserRole:
        """
        Assign a role to a user, optionally until ``expires_at``.

        Re-assigning an existing assignment reactivates it with the new expiry.
        Only an admin may hand out the admin role.
        """
        cls._require(actor, user.tenant, 'users.manage_roles', 'assign_role')
        if role.is_admin:
            cls.require_admin(actor, user.tenant, 'assign_admin_role')

        if role.tenant_id != user.tenant_id:
            raise NotFound('Role not found', {'role_id': str(role.id)})
        cls._check_expiry(expires_at)

        assignment = UserRole.objects.filter(user=user, role=role).first()
        before = None
        if assignment is None:
            assignment = UserRole(user=user, role=role)
        else:
            before = {
                'is_active': assignment.is_active,
                'expires_at': assignment.expires_at.isoformat() if assignment.expires_at else None,
            }

        assignment.assigned_by = actor
        assignment.assigned_at = timezone.now()
        assignment.expires_at = expires_at
        assignment.is_active = True
        try:
            assignment.save()
        except DjangoValidationError as e:
            raise ValidationError('; '.join(e.messages))
        except IntegrityError:
            raise Conflict('Role assignment changed concurrently', {'role': role.key})

        AuditLog.log_action(
            action='role_assigned',
            user=actor,
            tenant=user.tenant,
            target_type='UserRole',
            target_id=assignment.id,
            diff={
                'before': before,
                'after': {
                    'is_active': True,
                    'expires_at': expires_at.isoformat() if expires_at else None,
                },
            },
            metadata={'target_user_id': str(user.id), 'role_key': role.key},
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def revoke_role(cls, actor, user: User, role: Role, request=None) -> UserRole:
        """
        Revoke a role assignment.

        Raises:
            Conflict: the user has no active assignment to the role
            ValidationError: revoking the tenant's last admin
        """
        cls._require(actor, user.tenant, 'users.manage_roles', 'revoke_role')
        if role.is_admin:
            cls.require_admin(actor, user.tenant, 'revoke_admin_role')

        assignment = UserRole.objects.filter(user=user, role=role, is_active=True).first()
        if assignment is None:
            raise Conflict(
                f"User does not hold role '{role.key}'",
                {'role': role.key, 'user_id': str(user.id)}
            )

        if role.is_admin:
            remaining = UserRole.objects.active().filter(
                role=role, user__is_active=True
            ).exclude(pk=assignment.pk)
            if not remaining.exists():
                raise ValidationError('Cannot revoke the last admin of a tenant')

        assignment.is_active = False
        assignment.save(update_fields=['is_active', 'updated_at'])

        AuditLog.log_action(
            action='role_revoked',
            user=actor,
            tenant=user.tenant,
            target_type='UserRole',
            target_id=assignment.id,
            diff={'is_active': {'before': True, 'after': False}},
            metadata={'target_user_id': str(user.id), 'role_key': role.key},
            request=request,
        )
        return assignment

    # Overrides

    @classmethod
    @transaction.atomic
    def set_override(cls, actor, user: User, permission_key: str, granted: bool,
                     reason: str = '', expires_at: Optional[datetime] = None,
                     request=None) -> PermissionOverride:
        """
        Grant or revoke one permission for one user.

        Upserts the single override for (user, permission); a revoke beats
        every grant.

        Raises:
            Unauthorized: actor lacks users.manage_permissions in the tenant
            NotFound: unknown or inactive permission key
            ValidationError: expires_at is not in the future
            Conflict: a concurrent writer kept winning the insert race
        """
        cls._require(actor, user.tenant, 'users.manage_permissions', 'set_override')
        permission = cls.get_permission(permission_key)
        cls._check_expiry(expires_at)

        existing = PermissionOverride.objects.filter(user=user, permission=permission).first()
        before = None
        if existing is not None:
            before = {
                'is_granted': existing.is_granted,
                'expires_at': existing.expires_at.isoformat() if existing.expires_at else None,
            }

        override = None
        for attempt in range(2):
            try:
                with transaction.atomic():
                    override, created = PermissionOverride.objects.upsert(
                        user=user,
                        permission=permission,
                        is_granted=granted,
                        reason=reason,
                        granted_by=actor,
                        expires_at=expires_at,
                    )
                break
            except IntegrityError:
                logger.info(
                    "Override insert lost a race, retrying as update",
                    extra={'user_id': str(user.id), 'permission_key': permission_key, 'attempt': attempt}
                )
        if override is None:
            raise Conflict(
                'Override changed concurrently',
                {'permission_key': permission_key, 'user_id': str(user.id)}
            )

        AuditLog.log_action(
            action='override_set',
            user=actor,
            tenant=user.tenant,
            target_type='PermissionOverride',
            target_id=override.id,
            diff={
                'before': before,
                'after': {
                    'is_granted': granted,
                    'expires_at': expires_at.isoformat() if expires_at else None,
                },
            },
            metadata={
                'target_user_id': str(user.id),
                'permission_key': permission_key,
                'reason': reason,
            },
            request=request,
        )
        return override

    @classmethod
    @transaction.atomic
    def clear_override(cls, actor, user: User, permission_key: str, request=None) -> bool:
        """
        Remove the override for (user, permission).

        Returns:
            True if an override was removed, False if there was none
        """
        cls._require(actor, user.tenant, 'users.manage_permissions', 'clear_override')
        permission = cls.get_permission(permission_key, active_only=False)

        override = PermissionOverride.objects.filter(user=user, permission=permission).first()
        if override is None:
            return False

        override_id = override.id
        was_granted = override.is_granted
        override.delete()

        AuditLog.log_action(
            action='override_cleared',
            user=actor,
            tenant=user.tenant,
            target_type='PermissionOverride',
            target_id=override_id,
            diff={'before': {'is_granted': was_granted}, 'after': None},
            metadata={'target_user_id': str(user.id), 'permission_key': permission_key},
            request=request,
        )
        return True

    # Principals

    @classmethod
    @transaction.atomic
    def remove_principal(cls, actor, user: User, request=None):
        """Deactivate a user and drop their assignments, overrides and cache entry."""
        cls._require(actor, user.tenant, 'users.delete', 'remove_principal')
        if actor is not None and actor.pk == user.pk:
            raise ValidationError('You cannot remove yourself')

        if AdminBypass.check(user):
            other_admins = UserRole.objects.active().filter(
                role__tenant=user.tenant, role__key=ADMIN_ROLE_KEY, user__is_active=True
            ).exclude(user=user)
            if not other_admins.exists():
                raise ValidationError('Cannot remove the last admin of a tenant')

        user_id = user.id
        user.delete()

        AuditLog.log_action(
            action='principal_removed',
            user=actor,
            tenant=user.tenant,
            target_type='User',
            target_id=user_id,
            request=request,
        )

    # Cache

    @classmethod
    def rebuild_cache(cls, actor=None, request=None, tenant=None) -> int:
        """
        Force a permission cache rebuild. Admin only.

        An admin always rebuilds their own tenant. A system rebuild (no
        actor) covers ``tenant`` when given, otherwise every tenant.

        Returns:
            Number of users rebuilt
        """
        if actor is not None:
            tenant = actor.tenant
            cls.require_admin(actor, tenant, 'rebuild_cache')

        count = AuthorizationService.cache.rebuild(tenant=tenant)

        AuditLog.log_action(
            action='permission_cache_rebuilt',
            user=actor,
            tenant=tenant,
            target_type='EffectivePermissionCache',
            metadata={'users': count},
            request=request,
        )
        return count

    @classmethod
    @transaction.atomic
    def materialize_role_grants(cls, actor, tenant, dry_run: bool = False, request=None) -> int:
        """
        Copy every non-admin user's role-derived permissions into grant
        overrides, so the tenant keeps the same access under overrides_only.

        Keys that already have an override (grant or revoke) are left
        alone. A materialized grant expires with the latest assignment
        that provided it.

        Returns:
            Number of overrides created (or that would be created)
        """
        cls.require_admin(actor, tenant, 'materialize_role_grants')

        now = timezone.now()
        created_count = 0
        for user in User.objects.filter(tenant=tenant, is_active=True):
            if AdminBypass.check(user, now=now):
                continue

            expiry_by_key = {}
            assignments = UserRole.objects.active(now).filter(user=user).select_related('role')
            for assignment in assignments:
                keys = assignment.role.get_permission_keys()
                for key in keys:
                    if key not in expiry_by_key:
                        expiry_by_key[key] = assignment.expires_at
                    elif expiry_by_key[key] is not None:
                        if assignment.expires_at is None:
                            expiry_by_key[key] = None
                        else:
                            expiry_by_key[key] = max(expiry_by_key[key], assignment.expires_at)

            overridden = set(
                PermissionOverride.objects.filter(user=user).values_list('permission__key', flat=True)
            )
            for key in sorted(set(expiry_by_key) - overridden):
                created_count += 1
                if dry_run:
                    continue
                PermissionOverride.objects.create(
                    user=user,
                    permission=Permission.objects.get(key=key),
                    is_granted=True,
                    reason='Materialized from role assignments',
                    granted_by=actor,
                    expires_at=expiry_by_key[key],
                )

        if not dry_run:
            AuditLog.log_action(
                action='role_grants_materialized',
                user=actor,
                tenant=tenant,
                target_type='Tenant',
                target_id=tenant.id,
                metadata={'overrides_created': created_count},
                request=request,
            )
        return created_count
