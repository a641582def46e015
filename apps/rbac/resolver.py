"""
Effective permission resolution.

Implements:
- PermissionModel: which sources may grant a permission
- AdminBypass: leaf query deciding whether a user holds the admin role
- combine(): pure precedence rule, (from roles ∪ granted) − revoked
- EffectivePermissionResolver: reads roles and overrides and applies combine()

Nothing here reads the permission cache; the cache is built on top of this.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.rbac.models import (
    ADMIN_ROLE_KEY, Permission, PermissionOverride, RolePermission, UserRole,
)

logger = logging.getLogger(__name__)


class PermissionModel:
    """Which sources are allowed to grant a permission."""

    ROLES_AND_OVERRIDES = 'roles_and_overrides'
    OVERRIDES_ONLY = 'overrides_only'

    CHOICES = (ROLES_AND_OVERRIDES, OVERRIDES_ONLY)
    DEFAULT = ROLES_AND_OVERRIDES

    @classmethod
    def current(cls) -> str:
        """
        Read the configured model.

        Raises:
            ImproperlyConfigured: if RBAC_PERMISSION_MODEL is not a known model
        """
        value = getattr(settings, 'RBAC_PERMISSION_MODEL', cls.DEFAULT) or cls.DEFAULT
        if value not in cls.CHOICES:
            raise ImproperlyConfigured(
                f"RBAC_PERMISSION_MODEL must be one of {', '.join(cls.CHOICES)}; got '{value}'"
            )
        return value


class Source:
    """Provenance tags stored alongside each resolved key."""

    ADMIN = 'admin'
    ROLE = 'role'
    GRANTED = 'granted'
    REVOKED = 'revoked'


def combine(role_keys: Iterable[str], granted_keys: Iterable[str],
            revoked_keys: Iterable[str]) -> Dict[str, str]:
    """
    Apply override precedence.

    Result is (role_keys ∪ granted_keys) − revoked_keys. A key that comes
    from a role keeps the 'role' tag even if it is also granted by override.

    Returns:
        Dict mapping every effective key to its source
    """
    revoked = set(revoked_keys)
    provenance = {}
    for key in granted_keys:
        provenance[key] = Source.GRANTED
    for key in role_keys:
        provenance[key] = Source.ROLE
    for key in revoked:
        provenance.pop(key, None)
    return provenance


@dataclass
class ResolvedPermissions:
    """Outcome of one resolution, with enough context to cache it safely."""

    keys: frozenset
    provenance: Dict[str, str] = field(default_factory=dict)
    revoked: frozenset = frozenset()
    is_admin: bool = False
    permission_model: str = PermissionModel.DEFAULT
    valid_until: Optional[datetime] = None

    def is_expired(self, now=None) -> bool:
        now = now or timezone.now()
        return self.valid_until is not None and self.valid_until <= now

    def full_provenance(self) -> Dict[str, str]:
        data = dict(self.provenance)
        for key in self.revoked:
            data[key] = Source.REVOKED
        return data

    def to_row(self) -> dict:
        """Field values for an EffectivePermissionCache row."""
        return {
            'permission_keys': sorted(self.keys),
            'provenance': self.full_provenance(),
            'is_admin': self.is_admin,
            'permission_model': self.permission_model,
            'valid_until': self.valid_until,
        }

    def to_cache(self) -> dict:
        return {
            'keys': sorted(self.keys),
            'provenance': self.provenance,
            'revoked': sorted(self.revoked),
            'is_admin': self.is_admin,
            'permission_model': self.permission_model,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
        }

    @classmethod
    def from_cache(cls, data: dict) -> 'ResolvedPermissions':
        valid_until = data.get('valid_until')
        return cls(
            keys=frozenset(data['keys']),
            provenance=dict(data.get('provenance') or {}),
            revoked=frozenset(data.get('revoked') or ()),
            is_admin=bool(data.get('is_admin')),
            permission_model=data['permission_model'],
            valid_until=parse_datetime(valid_until) if valid_until else None,
        )

    @classmethod
    def empty(cls, permission_model: str) -> 'ResolvedPermissions':
        return cls(keys=frozenset(), permission_model=permission_model)


class AdminBypass:
    """
    Decides whether a user holds an active ``admin`` role in their own tenant.

    Resolved once per instance by a direct query on role assignments. It
    never consults permissions, the resolver or the cache, so it cannot
    recurse into itself.
    """

    UNRESOLVED = 'unresolved'
    ADMIN = 'admin'
    NON_ADMIN = 'non_admin'

    def __init__(self, user, now=None):
        self.user = user
        self.now = now
        self.state = self.UNRESOLVED
        self.expires_at = None

    def resolve(self) -> str:
        if self.state != self.UNRESOLVED:
            return self.state

        assignments = UserRole.objects.active(self.now).filter(
            user=self.user,
            role__key=ADMIN_ROLE_KEY,
        )
        expiries = list(assignments.values_list('expires_at', flat=True))
        if expiries:
            self.state = self.ADMIN
            # Admin lasts as long as the longest-lived assignment
            if all(expiry is not None for expiry in expiries):
                self.expires_at = max(expiries)
        else:
            self.state = self.NON_ADMIN
        return self.state

    @property
    def is_admin(self) -> bool:
        return self.resolve() == self.ADMIN

    @classmethod
    def check(cls, user, now=None) -> bool:
        return cls(user, now=now).is_admin


def _earliest(*candidates):
    values = [value for value in candidates if value is not None]
    return min(values) if values else None


class EffectivePermissionResolver:
    """
    Computes the permissions currently in force for a user, straight from
    the database.

    The configured PermissionModel is read once per call.
    """

    @classmethod
    def resolve(cls, user, now: Optional[datetime] = None,
                permission_model: Optional[str] = None) -> ResolvedPermissions:
        """
        Resolve effective permissions.

        Args:
            user: User instance
            now: Evaluation time (defaults to the current time)
            permission_model: Override the configured PermissionModel

        Returns:
            ResolvedPermissions
        """
        now = now or timezone.now()
        permission_model = permission_model or PermissionModel.current()

        if not user.is_active or user.deleted_at is not None:
            return ResolvedPermissions.empty(permission_model)

        bypass = AdminBypass(user, now=now)
        if bypass.is_admin:
            keys = Permission.objects.active_keys()
            return ResolvedPermissions(
                keys=frozenset(keys),
                provenance={key: Source.ADMIN for key in keys},
                is_admin=True,
                permission_model=permission_model,
                valid_until=bypass.expires_at,
            )

        role_keys: Set[str] = set()
        roles_valid_until = None
        if permission_model == PermissionModel.ROLES_AND_OVERRIDES:
            role_keys, roles_valid_until = cls._role_permissions(user, now)

        granted_keys = set()
        revoked_keys = set()
        overrides_valid_until = None
        overrides = PermissionOverride.objects.active(now).filter(
            user=user,
        ).values_list('permission__key', 'is_granted', 'expires_at')
        for key, is_granted, expires_at in overrides:
            if is_granted:
                granted_keys.add(key)
            else:
                revoked_keys.add(key)
            overrides_valid_until = _earliest(overrides_valid_until, expires_at)

        provenance = combine(role_keys, granted_keys, revoked_keys)

        resolved = ResolvedPermissions(
            keys=frozenset(provenance),
            provenance=provenance,
            revoked=frozenset(revoked_keys),
            is_admin=False,
            permission_model=permission_model,
            valid_until=_earliest(roles_valid_until, overrides_valid_until),
        )

        logger.debug(
            "Resolved permissions",
            extra={
                'user_id': str(user.id),
                'permission_count': len(resolved.keys),
                'permission_model': permission_model,
            }
        )
        return resolved

    @staticmethod
    def _role_permissions(user, now):
        assignments = list(
            UserRole.objects.active(now).filter(user=user).values_list('role_id', 'expires_at')
        )
        if not assignments:
            return set(), None

        role_ids = [role_id for role_id, _ in assignments]
        keys = set(
            RolePermission.objects.filter(
                role_id__in=role_ids,
                permission__is_active=True,
                permission__deleted_at__isnull=True,
            ).values_list('permission__key', flat=True)
        )
        valid_until = _earliest(*(expires_at for _, expires_at in assignments))
        return keys, valid_until
