"""
Tests for effective permission resolution.

Tests:
- Deny by default
- Union of role permissions and granted overrides
- Revoke precedence over role grants
- Admin bypass, including over revokes
- Expiry of overrides and assignments
- Permission models (roles_and_overrides, overrides_only)
"""
import pytest
from datetime import timedelta
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from apps.rbac.models import Permission, PermissionOverride, Role, RolePermission, UserRole
from apps.rbac.resolver import (
    AdminBypass, EffectivePermissionResolver, PermissionModel, ResolvedPermissions, Source,
)


def override(user, key, granted, expires_at=None):
    return PermissionOverride.objects.create(
        user=user,
        permission=Permission.objects.get(key=key),
        is_granted=granted,
        expires_at=expires_at,
    )


@pytest.mark.django_db
class TestEffectivePermissionResolver:
    """Test resolution straight from the database."""

    def test_user_without_grants_has_nothing(self, user):
        resolved = EffectivePermissionResolver.resolve(user)

        assert resolved.keys == frozenset()
        assert resolved.is_admin is False
        assert resolved.valid_until is None

    def test_role_permissions_are_granted(self, receptionist, tenant):
        resolved = EffectivePermissionResolver.resolve(receptionist)

        assert resolved.keys == Role.objects.by_key(tenant, 'receptionist').get_permission_keys()
        assert resolved.provenance['customers.view'] == Source.ROLE

    def test_multiple_roles_are_merged(self, tenant, make_user):
        user = make_user(tenant, roles=['receptionist', 'customer_service'])
        expected = (
            Role.objects.by_key(tenant, 'receptionist').get_permission_keys()
            | Role.objects.by_key(tenant, 'customer_service').get_permission_keys()
        )

        assert EffectivePermissionResolver.resolve(user).keys == expected

    def test_granted_override_adds_permission(self, receptionist):
        override(receptionist, 'invoices.print', granted=True)

        resolved = EffectivePermissionResolver.resolve(receptionist)

        assert 'invoices.print' in resolved.keys
        assert resolved.provenance['invoices.print'] == Source.GRANTED

    def test_revoke_beats_role_grant(self, receptionist):
        override(receptionist, 'customers.create', granted=False)

        resolved = EffectivePermissionResolver.resolve(receptionist)

        assert 'customers.create' not in resolved.keys
        assert 'customers.view' in resolved.keys
        assert resolved.full_provenance()['customers.create'] == Source.REVOKED

    def test_admin_gets_whole_active_catalog(self, admin_user, permissions):
        resolved = EffectivePermissionResolver.resolve(admin_user)

        assert resolved.is_admin is True
        assert resolved.keys == frozenset(permissions.values_list('key', flat=True))
        assert set(resolved.provenance.values()) == {Source.ADMIN}

    def test_admin_ignores_revokes(self, admin_user):
        override(admin_user, 'invoices.void', granted=False)

        assert 'invoices.void' in EffectivePermissionResolver.resolve(admin_user).keys

    def test_admin_never_gets_inactive_permission(self, admin_user):
        permission = Permission.objects.get(key='invoices.void')
        permission.is_active = False
        permission.save()

        assert 'invoices.void' not in EffectivePermissionResolver.resolve(admin_user).keys

    def test_deactivated_role_grants_nothing(self, receptionist, tenant):
        role = Role.objects.by_key(tenant, 'receptionist')
        role.is_active = False
        role.save()

        assert EffectivePermissionResolver.resolve(receptionist).keys == frozenset()

    def test_inactive_user_has_nothing(self, admin_user):
        admin_user.is_active = False
        admin_user.save()

        assert EffectivePermissionResolver.resolve(admin_user).keys == frozenset()

    def test_expired_override_is_absent(self, receptionist):
        now = timezone.now()
        override(receptionist, 'customers.create', granted=False, expires_at=now - timedelta(seconds=1))
        override(receptionist, 'invoices.print', granted=True, expires_at=now - timedelta(seconds=1))

        resolved = EffectivePermissionResolver.resolve(receptionist, now=now)

        assert 'customers.create' in resolved.keys
        assert 'invoices.print' not in resolved.keys

    def test_override_expires_at_evaluation_time(self, receptionist):
        now = timezone.now()
        expires_at = now + timedelta(hours=1)
        override(receptionist, 'invoices.print', granted=True, expires_at=expires_at)

        before = EffectivePermissionResolver.resolve(receptionist, now=now)
        after = EffectivePermissionResolver.resolve(receptionist, now=expires_at)

        assert 'invoices.print' in before.keys
        assert before.valid_until == expires_at
        assert 'invoices.print' not in after.keys

    def test_valid_until_is_earliest_expiry(self, tenant, user):
        now = timezone.now()
        UserRole.objects.create(
            user=user,
            role=Role.objects.by_key(tenant, 'receptionist'),
            expires_at=now + timedelta(days=2),
        )
        override(user, 'invoices.print', granted=True, expires_at=now + timedelta(hours=3))

        resolved = EffectivePermissionResolver.resolve(user, now=now)

        assert resolved.valid_until == now + timedelta(hours=3)

    def test_overrides_only_ignores_roles(self, receptionist):
        override(receptionist, 'invoices.print', granted=True)

        resolved = EffectivePermissionResolver.resolve(
            receptionist, permission_model=PermissionModel.OVERRIDES_ONLY
        )

        assert resolved.keys == frozenset({'invoices.print'})
        assert resolved.permission_model == PermissionModel.OVERRIDES_ONLY

    def test_permission_model_read_from_settings(self, receptionist, settings):
        settings.RBAC_PERMISSION_MODEL = PermissionModel.OVERRIDES_ONLY

        assert EffectivePermissionResolver.resolve(receptionist).keys == frozenset()

    def test_unknown_permission_model_is_a_configuration_error(self, receptionist, settings):
        settings.RBAC_PERMISSION_MODEL = 'roles_only'

        with pytest.raises(ImproperlyConfigured):
            EffectivePermissionResolver.resolve(receptionist)

    def test_permission_detached_from_role_is_lost(self, receptionist, tenant):
        role = Role.objects.by_key(tenant, 'receptionist')
        RolePermission.objects.revoke_permission(role, Permission.objects.get(key='customers.create'))

        assert 'customers.create' not in EffectivePermissionResolver.resolve(receptionist).keys


@pytest.mark.django_db
class TestAdminBypass:
    """Test the administrator check."""

    def test_starts_unresolved_and_caches_state(self, admin_user):
        bypass = AdminBypass(admin_user)

        assert bypass.state == AdminBypass.UNRESOLVED
        assert bypass.is_admin is True
        assert bypass.state == AdminBypass.ADMIN

    def test_non_admin(self, receptionist):
        assert AdminBypass.check(receptionist) is False

    def test_expired_admin_assignment_does_not_count(self, tenant, user):
        UserRole.objects.create(
            user=user,
            role=Role.objects.by_key(tenant, 'admin'),
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        assert AdminBypass.check(user) is False

    def test_expires_with_assignment(self, tenant, user):
        expires_at = timezone.now() + timedelta(days=1)
        UserRole.objects.create(user=user, role=Role.objects.by_key(tenant, 'admin'), expires_at=expires_at)

        bypass = AdminBypass(user)

        assert bypass.is_admin
        assert bypass.expires_at == expires_at
        assert EffectivePermissionResolver.resolve(user).valid_until == expires_at

    def test_other_tenant_admin_is_not_admin_here(self, other_admin, tenant):
        assert AdminBypass.check(other_admin) is True
        assert other_admin.tenant_id != tenant.id


class TestResolvedPermissions:
    """Test the resolution result."""

    def test_expiry_check(self):
        now = timezone.now()
        resolved = ResolvedPermissions(keys=frozenset({'invoices.view'}), valid_until=now)

        assert resolved.is_expired(now)
        assert not resolved.is_expired(now - timedelta(seconds=1))
        assert not ResolvedPermissions.empty(PermissionModel.DEFAULT).is_expired(now)

    def test_from_cache_rejects_missing_keys(self):
        with pytest.raises(KeyError):
            ResolvedPermissions.from_cache({'permission_model': PermissionModel.DEFAULT})
