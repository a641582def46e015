"""
Tests for RBAC models.

Tests:
- Permission key validation and derived resource/action
- Role uniqueness per tenant and system role seeding
- Same-tenant rule for role assignments
- Active/expired querysets for assignments and overrides
- Soft deletion of principals
- Audit log entries
"""
import pytest
from datetime import timedelta
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import RequestFactory
from django.utils import timezone

from apps.rbac.models import (
    AuditLog, EffectivePermissionCache, Permission, PermissionOverride,
    Role, RolePermission, User, UserRole,
)


@pytest.mark.django_db
class TestPermissionModel:
    """Test the global permission catalog."""

    def test_resource_and_action_derived_from_key(self):
        permission = Permission.objects.create(key='work_orders.assign', label='Assign')

        assert permission.resource == 'work_orders'
        assert permission.action == 'assign'

    @pytest.mark.parametrize('key', ['invoices', 'Invoices.view', 'invoices.view.all', '.view', 'invoices.'])
    def test_malformed_key_rejected(self, key):
        with pytest.raises(ValidationError):
            Permission.objects.create(key=key, label='Bad')

    def test_key_is_unique(self):
        Permission.objects.create(key='invoices.view', label='View')

        with pytest.raises(IntegrityError), transaction.atomic():
            Permission.objects.create(key='invoices.view', label='View again')

    def test_get_or_create_permission_is_idempotent(self):
        first, created = Permission.objects.get_or_create_permission('invoices.view', 'View Invoices')
        second, created_again = Permission.objects.get_or_create_permission('invoices.view', 'Other')

        assert created is True
        assert created_again is False
        assert first.pk == second.pk
        assert second.label == 'View Invoices'

    def test_active_keys_skip_inactive_and_deleted(self):
        Permission.objects.create(key='invoices.view', label='View')
        Permission.objects.create(key='invoices.void', label='Void', is_active=False)
        deleted = Permission.objects.create(key='invoices.print', label='Print')
        deleted.delete()

        assert Permission.objects.active_keys() == {'invoices.view'}


@pytest.mark.django_db
class TestRoleModel:
    """Test per-tenant roles."""

    def test_system_roles_seeded_for_new_tenant(self, tenant):
        keys = set(Role.objects.system_roles(tenant).values_list('key', flat=True))

        assert keys == {'admin', 'customer_service', 'receptionist'}

    def test_admin_role_holds_every_permission(self, tenant, permissions):
        admin_role = Role.objects.by_key(tenant, 'admin')

        assert admin_role.is_admin
        assert admin_role.get_permission_keys() == set(permissions.values_list('key', flat=True))

    def test_receptionist_role_permissions(self, tenant):
        receptionist = Role.objects.by_key(tenant, 'receptionist')
        keys = receptionist.get_permission_keys()

        assert {'customers.view', 'customers.create', 'work_orders.create'} <= keys
        assert 'invoices.delete' not in keys
        assert 'users.manage_roles' not in keys

    def test_role_key_unique_per_tenant(self, tenant):
        with pytest.raises(IntegrityError), transaction.atomic():
            Role.objects.create(tenant=tenant, key='receptionist', name='Duplicate')

    def test_same_key_allowed_in_other_tenant(self, tenant, other_tenant):
        assert Role.objects.by_key(tenant, 'receptionist').pk != Role.objects.by_key(other_tenant, 'receptionist').pk

    def test_get_permissions_skips_inactive_permission(self, tenant):
        role = Role.objects.create(tenant=tenant, key='parts_clerk', name='Parts Clerk')
        active = Permission.objects.get(key='inventory.view')
        inactive = Permission.objects.get(key='inventory.delete')
        inactive.is_active = False
        inactive.save()
        RolePermission.objects.grant_permission(role, active)
        RolePermission.objects.grant_permission(role, inactive)

        assert role.get_permission_keys() == {'inventory.view'}

    def test_grant_and_revoke_permission(self, tenant):
        role = Role.objects.create(tenant=tenant, key='parts_clerk', name='Parts Clerk')
        permission = Permission.objects.get(key='inventory.view')

        _, created = RolePermission.objects.grant_permission(role, permission)
        _, created_again = RolePermission.objects.grant_permission(role, permission)

        assert created is True
        assert created_again is False
        assert RolePermission.objects.revoke_permission(role, permission) == 1
        assert RolePermission.objects.revoke_permission(role, permission) == 0


@pytest.mark.django_db
class TestUserRoleModel:
    """Test role assignments."""

    def test_cross_tenant_assignment_rejected(self, user, other_tenant):
        foreign_role = Role.objects.by_key(other_tenant, 'receptionist')

        with pytest.raises(ValidationError):
            UserRole.objects.create(user=user, role=foreign_role)

    def test_active_excludes_expired_revoked_and_deactivated(self, tenant, user):
        now = timezone.now()
        receptionist = Role.objects.by_key(tenant, 'receptionist')
        customer_service = Role.objects.by_key(tenant, 'customer_service')
        custom = Role.objects.create(tenant=tenant, key='night_shift', name='Night Shift', is_active=False)

        UserRole.objects.create(user=user, role=receptionist, expires_at=now - timedelta(minutes=1))
        UserRole.objects.create(user=user, role=customer_service, is_active=False)
        UserRole.objects.create(user=user, role=custom)

        assert not UserRole.objects.active(now).filter(user=user).exists()

    def test_active_includes_future_expiry(self, tenant, user):
        now = timezone.now()
        receptionist = Role.objects.by_key(tenant, 'receptionist')
        UserRole.objects.create(user=user, role=receptionist, expires_at=now + timedelta(days=1))

        assert UserRole.objects.active(now).filter(user=user).count() == 1

    def test_expired_lists_lapsed_active_assignments(self, tenant, user):
        now = timezone.now()
        receptionist = Role.objects.by_key(tenant, 'receptionist')
        assignment = UserRole.objects.create(user=user, role=receptionist, expires_at=now - timedelta(seconds=1))

        assert list(UserRole.objects.expired(now)) == [assignment]
        assert not assignment.is_in_force(now)


@pytest.mark.django_db
class TestPermissionOverrideModel:
    """Test per-user overrides."""

    def test_one_override_per_user_and_permission(self, user, permissions):
        permission = Permission.objects.get(key='invoices.view')
        PermissionOverride.objects.create(user=user, permission=permission, is_granted=True)

        with pytest.raises(IntegrityError), transaction.atomic():
            PermissionOverride.objects.create(user=user, permission=permission, is_granted=False)

    def test_upsert_replaces_existing(self, user, permissions):
        permission = Permission.objects.get(key='invoices.view')
        first, created = PermissionOverride.objects.upsert(user, permission, is_granted=True)
        second, created_again = PermissionOverride.objects.upsert(user, permission, is_granted=False, reason='Audit')

        assert created is True
        assert created_again is False
        assert first.pk == second.pk
        assert PermissionOverride.objects.get(pk=first.pk).is_granted is False

    def test_active_ignores_expired(self, user, permissions):
        now = timezone.now()
        PermissionOverride.objects.create(
            user=user,
            permission=Permission.objects.get(key='invoices.view'),
            is_granted=True,
            expires_at=now - timedelta(seconds=1),
        )

        assert not PermissionOverride.objects.active(now).filter(user=user).exists()
        assert PermissionOverride.objects.expired(now).filter(user=user).count() == 1


@pytest.mark.django_db
class TestUserModel:
    """Test principals."""

    def test_create_user_normalizes_email_and_hashes_password(self, tenant):
        user = User.objects.create_user(email='Tech@Central-Garage.TEST', tenant=tenant, password='pw-123456')

        assert user.email == 'Tech@central-garage.test'
        assert user.password_hash != 'pw-123456'
        assert user.check_password('pw-123456')

    def test_create_user_requires_tenant(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email='nobody@example.com', tenant=None)

    def test_delete_is_soft_and_drops_grants(self, receptionist, permissions):
        PermissionOverride.objects.create(
            user=receptionist,
            permission=Permission.objects.get(key='invoices.view'),
            is_granted=True,
        )
        EffectivePermissionCache.objects.create(user=receptionist, permission_model='roles_and_overrides')

        receptionist.delete()

        assert not User.objects.filter(pk=receptionist.pk).exists()
        stored = User.objects_with_deleted.get(pk=receptionist.pk)
        assert stored.is_active is False
        assert stored.deleted_at is not None
        assert not UserRole.objects.filter(user=receptionist).exists()
        assert not PermissionOverride.objects.filter(user=receptionist).exists()
        assert not EffectivePermissionCache.objects.filter(user_id=receptionist.pk).exists()


@pytest.mark.django_db
class TestAuditLog:
    """Test audit log entries."""

    def test_log_action_records_request_context(self, tenant, admin_user):
        request = RequestFactory().post(
            '/v1/roles',
            HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1',
            HTTP_USER_AGENT='pytest',
        )
        request.request_id = 'req-123'

        entry = AuditLog.log_action(
            action='role_created',
            user=admin_user,
            tenant=tenant,
            target_type='Role',
            diff={'key': 'parts_clerk'},
            request=request,
        )

        assert entry.ip_address == '203.0.113.7'
        assert entry.user_agent == 'pytest'
        assert entry.request_id == 'req-123'
        assert entry.user == admin_user

    def test_log_action_without_actor_is_system(self, tenant):
        entry = AuditLog.log_action(action='permission_cache_rebuilt', tenant=tenant)

        assert entry.user is None
        assert str(entry) == 'Central Garage - System - permission_cache_rebuilt'

    def test_log_action_failure_does_not_raise(self, tenant, monkeypatch):
        def fail(**kwargs):
            raise IntegrityError('audit table unavailable')

        monkeypatch.setattr(AuditLog.objects, 'create', fail)

        assert AuditLog.log_action(action='role_created', tenant=tenant) is None
