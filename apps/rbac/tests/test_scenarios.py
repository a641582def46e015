"""
End-to-end permission scenarios across services, cache and guard.
"""
import pytest
from datetime import timedelta
from django.utils import timezone

from apps.rbac.management.commands.seed_tenant_roles import sync_role_permissions
from apps.rbac.models import Permission, PermissionOverride, Role
from apps.rbac.guards import TenantIsolationGuard
from apps.rbac.services import AuthorizationService, RBACService


@pytest.fixture
def front_desk_role(tenant):
    """Receptionist role narrowed to customer intake only."""
    role = Role.objects.by_key(tenant, 'receptionist')
    sync_role_permissions(role, Permission.objects.filter(key__in=['customers.view', 'customers.create']))
    return role


@pytest.mark.django_db
class TestReceptionistScenario:
    """Role grants, then a grant override, then a revoke override."""

    def test_grant_then_revoke(self, admin_user, receptionist, front_desk_role):
        assert set(AuthorizationService.get_effective_permissions(receptionist)) == {
            'customers.view', 'customers.create',
        }

        RBACService.set_override(admin_user, receptionist, 'invoices.view', granted=True, expires_at=None)
        assert set(AuthorizationService.get_effective_permissions(receptionist)) == {
            'customers.view', 'customers.create', 'invoices.view',
        }

        RBACService.set_override(admin_user, receptionist, 'customers.create', granted=False)
        assert set(AuthorizationService.get_effective_permissions(receptionist)) == {
            'customers.view', 'invoices.view',
        }

    def test_other_tenant_sees_nothing(self, admin_user, receptionist, front_desk_role, other_tenant):
        RBACService.set_override(admin_user, receptionist, 'invoices.view', granted=True)

        assert AuthorizationService.has_permission(receptionist, 'invoices.view')
        assert not TenantIsolationGuard.allowed(receptionist, other_tenant, 'invoices.view')

    def test_expired_revoke_falls_through_to_role(self, admin_user, receptionist, front_desk_role):
        RBACService.set_override(
            admin_user, receptionist, 'customers.create', granted=False,
            expires_at=timezone.now() + timedelta(hours=1),
        )
        assert not AuthorizationService.has_permission(receptionist, 'customers.create')

        later = timezone.now() + timedelta(hours=2)
        assert 'customers.create' in AuthorizationService.cache.get(receptionist, now=later)

    def test_admin_ignores_revokes(self, admin_user, make_user, tenant):
        second_admin = make_user(tenant, roles=['admin'])
        RBACService.set_override(admin_user, second_admin, 'invoices.void', granted=False)

        assert AuthorizationService.has_permission(second_admin, 'invoices.void')


@pytest.mark.django_db
class TestStalenessBound:
    """Cached reads lag only writes that bypass the ORM."""

    def test_orm_write_visible_on_next_read(self, admin_user, receptionist, front_desk_role):
        assert AuthorizationService.has_permission(receptionist, 'customers.create')

        RBACService.set_override(admin_user, receptionist, 'customers.create', granted=False)

        assert not AuthorizationService.has_permission(receptionist, 'customers.create')

    def test_bulk_update_visible_directly_and_after_expiry(self, admin_user, receptionist, front_desk_role):
        RBACService.set_override(admin_user, receptionist, 'invoices.view', granted=True)
        assert AuthorizationService.has_permission(receptionist, 'invoices.view')

        PermissionOverride.objects.filter(user=receptionist).update(is_granted=False)

        assert AuthorizationService.has_permission(receptionist, 'invoices.view')
        assert 'invoices.view' not in AuthorizationService.resolve_direct(receptionist).keys

        AuthorizationService.cache.invalidate(receptionist)
        assert not AuthorizationService.has_permission(receptionist, 'invoices.view')
