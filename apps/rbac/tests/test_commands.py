"""
Tests for RBAC management commands.
"""
import pytest
from io import StringIO
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.rbac.management.commands.seed_permissions import Command as SeedPermissionsCommand
from apps.rbac.models import (
    EffectivePermissionCache, Permission, PermissionOverride, Role, RolePermission, User,
)
from apps.rbac.services import AuthorizationService


def run(*args, **kwargs):
    out = StringIO()
    call_command(*args, stdout=out, **kwargs)
    return out.getvalue()


@pytest.mark.django_db
class TestSeedPermissions:
    """Test seed_permissions command."""

    def test_seeds_catalog(self, db):
        run('seed_permissions')

        assert Permission.objects.count() == len(SeedPermissionsCommand.CANONICAL_PERMISSIONS)

    def test_is_idempotent(self, permissions):
        count = permissions.count()

        output = run('seed_permissions')

        assert Permission.objects.count() == count
        assert '0 created, 0 updated' in output

    def test_restores_changed_label(self, permissions):
        Permission.objects.filter(key='invoices.void').update(label='Something else')

        output = run('seed_permissions')

        assert Permission.objects.get(key='invoices.void').label == 'Void Invoices'
        assert '1 updated' in output


@pytest.mark.django_db
class TestSeedTenantRoles:
    """Test seed_tenant_roles command."""

    def test_requires_target(self, tenant):
        with pytest.raises(CommandError):
            run('seed_tenant_roles')

    def test_rejects_both_targets(self, tenant):
        with pytest.raises(CommandError):
            run('seed_tenant_roles', tenant=tenant.slug, all=True)

    def test_unknown_tenant(self, tenant):
        with pytest.raises(CommandError):
            run('seed_tenant_roles', tenant='no-such-garage')

    def test_restores_role_permissions(self, tenant):
        role = Role.objects.by_key(tenant, 'receptionist')
        RolePermission.objects.filter(role=role, permission__key='customers.create').delete()

        output = run('seed_tenant_roles', tenant=tenant.slug)

        assert 'customers.create' in role.get_permission_keys()
        assert 'Updated role: receptionist' in output

    def test_all_tenants(self, tenant, other_tenant):
        output = run('seed_tenant_roles', all=True)

        assert 'across 2 tenant(s)' in output
        assert Role.objects.count() == 6


@pytest.mark.django_db
class TestCreateTenantAdmin:
    """Test create_tenant_admin command."""

    def test_creates_user_and_assigns_admin(self, tenant, permissions):
        run(
            'create_tenant_admin', tenant=tenant.slug, email='owner@central-garage.test',
            create_user=True, password='s3cure-Passw0rd',
        )

        owner = User.objects.get(email='owner@central-garage.test')
        assert owner.tenant == tenant
        assert len(AuthorizationService.get_effective_permissions(owner)) == permissions.count()

    def test_existing_user(self, user, tenant):
        run('create_tenant_admin', tenant=str(tenant.id), email=user.email)

        assert AuthorizationService.has_permission(user, 'users.manage_roles')

    def test_already_admin(self, admin_user, tenant):
        output = run('create_tenant_admin', tenant=tenant.slug, email=admin_user.email)

        assert 'already assigned' in output

    def test_unknown_user_without_create(self, tenant):
        with pytest.raises(CommandError):
            run('create_tenant_admin', tenant=tenant.slug, email='nobody@central-garage.test')

    def test_create_requires_password(self, tenant):
        with pytest.raises(CommandError):
            run('create_tenant_admin', tenant=tenant.slug, email='owner@central-garage.test', create_user=True)

    def test_user_of_other_tenant(self, other_admin, tenant):
        with pytest.raises(CommandError):
            run('create_tenant_admin', tenant=tenant.slug, email=other_admin.email)


@pytest.mark.django_db
class TestRebuildPermissionCache:
    """Test rebuild_permission_cache command."""

    def test_inline(self, admin_user, receptionist):
        output = run('rebuild_permission_cache')

        assert 'for 2 user(s)' in output
        assert EffectivePermissionCache.objects.count() == 2

    def test_async(self, admin_user):
        output = run('rebuild_permission_cache', run_async=True)

        assert 'Rebuild queued' in output
        assert EffectivePermissionCache.objects.filter(user=admin_user).exists()


@pytest.mark.django_db
class TestMaterializeRoleGrants:
    """Test materialize_role_grants command."""

    def test_requires_exactly_one_target(self, tenant):
        with pytest.raises(CommandError):
            run('materialize_role_grants')
        with pytest.raises(CommandError):
            run('materialize_role_grants', tenant=tenant.slug, all=True)

    def test_dry_run(self, receptionist, tenant):
        output = run('materialize_role_grants', tenant=tenant.slug, dry_run=True)

        assert 'would create 8 override(s)' in output
        assert not PermissionOverride.objects.exists()

    def test_all_tenants(self, receptionist, other_tenant):
        output = run('materialize_role_grants', all=True)

        assert 'created 8 override(s)' in output
        assert PermissionOverride.objects.filter(user=receptionist, is_granted=True).count() == 8


@pytest.mark.django_db
class TestMigrations:
    """Committed migrations must describe the models exactly."""

    def test_no_pending_model_changes(self):
        output = run('makemigrations', 'tenants', 'rbac', '--check', '--dry-run')

        assert 'No changes detected' in output
