"""
Tests for RBAC Celery tasks.
"""
import pytest
from datetime import timedelta
from celery.exceptions import Retry
from django.utils import timezone

from apps.core.cache import CacheService
from apps.core.exceptions import CacheUnavailable
from apps.rbac.models import (
    AuditLog, EffectivePermissionCache, Permission, PermissionOverride, Role, UserRole,
)
from apps.rbac.services import AuthorizationService
from apps.rbac.tasks import purge_expired_grants, rebuild_permission_cache


@pytest.mark.django_db
class TestRebuildPermissionCacheTask:
    """Test the scheduled rebuild."""

    def test_rebuilds_every_active_user(self, admin_user, receptionist, other_admin):
        result = rebuild_permission_cache.delay()

        assert result.get() == {'status': 'success', 'users': 3}
        assert EffectivePermissionCache.objects.count() == 3
        assert AuditLog.objects.filter(action='permission_cache_rebuilt', user__isnull=True).exists()

    def test_rebuilds_one_tenant(self, admin_user, receptionist, other_admin, tenant):
        result = rebuild_permission_cache.delay(str(tenant.pk))

        assert result.get() == {'status': 'success', 'users': 2}
        assert not EffectivePermissionCache.objects.filter(user=other_admin).exists()

    def test_unknown_tenant_is_skipped(self, admin_user):
        result = rebuild_permission_cache.delay('00000000-0000-0000-0000-000000000000')

        assert result.get() == {'status': 'skipped', 'users': 0}

    def test_cache_backend_failure_is_retried(self, receptionist, monkeypatch):
        retries = []

        def recording_retry(exc=None, countdown=None, **kwargs):
            retries.append((exc, countdown))
            return Retry()

        monkeypatch.setattr(CacheService, 'get', staticmethod(lambda key, default=None: default))
        monkeypatch.setattr(CacheService, 'add', staticmethod(lambda key, value, ttl=None: False))
        monkeypatch.setattr(rebuild_permission_cache, 'retry', recording_retry)

        with pytest.raises(Retry):
            rebuild_permission_cache()

        assert len(retries) == 1
        assert isinstance(retries[0][0], CacheUnavailable)
        assert retries[0][1] == 30


@pytest.mark.django_db
class TestPurgeExpiredGrants:
    """Test the expired grant cleanup."""

    def test_purges_expired_rows(self, receptionist, tenant):
        past = timezone.now() - timedelta(minutes=5)
        PermissionOverride.objects.create(
            user=receptionist,
            permission=Permission.objects.get(key='invoices.print'),
            is_granted=True,
            expires_at=past,
        )
        live = PermissionOverride.objects.create(
            user=receptionist,
            permission=Permission.objects.get(key='invoices.void'),
            is_granted=True,
            expires_at=timezone.now() + timedelta(days=1),
        )
        UserRole.objects.create(
            user=receptionist,
            role=Role.objects.by_key(tenant, 'customer_service'),
            expires_at=past,
        )

        result = purge_expired_grants.delay().get()

        assert result == {'status': 'success', 'overrides_purged': 1, 'assignments_deactivated': 1}
        assert list(PermissionOverride.objects.filter(user=receptionist)) == [live]
        assert not UserRole.objects.get(user=receptionist, role__key='customer_service').is_active
        assert AuditLog.objects.filter(action='override_expired', tenant=tenant).count() == 1
        assert AuditLog.objects.filter(action='role_assignment_expired', tenant=tenant).count() == 1

    def test_nothing_to_purge(self, receptionist):
        result = purge_expired_grants.delay().get()

        assert result['overrides_purged'] == 0
        assert result['assignments_deactivated'] == 0

    def test_effective_permissions_unchanged(self, receptionist, tenant):
        UserRole.objects.create(
            user=receptionist,
            role=Role.objects.by_key(tenant, 'customer_service'),
            expires_at=timezone.now() - timedelta(minutes=5),
        )
        before = AuthorizationService.get_effective_permissions(receptionist)

        purge_expired_grants.delay()

        assert AuthorizationService.get_effective_permissions(receptionist) == before
