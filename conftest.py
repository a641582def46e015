"""
Pytest configuration and fixtures.
"""
from datetime import timedelta
from io import StringIO

import jwt
import pytest
from django.conf import settings
from django.core.cache import cache
from django.core.management import call_command
from django.utils import timezone


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Start every test with an empty permission cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def permissions(db):
    """Seed the canonical workshop permission catalog."""
    from apps.rbac.models import Permission
    call_command('seed_permissions', stdout=StringIO())
    return Permission.objects.all()


@pytest.fixture
def tenant(permissions):
    """Create a test tenant. System roles are seeded by signal."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Central Garage',
        slug='central-garage',
        status='active'
    )


@pytest.fixture
def other_tenant(permissions):
    """Create another test tenant for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Northside Motors',
        slug='northside-motors',
        status='active'
    )


@pytest.fixture
def make_user(db):
    """Factory for users of a tenant, optionally holding system roles."""
    from apps.rbac.models import Role, User, UserRole

    counter = {'value': 0}

    def _make_user(tenant, roles=(), email=None, **extra):
        counter['value'] += 1
        user = User.objects.create_user(
            email=email or f"user{counter['value']}@{tenant.slug}.test",
            tenant=tenant,
            password='s3cure-Passw0rd',
            **extra
        )
        for key in roles:
            UserRole.objects.create(user=user, role=Role.objects.by_key(tenant, key))
        return user

    return _make_user


@pytest.fixture
def admin_user(tenant, make_user):
    """Administrator of the test tenant."""
    return make_user(tenant, roles=['admin'], email='admin@central-garage.test')


@pytest.fixture
def receptionist(tenant, make_user):
    """Receptionist of the test tenant."""
    return make_user(tenant, roles=['receptionist'], email='desk@central-garage.test')


@pytest.fixture
def user(tenant, make_user):
    """User of the test tenant without roles or overrides."""
    return make_user(tenant, email='plain@central-garage.test')


@pytest.fixture
def other_admin(other_tenant, make_user):
    """Administrator of the other tenant."""
    return make_user(other_tenant, roles=['admin'], email='admin@northside-motors.test')


@pytest.fixture
def make_token():
    """Factory for bearer tokens as issued by the identity service."""

    def _make_token(user, expires_in=timedelta(hours=1), **claims):
        payload = {
            'sub': str(user.id),
            'iat': timezone.now(),
            'exp': timezone.now() + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    return _make_token


@pytest.fixture
def client_for(api_client, make_token):
    """API client authenticated as the given user."""

    def _client_for(user):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {make_token(user)}')
        return api_client

    return _client_for
