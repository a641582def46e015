"""
Tests for HasTenantPermissions and @requires_permissions.
"""
import pytest
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.core.logging import SecurityLogger
from apps.core.permissions import HasTenantPermissions, requires_permissions


class WorkOrdersView(APIView):
    """View requiring a permission per handler."""
    permission_classes = [HasTenantPermissions]

    @requires_permissions('work_orders.view')
    def get(self, request):
        return Response({'ok': True})

    @requires_permissions('work_orders.create', 'customers.view')
    def post(self, request):
        return Response({'ok': True}, status=201)


@requires_permissions('invoices.view')
class InvoicesView(APIView):
    """View requiring one permission for every handler."""
    permission_classes = [HasTenantPermissions]

    def get(self, request):
        return Response({'ok': True})

    @requires_permissions('invoices.void')
    def delete(self, request):
        return Response(status=204)


class HealthView(APIView):
    """View without declared permissions."""
    permission_classes = [HasTenantPermissions]

    def get(self, request):
        return Response({'ok': True})


class Resource:
    def __init__(self, tenant_id):
        self.tenant_id = tenant_id


@pytest.fixture
def call():
    factory = APIRequestFactory()

    def _call(view_class, method, user=None):
        request = getattr(factory, method)('/v1/resource')
        if user is not None:
            force_authenticate(request, user=user)
        return view_class.as_view()(request)

    return _call


@pytest.fixture
def denials(monkeypatch):
    events = []
    monkeypatch.setattr(SecurityLogger, 'log_permission_denied', lambda **context: events.append(context))
    return events


@pytest.mark.django_db
class TestHasTenantPermissions:
    """Test permission enforcement on views."""

    def test_anonymous_is_rejected(self, call):
        assert call(WorkOrdersView, 'get').status_code in (401, 403)

    def test_method_level_permission(self, call, receptionist, denials):
        assert call(WorkOrdersView, 'get', receptionist).status_code == 200
        assert call(WorkOrdersView, 'post', receptionist).status_code == 201
        assert denials == []

    def test_all_listed_permissions_required(self, call, user, denials):
        response = call(WorkOrdersView, 'post', user)

        assert response.status_code == 403
        assert denials[0]['required_permissions'] == {'work_orders.create', 'customers.view'}

    def test_class_level_permission(self, call, receptionist, denials):
        assert call(InvoicesView, 'get', receptionist).status_code == 200

    def test_handler_overrides_class(self, call, receptionist, admin_user, denials):
        assert call(InvoicesView, 'delete', receptionist).status_code == 403
        assert call(InvoicesView, 'delete', admin_user).status_code == 204

    def test_no_declared_permissions(self, call, user):
        assert call(HealthView, 'get', user).status_code == 200

    def test_decorator_keeps_handler_name(self):
        assert WorkOrdersView.get.__name__ == 'get'
        assert WorkOrdersView.get.required_permissions == {'work_orders.view'}
        assert InvoicesView.required_permissions == {'invoices.view'}


@pytest.mark.django_db
class TestObjectPermissions:
    """Test tenant isolation for objects."""

    def _request(self, user, method='get'):
        request = getattr(APIRequestFactory(), method)('/v1/resource')
        request.user = user
        request.method = method.upper()
        return request

    def test_same_tenant_object(self, receptionist, tenant):
        allowed = HasTenantPermissions().has_object_permission(
            self._request(receptionist), WorkOrdersView(), Resource(tenant.id)
        )

        assert allowed

    def test_foreign_object(self, receptionist, other_tenant, monkeypatch):
        monkeypatch.setattr(SecurityLogger, 'log_cross_tenant_access', lambda **context: None)

        allowed = HasTenantPermissions().has_object_permission(
            self._request(receptionist), WorkOrdersView(), Resource(other_tenant.id)
        )

        assert not allowed

    def test_foreign_object_without_declared_permissions(self, receptionist, other_tenant):
        allowed = HasTenantPermissions().has_object_permission(
            self._request(receptionist), HealthView(), Resource(other_tenant.id)
        )

        assert not allowed

    def test_object_without_tenant(self, receptionist):
        allowed = HasTenantPermissions().has_object_permission(
            self._request(receptionist), WorkOrdersView(), object()
        )

        assert allowed
