"""
Tests for the exception hierarchy and DRF exception handler.
"""
from types import SimpleNamespace

from django.http import Http404
from rest_framework import exceptions as drf_exceptions

from apps.core.exceptions import (
    CacheUnavailable, Conflict, NotFound, Unauthorized, ValidationError, WorkshopException,
    custom_exception_handler,
)


def make_context(request_id='req-1'):
    return {'request': SimpleNamespace(request_id=request_id, path='/v1/roles', method='POST')}


class TestExceptionHierarchy:
    """Test status codes and error codes."""

    def test_status_codes(self):
        assert NotFound('x').status_code == 404
        assert Unauthorized().status_code == 403
        assert Conflict('x').status_code == 409
        assert ValidationError('x').status_code == 400
        assert CacheUnavailable('x').status_code == 503

    def test_details_default_to_empty(self):
        exc = Conflict('Role exists')

        assert exc.message == 'Role exists'
        assert exc.details == {}
        assert str(exc) == 'Role exists'

    def test_unauthorized_message_is_fixed(self):
        assert Unauthorized().message == 'Not permitted'


class TestCustomExceptionHandler:
    """Test the uniform error body."""

    def test_workshop_exception(self):
        response = custom_exception_handler(
            Conflict("Role 'receptionist' already exists", {'key': 'receptionist'}), make_context()
        )

        assert response.status_code == 409
        assert response.data == {
            'error': "Role 'receptionist' already exists",
            'code': 'CONFLICT',
            'request_id': 'req-1',
            'details': {'key': 'receptionist'},
        }

    def test_unauthorized_hides_details(self):
        response = custom_exception_handler(
            Unauthorized('Actor lacks roles.create', {'tenant': 'x'}), make_context()
        )

        assert response.status_code == 403
        assert response.data == {'error': 'Not permitted', 'code': 'NOT_PERMITTED', 'request_id': 'req-1'}

    def test_drf_permission_denied_looks_the_same(self):
        response = custom_exception_handler(drf_exceptions.PermissionDenied(), make_context())

        assert response.status_code == 403
        assert response.data['code'] == 'NOT_PERMITTED'

    def test_drf_exception_gets_request_id(self):
        response = custom_exception_handler(drf_exceptions.ValidationError({'key': ['Bad']}), make_context())

        assert response.status_code == 400
        assert response.data['request_id'] == 'req-1'
        assert response.data['key'] == ['Bad']

    def test_django_404(self):
        response = custom_exception_handler(Http404(), make_context())

        assert response.status_code == 404

    def test_unhandled_exception(self):
        response = custom_exception_handler(RuntimeError('boom'), make_context('req-2'))

        assert response.status_code == 500
        assert response.data == {'error': 'Internal server error', 'code': 'INTERNAL_ERROR', 'request_id': 'req-2'}

    def test_base_exception_defaults(self):
        response = custom_exception_handler(WorkshopException('Broken'), make_context(None))

        assert response.status_code == 500
        assert response.data['code'] == 'ERROR'
        assert response.data['request_id'] is None
