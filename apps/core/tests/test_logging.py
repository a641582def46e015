"""
Tests for structured logging utilities.
"""
import json
import logging
import sys
import threading

import pytest

from apps.core import logging as core_logging
from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger
from apps.core.middleware import LoggingFilter, bind_tenant_to_thread


def make_record(msg='Permission denied', **extra):
    record = logging.LogRecord('apps.rbac', logging.WARNING, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPIIMasker:
    """Test PII masking."""

    def test_mask_email(self):
        assert PIIMasker.mask_email('desk@central-garage.test') == 'd***@central-garage.test'

    def test_mask_phone(self):
        assert PIIMasker.mask_phone('+254712345678') == '+25**********'

    def test_mask_secrets(self):
        assert PIIMasker.mask_secrets('token=abc123') == 'token: ********'

    def test_mask_dict_sensitive_fields(self):
        masked = PIIMasker.mask_dict({
            'password': 'hunter2',
            'authorization': 'Bearer abc',
            'note': 'call desk@central-garage.test',
            'nested': {'api_key': 'k'},
            'keys': ['customers.view'],
        })

        assert masked['password'] == '********'
        assert masked['authorization'] == '********'
        assert masked['note'] == 'call d***@central-garage.test'
        assert masked['nested'] == {'api_key': '********'}
        assert masked['keys'] == ['customers.view']

    def test_non_strings_pass_through(self):
        assert PIIMasker.mask_text(42) == 42
        assert PIIMasker.mask_dict(['a']) == ['a']


class TestJSONFormatter:
    """Test JSON log output."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data['level'] == 'WARNING'
        assert data['logger'] == 'apps.rbac'
        assert data['message'] == 'Permission denied'

    def test_context_and_extras(self):
        data = json.loads(JSONFormatter().format(make_record(
            request_id='req-1',
            tenant_id='t-1',
            required_permissions=['invoices.void'],
            context={'password': 'secret'},
        )))

        assert data['request_id'] == 'req-1'
        assert data['tenant_id'] == 't-1'
        assert data['required_permissions'] == ['invoices.void']
        assert data['context'] == {'password': '********'}

    def test_unserializable_extra(self):
        data = json.loads(JSONFormatter().format(make_record(when=object())))

        assert data['when'].startswith('<object object')

    def test_exception_info(self):
        try:
            raise ValueError('bad key for desk@central-garage.test')
        except ValueError:
            record = logging.LogRecord('apps.rbac', logging.ERROR, __file__, 10, 'Failed', (), sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert data['exception']['type'] == 'ValueError'
        assert 'd***@central-garage.test' in data['exception']['message']


class TestLoggingFilter:
    """Test request context on log records."""

    def test_adds_thread_context(self):
        threading.current_thread().request_id = 'req-9'
        bind_tenant_to_thread('tenant-9')
        try:
            record = make_record()
            assert LoggingFilter().filter(record) is True
            assert record.request_id == 'req-9'
            assert record.tenant_id == 'tenant-9'
        finally:
            threading.current_thread().request_id = None
            bind_tenant_to_thread(None)

    def test_explicit_values_win(self):
        threading.current_thread().request_id = 'req-9'
        try:
            record = make_record(request_id='req-explicit')
            LoggingFilter().filter(record)
            assert record.request_id == 'req-explicit'
        finally:
            threading.current_thread().request_id = None


class TestSecurityLogger:
    """Test security events."""

    @pytest.fixture
    def sentry_messages(self, monkeypatch):
        messages = []
        monkeypatch.setattr(
            core_logging.sentry_sdk, 'capture_message',
            lambda message, **kwargs: messages.append((message, kwargs))
        )
        return messages

    @pytest.fixture
    def security_records(self, monkeypatch):
        records = []
        logger = logging.getLogger('security')
        monkeypatch.setattr(logger, 'warning', lambda msg, **kwargs: records.append(('warning', msg, kwargs)))
        monkeypatch.setattr(logger, 'error', lambda msg, **kwargs: records.append(('error', msg, kwargs)))
        return records

    def test_permission_denied_is_not_sent_to_sentry(self, sentry_messages, security_records):
        SecurityLogger.log_permission_denied('u-1', 't-1', {'roles.view', 'audit_logs.view'}, path='/v1/roles')

        assert sentry_messages == []
        level, msg, kwargs = security_records[0]
        assert level == 'warning'
        assert msg == 'Security event: permission_denied'
        assert kwargs['extra']['security_event']['required_permissions'] == ['audit_logs.view', 'roles.view']

    def test_cross_tenant_access_goes_to_sentry(self, sentry_messages, security_records):
        SecurityLogger.log_cross_tenant_access('u-1', 't-1', 't-2', permission_key='invoices.view')

        assert security_records[0][0] == 'error'
        message, kwargs = sentry_messages[0]
        assert message == 'Critical security event: cross_tenant_access'
        assert kwargs['extras']['resource_tenant_id'] == 't-2'

    def test_context_is_masked(self, sentry_messages, security_records):
        SecurityLogger.log_event('suspicious_activity', note='from desk@central-garage.test')

        event = security_records[0][2]['extra']['security_event']
        assert event['note'] == 'from d***@central-garage.test'
        assert len(sentry_messages) == 1
