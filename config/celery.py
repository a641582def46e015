"""
Celery configuration for the workshop authorization engine.
"""
import os
from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('workshop_authz')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    """Log task start."""
    logger.info(
        f"Task started: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'task_args': str(args)[:200] if args else None,
            'task_kwargs': str(kwargs)[:200] if kwargs else None,
        }
    )


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, **extra):
    """Log task completion."""
    logger.info(
        f"Task completed: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'result': str(retval)[:200] if retval else None,
        }
    )


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, einfo=None, **extra):
    """Log task failure and send to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
            'task_args': str(args)[:200] if args else None,
            'task_kwargs': str(kwargs)[:200] if kwargs else None,
        },
        exc_info=einfo
    )

    from django.conf import settings
    if not getattr(settings, 'SENTRY_DSN', None):
        return

    import sentry_sdk
    with sentry_sdk.push_scope() as scope:
        scope.set_context('task', {
            'task_id': task_id,
            'task_name': sender.name,
        })
        sentry_sdk.capture_exception(exception)


@task_retry.connect
def task_retry_handler(sender=None, task_id=None, reason=None, einfo=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(sender.request, 'retries', 0),
        }
    )


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Full permission cache rebuild, bounds drift from writes that bypass the ORM
    'rebuild-permission-cache': {
        'task': 'apps.rbac.tasks.rebuild_permission_cache',
        'schedule': float(os.environ.get('RBAC_CACHE_REBUILD_INTERVAL', 3600)),
    },

    # Drop lapsed overrides and role assignments every hour
    'purge-expired-grants': {
        'task': 'apps.rbac.tasks.purge_expired_grants',
        'schedule': 3600.0,
    },
}

app.conf.timezone = 'UTC'
