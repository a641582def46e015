from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)

SUPPORTED_JWT_ALGORITHMS = ('HS256', 'HS384', 'HS512')


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate configuration before a serving process accepts requests.

        Migrations, shell and other management commands skip the checks and
        run without the full configuration. JWT key length and entropy are
        already enforced while settings load.
        """
        if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
            if 'gunicorn' not in sys.argv[0] and 'celery' not in sys.argv[0]:
                return

        self._validate_token_settings()
        self._validate_rbac_settings()
        self._validate_security_settings()

        logger.info("✓ Startup configuration validated")

    def _validate_token_settings(self):
        """Bearer tokens are verified with a shared secret."""
        algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')
        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise ImproperlyConfigured(
                f"JWT_ALGORITHM must be one of {', '.join(SUPPORTED_JWT_ALGORITHMS)}; got '{algorithm}'."
            )

    def _validate_rbac_settings(self):
        """Fail at startup rather than on the first permission check."""
        from apps.rbac.resolver import PermissionModel

        permission_model = PermissionModel.current()

        ttl = getattr(settings, 'RBAC_PERMISSION_CACHE_TTL', 60)
        if not isinstance(ttl, int) or ttl <= 0:
            raise ImproperlyConfigured(
                f"RBAC_PERMISSION_CACHE_TTL must be a positive number of seconds; got {ttl!r}."
            )

        interval = getattr(settings, 'RBAC_CACHE_REBUILD_INTERVAL', 3600)
        if interval < ttl:
            logger.warning(
                "⚠ RBAC_CACHE_REBUILD_INTERVAL is shorter than RBAC_PERMISSION_CACHE_TTL; "
                "scheduled rebuilds will run more often than entries expire.",
                extra={'interval': interval, 'ttl': ttl}
            )

        logger.info(
            "✓ RBAC configuration validated",
            extra={'permission_model': permission_model, 'ttl': ttl}
        )

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if len(secret_key) < 50:
            logger.warning(
                f"⚠ SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)."
            )

        if debug:
            return

        weak_patterns = ['your-secret-key', 'change-me', 'insecure', '12345', 'password']
        secret_lower = secret_key.lower()
        for pattern in weak_patterns:
            if pattern in secret_lower:
                raise ImproperlyConfigured(
                    f"SECRET_KEY appears to be a default or weak value (contains '{pattern}')."
                )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning(
                "⚠ SECURE_SSL_REDIRECT is not enabled in production. "
                "Bearer tokens should only travel over HTTPS."
            )
