"""
Caching utilities.

Provides centralized cache access with consistent key templates and TTLs.
Backend errors are logged and reported to the caller as a miss or a failed
write, never raised.
"""
import logging
from typing import Any, Optional
from django.core.cache import cache
from django.conf import settings

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Effective permission snapshot, scoped by permission model and era
    EFFECTIVE_PERMISSIONS = "rbac:effective:{model}:{era}:{user_id}"

    # Monotonic counter that retires every snapshot at once
    PERMISSION_ERA = "rbac:effective:era"

    # Change tokens stamped into every snapshot; replaced on each write
    CATALOG_TOKEN = "rbac:effective:catalog"
    USER_TOKEN = "rbac:effective:user:{user_id}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    PERMISSION_ERA = None  # never expires
    CHANGE_TOKEN = None

    @staticmethod
    def effective_permissions() -> int:
        return getattr(settings, 'RBAC_PERMISSION_CACHE_TTL', 60)


class CacheService:
    """Service for managing cached data with consistent patterns."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Returns the default on a miss or a backend error.
        """
        try:
            value = cache.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    @staticmethod
    def set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache. Returns False if the backend failed."""
        try:
            cache.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    @staticmethod
    def add(key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value only if the key is absent."""
        try:
            return bool(cache.add(key, value, timeout=ttl))
        except Exception as e:
            logger.error(f"Cache add error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        """Delete value from cache. Returns False if the backend failed."""
        try:
            cache.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    @staticmethod
    def incr(key: str, initial: int = 0) -> Optional[int]:
        """
        Atomically increment an integer counter.

        Seeds the counter with ``initial`` when it does not exist yet.
        Returns None if the backend failed.
        """
        try:
            cache.add(key, initial, timeout=None)
            value = cache.incr(key)
            logger.debug(f"Cache INCR: {key} -> {value}")
            return value
        except ValueError:
            # Key evicted between add and incr
            if CacheService.set(key, initial + 1, None):
                return initial + 1
            return None
        except Exception as e:
            logger.error(f"Cache incr error for key {key}: {str(e)}")
            return None
