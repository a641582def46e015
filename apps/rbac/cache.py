"""
Permission cache: a derived, rebuildable projection of resolver output.

Entries live in the Django cache under a key that embeds the permission
model and a global era number. Bumping the era retires every entry at once;
a full rebuild writes a complete snapshot under the next era and then flips
the era pointer, so readers see either the old or the new snapshot.

Every entry is stamped with the change tokens (one for the catalog, one per
user) that were current before it was computed. Each ORM write replaces the
relevant token, so an entry computed before a write is never served after
it, whichever era it ended up under.

A missing, expired, unreadable or mis-stamped entry is never an answer: the
caller falls back to a direct resolve.
"""
import logging
import uuid
from datetime import datetime
from typing import FrozenSet, Optional

from django.db import transaction
from django.utils import timezone

from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.core.exceptions import CacheUnavailable, StaleCache
from apps.rbac.models import EffectivePermissionCache, User
from apps.rbac.resolver import (
    EffectivePermissionResolver, PermissionModel, ResolvedPermissions,
)

logger = logging.getLogger(__name__)


def _user_id(user):
    return getattr(user, 'pk', user)


def _user_token_key(user_id) -> str:
    return CacheKeys.format(CacheKeys.USER_TOKEN, user_id=user_id)


class PermissionCache:
    """
    Read-through cache over EffectivePermissionResolver.

    Staleness: invalidation runs synchronously on every ORM write (and again
    on commit), so ORM mutations are visible on the next read. Writes that
    bypass the ORM become visible after RBAC_PERMISSION_CACHE_TTL seconds.
    """

    def __init__(self, resolver=EffectivePermissionResolver):
        self.resolver = resolver

    @staticmethod
    def _key(permission_model, era, user_id) -> str:
        return CacheKeys.format(
            CacheKeys.EFFECTIVE_PERMISSIONS,
            model=permission_model,
            era=era,
            user_id=user_id,
        )

    def current_era(self) -> Optional[int]:
        """Current era, or None if the cache backend is unavailable."""
        era = CacheService.get(CacheKeys.PERMISSION_ERA)
        if era is None:
            CacheService.add(CacheKeys.PERMISSION_ERA, 1, CacheTTL.PERMISSION_ERA)
            era = CacheService.get(CacheKeys.PERMISSION_ERA)
        return era

    @staticmethod
    def _token(key) -> Optional[str]:
        """Change token under ``key``, seeded on first use. None if unavailable."""
        token = CacheService.get(key)
        if token is None:
            CacheService.add(key, uuid.uuid4().hex, CacheTTL.CHANGE_TOKEN)
            token = CacheService.get(key)
        return token

    @staticmethod
    def _renew_token(key):
        CacheService.set(key, uuid.uuid4().hex, CacheTTL.CHANGE_TOKEN)

    def _stamp(self, user_id) -> Optional[dict]:
        """Era and change tokens to compute an entry against, read before resolving."""
        era = self.current_era()
        catalog = self._token(CacheKeys.CATALOG_TOKEN)
        user_token = self._token(_user_token_key(user_id))
        if era is None or catalog is None or user_token is None:
            return None
        return {'era': era, 'catalog': catalog, 'user': user_token}

    def get(self, user, now: Optional[datetime] = None) -> FrozenSet[str]:
        """Effective permission keys for a user."""
        return self.get_resolved(user, now=now).keys

    def get_resolved(self, user, now: Optional[datetime] = None) -> ResolvedPermissions:
        now = now or timezone.now()
        permission_model = PermissionModel.current()
        stamp = self._stamp(user.pk)

        if stamp is None:
            return self.resolver.resolve(user, now=now, permission_model=permission_model)

        key = self._key(permission_model, stamp['era'], user.pk)
        try:
            return self._load(key, stamp, now)
        except StaleCache as e:
            logger.debug(
                f"Permission cache stale: {e.message}",
                extra={'user_id': str(user.pk), 'era': stamp['era']}
            )

        resolved = self.resolver.resolve(user, now=now, permission_model=permission_model)
        if self._store(key, stamp, resolved, now):
            self.persist(user, resolved)
        return resolved

    def _load(self, key, stamp, now) -> ResolvedPermissions:
        data = CacheService.get(key)
        if data is None:
            raise StaleCache('miss')
        for field, value in stamp.items():
            if data.get(field) != value:
                raise StaleCache(f'{field} changed since entry was computed')
        try:
            resolved = ResolvedPermissions.from_cache(data)
        except (KeyError, TypeError, ValueError):
            raise StaleCache('unreadable entry')
        if resolved.is_expired(now):
            raise StaleCache('past valid_until')
        return resolved

    @staticmethod
    def _ttl(resolved, now) -> Optional[int]:
        """Entry TTL capped by valid_until; None once nothing is left to cache."""
        ttl = CacheTTL.effective_permissions()
        if resolved.valid_until is not None:
            remaining = int((resolved.valid_until - now).total_seconds())
            if remaining <= 0:
                return None
            ttl = min(ttl, remaining)
        return ttl

    @staticmethod
    def _write(key, stamp, resolved, ttl) -> bool:
        data = resolved.to_cache()
        data.update(stamp)
        return CacheService.set(key, data, ttl)

    def _store(self, key, stamp, resolved, now) -> bool:
        ttl = self._ttl(resolved, now)
        if ttl is None:
            return False
        return self._write(key, stamp, resolved, ttl)

    def invalidate(self, user):
        """
        Drop one user's entry, immediately and again once the surrounding
        transaction commits.
        """
        user_id = _user_id(user)
        self._retire(user_id)
        EffectivePermissionCache.objects.filter(user_id=user_id).delete()
        transaction.on_commit(lambda: self._retire(user_id))

    def _retire(self, user_id):
        self._renew_token(_user_token_key(user_id))
        self._drop(user_id)

    def _drop(self, user_id):
        era = self.current_era()
        if era is None:
            return
        # era + 1 covers a rebuild that has written but not yet flipped
        for permission_model in PermissionModel.CHOICES:
            for candidate in (era, era + 1):
                CacheService.delete(self._key(permission_model, candidate, user_id))

    def invalidate_all(self):
        """Retire every entry by renewing the catalog token and bumping the era."""
        era = self._retire_all()
        logger.info("Permission cache era bumped", extra={'era': era})
        transaction.on_commit(self._retire_all)
        return era

    def _retire_all(self):
        self._renew_token(CacheKeys.CATALOG_TOKEN)
        return CacheService.incr(CacheKeys.PERMISSION_ERA, initial=1)

    def rebuild(self, tenant=None, now: Optional[datetime] = None) -> int:
        """
        Recompute active users' permissions and swap them in.

        The new snapshot is written under the next era before the era
        pointer moves. A user whose grants change while the rebuild runs is
        left out of the snapshot; a catalog change abandons the swap. With
        ``tenant``, only that tenant's users are recomputed and only their
        durable rows are replaced; other users recompute lazily in the new
        era.

        Returns:
            Number of users rebuilt

        Raises:
            CacheUnavailable: if the cache backend cannot be read or written
        """
        now = now or timezone.now()
        permission_model = PermissionModel.current()
        era = self.current_era()
        catalog = self._token(CacheKeys.CATALOG_TOKEN)
        if era is None or catalog is None:
            raise CacheUnavailable('Permission cache backend unavailable')
        new_era = era + 1

        users = User.objects.filter(is_active=True)
        if tenant is not None:
            users = users.filter(tenant=tenant)

        snapshot = {}
        stamps = {}
        for user in users.iterator():
            user_token = self._token(_user_token_key(user.pk))
            if user_token is None:
                raise CacheUnavailable('Permission cache backend unavailable')
            stamps[user.pk] = {'era': new_era, 'catalog': catalog, 'user': user_token}
            snapshot[user.pk] = self.resolver.resolve(
                user, now=now, permission_model=permission_model
            )

        for user_id, resolved in snapshot.items():
            ttl = self._ttl(resolved, now)
            if ttl is None:
                continue
            key = self._key(permission_model, new_era, user_id)
            if not self._write(key, stamps[user_id], resolved, ttl):
                raise CacheUnavailable('Permission cache backend unavailable')

        changed = {
            user_id for user_id, stamp in stamps.items()
            if CacheService.get(_user_token_key(user_id)) != stamp['user']
        }
        for user_id in changed:
            CacheService.delete(self._key(permission_model, new_era, user_id))

        if (CacheService.get(CacheKeys.PERMISSION_ERA) != era
                or CacheService.get(CacheKeys.CATALOG_TOKEN) != catalog):
            logger.warning(
                "Permission cache changed during rebuild, snapshot discarded",
                extra={'era': era, 'permission_model': permission_model}
            )
            return 0

        live = {user_id: resolved for user_id, resolved in snapshot.items() if user_id not in changed}
        with transaction.atomic():
            rows = EffectivePermissionCache.objects.all()
            if tenant is not None:
                rows = rows.filter(user__tenant=tenant)
            rows.delete()
            EffectivePermissionCache.objects.bulk_create([
                EffectivePermissionCache(user_id=user_id, **resolved.to_row())
                for user_id, resolved in live.items()
            ])

        if not CacheService.set(CacheKeys.PERMISSION_ERA, new_era, CacheTTL.PERMISSION_ERA):
            raise CacheUnavailable('Permission cache backend unavailable')

        logger.info(
            "Permission cache rebuilt",
            extra={
                'users': len(live),
                'skipped': len(changed),
                'era': new_era,
                'tenant_id': str(tenant.pk) if tenant is not None else None,
                'permission_model': permission_model,
            }
        )
        return len(live)

    def persist(self, user, resolved: ResolvedPermissions):
        """Write the durable projection row for one user."""
        return EffectivePermissionCache.objects.store(_user_id(user), resolved)
