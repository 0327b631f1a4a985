"""Memoized grant sets per principal with explicit invalidation.

Two backends share one contract:

- ``InMemoryPermissionCache`` for a single process.
- ``RedisPermissionCache`` for a fleet of workers sharing one Redis.

Both hand out a *token* before the caller reads the store and refuse (or
orphan) a ``put`` whose token was invalidated in the meantime, so a slow
computation can never write pre-invalidation data back.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from itertools import chain
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Set, Tuple

import redis
from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from authz.core.config import settings
from authz.models import Permission, Role, RolePermission, User, UserPermission, UserRole
from authz.services.grant_set import GrantSet
from authz.services.store import ensure_utc, utcnow

logger = logging.getLogger("authz")


class PermissionCache(ABC):
    """Contract shared by the cache backends."""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self.hits = 0
        self.misses = 0

    @abstractmethod
    def token(self, principal_id: int) -> Optional[Hashable]:
        """Version marker to capture before reading the store; None disables the write."""

    @abstractmethod
    def get(self, principal_id: int) -> Optional[GrantSet]:
        """Fresh cached grant set, or None."""

    @abstractmethod
    def put(self, principal_id: int, token: Hashable, grant_set: GrantSet) -> None:
        """Store a grant set computed after ``token`` was taken."""

    @abstractmethod
    def invalidate_principal(self, principal_id: int) -> None:
        """Drop everything cached for one principal."""

    @abstractmethod
    def invalidate_all(self) -> None:
        """Drop every cached entry."""

    # Mutation notifications

    def role_assignment_changed(self, principal_id: int) -> None:
        self.invalidate_principal(principal_id)

    def direct_grant_changed(self, principal_id: int) -> None:
        self.invalidate_principal(principal_id)

    def principal_changed(self, principal_id: int) -> None:
        self.invalidate_principal(principal_id)

    def role_grant_changed(self, role_id: int) -> None:
        # Every holder of the role is affected; no per-role index is kept.
        logger.info("Role %s grants changed, invalidating all cached permissions", role_id)
        self.invalidate_all()

    def is_fresh(self, grant_set: GrantSet) -> bool:
        now = ensure_utc(self.clock())
        if now - ensure_utc(grant_set.computed_at) >= self.ttl:
            return False
        valid_until = ensure_utc(grant_set.valid_until)
        return valid_until is None or now < valid_until

    def seconds_to_live(self, grant_set: GrantSet) -> int:
        now = ensure_utc(self.clock())
        expires = ensure_utc(grant_set.computed_at) + self.ttl
        if grant_set.valid_until is not None:
            expires = min(expires, ensure_utc(grant_set.valid_until))
        return int((expires - now).total_seconds())

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }


class InMemoryPermissionCache(PermissionCache):
    """Process-local cache. Entries are immutable and swapped under a lock."""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = utcnow):
        super().__init__(ttl_seconds, clock)
        self._lock = threading.Lock()
        self._entries: Dict[int, GrantSet] = {}
        self._versions: Dict[int, int] = {}
        self._generation = 0

    def token(self, principal_id: int) -> Tuple[int, int]:
        with self._lock:
            return self._generation, self._versions.get(principal_id, 0)

    def get(self, principal_id: int) -> Optional[GrantSet]:
        grant_set = self._entries.get(principal_id)
        if grant_set is None:
            self.misses += 1
            return None
        if not self.is_fresh(grant_set):
            with self._lock:
                if self._entries.get(principal_id) is grant_set:
                    del self._entries[principal_id]
            self.misses += 1
            return None
        self.hits += 1
        return grant_set

    def put(self, principal_id: int, token: Hashable, grant_set: GrantSet) -> None:
        with self._lock:
            current = (self._generation, self._versions.get(principal_id, 0))
            if token != current:
                logger.debug("Discarding stale grant set for principal %s", principal_id)
                return
            self._entries[principal_id] = grant_set

    def invalidate_principal(self, principal_id: int) -> None:
        with self._lock:
            self._versions[principal_id] = self._versions.get(principal_id, 0) + 1
            self._entries.pop(principal_id, None)
        logger.debug("Invalidated cached permissions for principal %s", principal_id)

    def invalidate_all(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries = {}
            self._versions = {}
        logger.info("Invalidated all cached permissions")

    def __len__(self) -> int:
        return len(self._entries)


class RedisPermissionCache(PermissionCache):
    """Redis-backed cache shared across workers.

    Keys carry a global generation and a per-principal version, so
    invalidation is a single ``INCR``: old keys become unreachable and age
    out through their own TTL, while the counters themselves are permanent.
    Redis failures and undecodable payloads degrade to misses; a failed
    invalidation also stops this process from reading the cache for one TTL.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        ttl_seconds: int = 300,
        prefix: str = "authz",
        clock: Callable[[], datetime] = utcnow,
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(ttl_seconds, clock)
        self.url = url or settings.REDIS_URL
        self.prefix = prefix
        self._client = client
        self._bypass_until: Optional[datetime] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    def _generation_key(self) -> str:
        return f"{self.prefix}:gen"

    def _version_key(self, principal_id: int) -> str:
        return f"{self.prefix}:ver:{principal_id}"

    def _entry_key(self, principal_id: int, token: Tuple[int, int]) -> str:
        generation, version = token
        return f"{self.prefix}:grants:{generation}:{principal_id}:{version}"

    def _bypassed(self) -> bool:
        if self._bypass_until is None:
            return False
        if ensure_utc(self.clock()) >= self._bypass_until:
            self._bypass_until = None
            return False
        return True

    def token(self, principal_id: int) -> Optional[Tuple[int, int]]:
        if self._bypassed():
            return None
        try:
            generation, version = self.client.mget(
                self._generation_key(), self._version_key(principal_id)
            )
        except redis.RedisError as e:
            logger.warning("Permission cache unavailable: %s", e)
            return None
        return int(generation or 0), int(version or 0)

    def get(self, principal_id: int) -> Optional[GrantSet]:
        token = self.token(principal_id)
        if token is None:
            self.misses += 1
            return None
        try:
            raw = self.client.get(self._entry_key(principal_id, token))
        except redis.RedisError as e:
            logger.warning("Permission cache unavailable: %s", e)
            raw = None
        if not raw:
            self.misses += 1
            return None

        try:
            grant_set = GrantSet.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Discarding undecodable cached grant set for principal %s: %s", principal_id, e)
            self.misses += 1
            return None
        if not self.is_fresh(grant_set):
            self.misses += 1
            return None
        self.hits += 1
        return grant_set

    def put(self, principal_id: int, token: Hashable, grant_set: GrantSet) -> None:
        if token is None:
            return
        ttl_seconds = self.seconds_to_live(grant_set)
        if ttl_seconds <= 0:
            return
        try:
            self.client.setex(
                self._entry_key(principal_id, token),
                ttl_seconds,
                json.dumps(grant_set.to_dict()),
            )
        except redis.RedisError as e:
            logger.warning("Permission cache write failed: %s", e)

    def invalidate_principal(self, principal_id: int) -> None:
        # No EXPIRE on the counter: a restarted version would revive old entry keys.
        try:
            self.client.incr(self._version_key(principal_id))
        except redis.RedisError as e:
            self._invalidation_failed(e)

    def invalidate_all(self) -> None:
        try:
            self.client.incr(self._generation_key())
        except redis.RedisError as e:
            self._invalidation_failed(e)
        else:
            logger.info("Invalidated all cached permissions")

    def _invalidation_failed(self, error: Exception) -> None:
        logger.error("Permission cache invalidation failed, bypassing cache: %s", error)
        self._bypass_until = ensure_utc(self.clock()) + self.ttl

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return self.client.ping()
        except redis.RedisError:
            return False


def build_permission_cache(backend: Optional[str] = None) -> Optional[PermissionCache]:
    """Cache backend selected by ``PERMISSION_CACHE_BACKEND``; None when disabled."""
    backend = (backend or settings.PERMISSION_CACHE_BACKEND).lower()
    ttl = settings.PERMISSION_CACHE_TTL_SECONDS
    if backend == "memory":
        return InMemoryPermissionCache(ttl_seconds=ttl)
    if backend == "redis":
        return RedisPermissionCache(
            url=settings.REDIS_URL, ttl_seconds=ttl, prefix=settings.REDIS_KEY_PREFIX,
        )
    if backend == "none":
        return None
    raise ValueError(f"Unknown permission cache backend '{backend}'")


_PENDING_KEY = "authz_pending_invalidations"
_ALL = "*"


def _collect_invalidations(session: Session, objects: Iterable[Any]) -> Set[Any]:
    pending = session.info.setdefault(_PENDING_KEY, set())
    for obj in objects:
        if isinstance(obj, (RolePermission, Role, Permission)):
            pending.add(_ALL)
        elif isinstance(obj, (UserRole, UserPermission)):
            pending.add(obj.user_id)
        elif isinstance(obj, User):
            pending.add(obj.id)
    return pending


def install_invalidation_hooks(target: sessionmaker, cache: PermissionCache) -> None:
    """Invalidate ``cache`` whenever a session from ``target`` commits grant changes.

    Deleted rows are collected before flush, while they can still be loaded;
    new and modified rows after flush, once their keys are assigned. The
    collected set is applied after commit, so readers cannot repopulate the
    cache from uncommitted data. Bulk ``query.update()`` and
    ``query.delete()`` bypass the unit of work; callers doing those must
    notify the cache themselves.
    """

    @event.listens_for(target, "before_flush")
    def _before_flush(session, flush_context, instances):
        _collect_invalidations(session, session.deleted)

    @event.listens_for(target, "after_flush")
    def _after_flush(session, flush_context):
        _collect_invalidations(session, chain(session.new, session.dirty))

    @event.listens_for(target, "after_commit")
    def _after_commit(session):
        pending = session.info.pop(_PENDING_KEY, None)
        if not pending:
            return
        if _ALL in pending:
            cache.invalidate_all()
            return
        for principal_id in pending:
            if principal_id is not None:
                cache.invalidate_principal(principal_id)

    @event.listens_for(target, "after_rollback")
    def _after_rollback(session):
        session.info.pop(_PENDING_KEY, None)
