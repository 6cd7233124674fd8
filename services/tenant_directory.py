"""Lookup of active stores by slug, subdomain or custom domain.

Positive lookups are cached for ``TENANT_CACHE_TTL_SECONDS``. Whenever a
store's identity fields or active flag change (or the store is deleted) the
old and new identifiers are dropped from every live directory's cache once
the owning session commits.
"""

import json
import logging
import weakref
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

import redis
from sqlalchemy import event, inspect, or_, select
from sqlalchemy.orm import Session

from core.cache import KeyValueCache, build_cache
from core.config import settings
from models.store import Store

logger = logging.getLogger(__name__)

CACHE_PREFIX = "tenant:"
IDENTITY_FIELDS = ("custom_domain", "subdomain", "slug")
WATCHED_FIELDS = IDENTITY_FIELDS + ("is_active",)


@dataclass(frozen=True)
class StoreRecord:
    id: int
    name: str
    slug: str
    subdomain: Optional[str]
    custom_domain: Optional[str]
    is_active: bool

    @classmethod
    def from_model(cls, store: Store) -> "StoreRecord":
        return cls(
            id=store.id,
            name=store.name,
            slug=store.slug,
            subdomain=store.subdomain,
            custom_domain=store.custom_domain,
            is_active=bool(store.is_active),
        )


def _normalize(identifier: Optional[str]) -> str:
    return (identifier or "").strip().lower()


class TenantDirectory:
    def __init__(self, cache: Optional[KeyValueCache] = None, ttl_seconds: Optional[int] = None):
        self.cache = cache if cache is not None else build_cache()
        self.ttl_seconds = settings.TENANT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        _directories.add(self)

    def resolve(self, db: Session, identifier: str) -> Optional[StoreRecord]:
        """Return the active store for identifier, or None when there is none."""
        record = self._lookup(db, identifier)
        if record is None or not record.is_active:
            return None
        return record

    def resolve_first(self, db: Session, identifiers: Iterable[str]) -> Optional[StoreRecord]:
        """Resolve candidates in priority order and return the first hit.

        A candidate whose best match is an inactive store ends the search, so a
        lower-priority candidate never resolves to a different store.
        """
        for identifier in identifiers:
            record = self._lookup(db, identifier)
            if record is not None:
                return record if record.is_active else None
        return None

    def _lookup(self, db: Session, identifier: str) -> Optional[StoreRecord]:
        key = _normalize(identifier)
        if not key:
            return None

        cached = self._cache_get(key)
        if cached is not None:
            return cached

        matches = db.query(Store).filter(
            or_(Store.custom_domain == key, Store.subdomain == key, Store.slug == key)
        ).all()
        store = self._pick(matches, key)
        if store is None:
            return None

        record = StoreRecord.from_model(store)
        if not store.is_active:
            logger.info("Store %s matched %r but is inactive", store.id, key)
            return record
        self._cache_put(key, record)
        return record

    def invalidate(self, *identifiers: Optional[str]) -> None:
        keys = [CACHE_PREFIX + _normalize(i) for i in identifiers if _normalize(i)]
        if not keys or self.ttl_seconds <= 0:
            return
        try:
            self.cache.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Tenant cache invalidation failed for %s: %s", keys, e)

    def clear(self) -> None:
        clear = getattr(self.cache, "clear", None)
        if clear is not None:
            clear()

    @staticmethod
    def _pick(matches: list[Store], key: str) -> Optional[Store]:
        # custom domain beats subdomain beats slug
        for field in IDENTITY_FIELDS:
            for store in matches:
                if getattr(store, field) == key:
                    return store
        return None

    def _cache_get(self, key: str) -> Optional[StoreRecord]:
        if self.ttl_seconds <= 0:
            return None
        try:
            raw = self.cache.get(CACHE_PREFIX + key)
        except redis.RedisError as e:
            logger.warning("Tenant cache read failed for %r: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return StoreRecord(**json.loads(raw))
        except (json.JSONDecodeError, TypeError):
            # Corrupted entry - drop it and fall back to the database
            self.invalidate(key)
            return None

    def _cache_put(self, key: str, record: StoreRecord) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            self.cache.setex(CACHE_PREFIX + key, self.ttl_seconds, json.dumps(asdict(record)))
        except redis.RedisError as e:
            logger.warning("Tenant cache write failed for %r: %s", key, e)


_directories: "weakref.WeakSet[TenantDirectory]" = weakref.WeakSet()

_PENDING_KEY = "tenant_cache_invalidations"


def _identity_values(store: Store, connection=None) -> set[str]:
    values: set[str] = set()
    state = inspect(store)
    for field in IDENTITY_FIELDS:
        history = state.attrs[field].history
        for value in (*history.added, *history.unchanged, *history.deleted):
            if value:
                values.add(value)

    # Expired instances carry no history for untouched fields, read them from the row
    unloaded = [field for field in IDENTITY_FIELDS if field in state.unloaded]
    if unloaded and connection is not None:
        columns = [Store.__table__.c[field] for field in unloaded]
        row = connection.execute(select(*columns).where(Store.__table__.c.id == store.id)).first()
        values.update(value for value in (row or ()) if value)
    return values


def _queue_invalidation(store: Store, connection=None) -> None:
    session = Session.object_session(store)
    if session is None:
        return
    session.info.setdefault(_PENDING_KEY, set()).update(_identity_values(store, connection))


@event.listens_for(Store, "after_update")
def _store_updated(mapper, connection, target):
    state = inspect(target)
    if any(state.attrs[field].history.has_changes() for field in WATCHED_FIELDS):
        _queue_invalidation(target, connection)


@event.listens_for(Store, "before_delete")
def _store_deleted(mapper, connection, target):
    _queue_invalidation(target, connection)


@event.listens_for(Session, "after_commit")
def _flush_invalidations(session):
    identifiers = session.info.pop(_PENDING_KEY, None)
    if not identifiers:
        return
    logger.debug("Invalidating tenant cache for %s", sorted(identifiers))
    for directory in list(_directories):
        directory.invalidate(*identifiers)


@event.listens_for(Session, "after_rollback")
def _discard_invalidations(session):
    session.info.pop(_PENDING_KEY, None)


tenant_directory = TenantDirectory()
