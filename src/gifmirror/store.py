"""Durable key-value stores with TTL support, used by the item and query caches."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gifmirror.db.models import KVEntry

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Protocol for the durable store behind both caches."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if missing or expired."""
        ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store *value*; with *ttl* the entry expires after that many seconds."""
        ...

    async def expire(self, key: str, ttl: int) -> bool:
        """(Re)set the TTL of an existing key. Returns False if the key does not exist."""
        ...


class MemoryStore:
    """Process-local store. Suitable for tests and single-worker development."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._clock() + ttl)
        return True

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
        for k in expired:
            del self._data[k]
        return len(expired)


def _utcnow() -> datetime:
    # Naive UTC: SQLite drops tzinfo, so store and compare without it everywhere.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlStore:
    """Store entries in the ``kv_entries`` table through async SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as db:
            row = await db.get(KVEntry, key)
            if row is None:
                return None
            now = _utcnow()
            if row.expires_at is not None and row.expires_at <= now:
                # Conditional so a concurrent set() of a fresh value survives
                await db.execute(
                    delete(KVEntry).where(KVEntry.key == key, KVEntry.expires_at <= now)
                )
                await db.commit()
                return None
            return row.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        now = _utcnow()
        expires_at = now + timedelta(seconds=ttl) if ttl else None
        async with self._session_factory() as db:
            try:
                await db.merge(KVEntry(key=key, value=value, expires_at=expires_at, updated_at=now))
                await db.commit()
            except IntegrityError:
                # Lost an insert race on the same key; last write wins.
                await db.rollback()
                await db.execute(
                    update(KVEntry)
                    .where(KVEntry.key == key)
                    .values(value=value, expires_at=expires_at, updated_at=now)
                )
                await db.commit()

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(KVEntry)
                .where(KVEntry.key == key)
                .values(expires_at=_utcnow() + timedelta(seconds=ttl))
            )
            await db.commit()
            return result.rowcount > 0

    async def purge_expired(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(KVEntry).where(KVEntry.expires_at <= _utcnow())
            )
            await db.commit()
            return result.rowcount


def create_store(
    kind: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> KeyValueStore:
    """Build the process-wide store from config. Call once and pass the handle around."""
    from gifmirror.config import config

    kind = kind or config.store.backend
    if kind == "memory":
        logger.warning("Using in-memory store; cached GIFs are lost on restart")
        return MemoryStore()
    if kind == "sql":
        if session_factory is None:
            from gifmirror.db.engine import get_session_factory
            session_factory = get_session_factory()
        return SqlStore(session_factory)
    raise ValueError(f"Unknown store backend: {kind!r}")
