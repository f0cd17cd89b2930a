"""Item and query caches on top of a :class:`KeyValueStore`.

Store failures never propagate: reads degrade to a miss and writes are
best-effort, so the pipeline keeps running live.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from pydantic import TypeAdapter, ValidationError

from gifmirror.models.gifs import GifItem
from gifmirror.store import KeyValueStore

logger = logging.getLogger(__name__)

ITEM_PREFIX = "item-cache:"
QUERY_PREFIX = "query-cache:"
DEFAULT_TTL = 60 * 60 * 24  # 1 day

_item_list = TypeAdapter(list[GifItem])


def normalize_query(query: str) -> str:
    return quote(query.strip().lower(), safe="")


class ItemCache:
    """One re-hosted GIF per upstream ID, shared by every query that finds it."""

    def __init__(self, store: KeyValueStore, ttl: int = DEFAULT_TTL) -> None:
        self.store = store
        self.ttl = ttl

    @staticmethod
    def key(item_id: str) -> str:
        return f"{ITEM_PREFIX}{item_id}"

    async def get(self, item_id: str) -> GifItem | None:
        try:
            raw = await self.store.get(self.key(item_id))
        except Exception:
            logger.warning("Item cache read failed for %s", item_id, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return GifItem.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt item cache entry %s", item_id)
            return None

    async def put(self, item_id: str, item: GifItem, ttl: int | None = None) -> None:
        try:
            await self.store.set(self.key(item_id), item.model_dump_json(), ttl=ttl or self.ttl)
        except Exception:
            logger.warning("Item cache write failed for %s", item_id, exc_info=True)


class QueryCache:
    """Final accepted result list per normalized query string."""

    def __init__(self, store: KeyValueStore, ttl: int = DEFAULT_TTL) -> None:
        self.store = store
        self.ttl = ttl

    @staticmethod
    def key(query: str) -> str:
        return f"{QUERY_PREFIX}{normalize_query(query)}"

    async def peek(self, query: str) -> list[GifItem] | None:
        """Whatever is cached for *query*, regardless of size."""
        try:
            raw = await self.store.get(self.key(query))
        except Exception:
            logger.warning("Query cache read failed for %r", query, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return _item_list.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt query cache entry for %r", query)
            return None

    async def get(self, query: str, count: int) -> list[GifItem] | None:
        """Cached results, only if there are at least *count* of them."""
        results = await self.peek(query)
        if results is None or len(results) < count:
            return None
        return results

    async def put(self, query: str, items: list[GifItem], ttl: int | None = None) -> None:
        try:
            payload = _item_list.dump_json(items).decode()
            await self.store.set(self.key(query), payload, ttl=ttl or self.ttl)
        except Exception:
            logger.warning("Query cache write failed for %r", query, exc_info=True)
