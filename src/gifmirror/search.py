"""The two consumer entry points: search one query, or many at once."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from gifmirror.cache import ItemCache, QueryCache
from gifmirror.collector import PaginatedCollector
from gifmirror.config import config
from gifmirror.models.gifs import GifItem, SearchResultSet
from gifmirror.rehost import Rehoster, RetryPolicy
from gifmirror.store import KeyValueStore
from gifmirror.upstream import UpstreamClient

logger = logging.getLogger(__name__)

OnResult = Callable[[str, list[GifItem]], None]


class GifSearchService:
    def __init__(
        self,
        upstream: UpstreamClient,
        rehoster: Rehoster,
        store: KeyValueStore,
        *,
        batch_verify_attempts: int | None = None,
    ) -> None:
        search = config.search
        if batch_verify_attempts is None:
            batch_verify_attempts = config.cdn.batch_verify_attempts

        self.upstream = upstream
        self.item_cache = ItemCache(store, ttl=search.item_ttl)
        self.query_cache = QueryCache(store, ttl=search.query_ttl)
        self.collector = PaginatedCollector(
            upstream, rehoster, self.item_cache,
            max_pages=search.max_pages, batch_size=search.batch_size,
        )
        # Batch runs trade verification patience for throughput.
        self.batch_collector = PaginatedCollector(
            upstream, rehoster.with_verify_attempts(batch_verify_attempts), self.item_cache,
            max_pages=search.max_pages, batch_size=search.batch_size,
        )
        self.default_limit = search.default_limit
        self.batch_timeout = search.batch_timeout

    def _desired(self, limit: int | None) -> int:
        return max(1, limit or self.default_limit)

    async def _collect_and_cache(self, collector: PaginatedCollector, query: str, desired: int) -> list[GifItem]:
        results = (await collector.collect(query, desired))[:desired]
        await self.query_cache.put(query, results)
        return results

    async def search(self, query: str, limit: int | None = None) -> SearchResultSet:
        """Search one query. Raises :class:`UpstreamError` if the provider fails."""
        if not query or not query.strip():
            return SearchResultSet(query=query, results=[])
        desired = self._desired(limit)

        cached = await self.query_cache.get(query, desired)
        if cached is not None:
            logger.debug("Query cache hit for %r", query)
            return SearchResultSet(query=query, results=cached[:desired])

        results = await self._collect_and_cache(self.collector, query, desired)
        return SearchResultSet(query=query, results=results)

    async def search_many(
        self,
        queries: list[str],
        limit: int | None = None,
        *,
        on_result: OnResult | None = None,
        timeout: float | None = None,
    ) -> dict[str, list[GifItem]]:
        """Search many queries concurrently under one wall-clock budget.

        Never raises for a single query's failure: that query maps to ``[]``.
        On timeout, unfinished queries fall back to whatever the query cache
        holds for them, or ``[]``.
        """
        unique = list(dict.fromkeys(q for q in queries if q and q.strip()))
        if not unique:
            return {}
        desired = self._desired(limit)
        timeout = self.batch_timeout if timeout is None else timeout
        results: dict[str, list[GifItem]] = {}

        def deliver(query: str, items: list[GifItem]) -> None:
            results[query] = items
            if on_result is not None:
                on_result(query, items)

        async def fetch(query: str) -> None:
            try:
                items = await self._collect_and_cache(self.batch_collector, query, desired)
            except Exception:
                logger.error("Batch search failed for %r", query, exc_info=True)
                items = []
            deliver(query, items)

        async def run() -> None:
            uncached: list[str] = []
            for query in unique:
                cached = await self.query_cache.get(query, desired)
                if cached is not None:
                    deliver(query, cached[:desired])
                else:
                    uncached.append(query)
            logger.info("Batch search: %d cached, %d to collect", len(unique) - len(uncached), len(uncached))
            await asyncio.gather(*(fetch(q) for q in uncached))

        try:
            await asyncio.wait_for(run(), timeout=timeout)
        except asyncio.TimeoutError:
            missing = [q for q in unique if q not in results]
            logger.warning("Batch search timed out after %.0fs; %d queries fall back to cache", timeout, len(missing))
            for query in missing:
                deliver(query, await self.query_cache.peek(query) or [])

        return {q: results[q] for q in unique}


def build_service(client: httpx.AsyncClient, store: KeyValueStore) -> GifSearchService:
    """Wire the configured provider, CDN gateway and store into a service."""
    from gifmirror.cdn import create_gateway

    cdn = config.cdn
    rehoster = Rehoster(
        create_gateway(client),
        client,
        cdn.url_prefix,
        upload_timeout=cdn.upload_timeout,
        verify_policy=RetryPolicy(
            max_attempts=cdn.verify_attempts,
            per_attempt_timeout=cdn.verify_timeout,
            inter_attempt_delay=cdn.verify_delay,
        ),
    )
    return GifSearchService(UpstreamClient(client), rehoster, store)
