"""Paginated collection of re-hosted, de-duplicated GIFs for one query."""

from __future__ import annotations

import asyncio
import logging

from gifmirror.cache import ItemCache
from gifmirror.models.gifs import DEFAULT_FORMAT, GifItem
from gifmirror.rehost import Rehoster
from gifmirror.similarity import GifMetadata, extract_metadata, is_duplicate
from gifmirror.upstream import UpstreamClient

logger = logging.getLogger(__name__)

MAX_PAGES = 10
BATCH_SIZE = 12


class PaginatedCollector:
    """Walk upstream pages until enough distinct, CDN-hosted GIFs are accepted.

    Pages are fetched strictly in sequence (each needs the previous cursor).
    Within a page, items are resolved concurrently in batches of
    ``batch_size`` but accepted in upstream order, so the outcome is
    deterministic for identical upstream responses.  Upstream errors
    propagate; per-item failures only drop that item.
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        rehoster: Rehoster,
        item_cache: ItemCache,
        *,
        max_pages: int = MAX_PAGES,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self.upstream = upstream
        self.rehoster = rehoster
        self.item_cache = item_cache
        self.max_pages = max_pages
        self.batch_size = batch_size

    async def resolve(self, raw: GifItem) -> GifItem:
        """Cached copy of *raw* if there is one, otherwise re-host it and cache on success."""
        cached = await self.item_cache.get(raw.id)
        if cached is not None:
            return cached
        processed = await self.rehoster.process(raw.with_placeholders())
        if self.is_servable(processed):
            await self.item_cache.put(processed.id, processed)
        return processed

    def is_servable(self, item: GifItem) -> bool:
        default = item.media_formats.get(DEFAULT_FORMAT)
        return (
            self.rehoster.is_cdn_url(item.url)
            and default is not None
            and self.rehoster.is_cdn_url(default.url)
        )

    async def collect(self, query: str, desired: int) -> list[GifItem]:
        accepted: list[GifItem] = []
        accepted_meta: dict[str, GifMetadata] = {}
        cursor: str | None = None
        page = 0

        while len(accepted) < desired and page < self.max_pages:
            result = await self.upstream.search_page(query, cursor)
            cursor = result.next
            page += 1

            for start in range(0, len(result.items), self.batch_size):
                batch = result.items[start:start + self.batch_size]
                outcomes = await asyncio.gather(
                    *(self.resolve(raw) for raw in batch), return_exceptions=True
                )
                for raw, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.warning("Dropping GIF %s: %s", raw.id, outcome)
                        continue
                    if not self.is_servable(outcome) or outcome.id in accepted_meta:
                        continue
                    meta = extract_metadata(outcome)
                    if is_duplicate(meta, accepted_meta.values()):
                        logger.debug("GIF %s is a near-duplicate, skipping", outcome.id)
                        continue
                    accepted.append(outcome)
                    accepted_meta[outcome.id] = meta
                    if len(accepted) >= desired:
                        break
                if len(accepted) >= desired:
                    break

            if not cursor:
                break

        logger.info("Collected %d/%d GIFs for %r from %d page(s)", len(accepted), desired, query, page)
        return accepted
