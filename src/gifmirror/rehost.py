"""Re-host one GIF's thumbnail rendition on the durable CDN and verify it is live."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

import httpx

from gifmirror.cdn import CdnGateway
from gifmirror.models.gifs import DEFAULT_FORMAT, GifItem

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    per_attempt_timeout: float = 2.5  # seconds
    inter_attempt_delay: float = 0.7  # seconds; absorbs CDN propagation lag


class Rehoster:
    """Upload-and-verify adapter in front of a :class:`CdnGateway`.

    Failures never raise: an item whose thumbnail could not be mirrored comes
    back with its canonical and thumbnail URLs cleared, and an unexpected
    error returns the item untouched so the caller's domain check drops it.
    """

    def __init__(
        self,
        gateway: CdnGateway,
        client: httpx.AsyncClient,
        cdn_prefix: str,
        *,
        upload_timeout: float = 5.0,
        verify_policy: RetryPolicy = RetryPolicy(),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.client = client
        self.cdn_prefix = cdn_prefix
        self.upload_timeout = upload_timeout
        self.verify_policy = verify_policy
        self._sleep = sleep

    def with_verify_attempts(self, max_attempts: int) -> Rehoster:
        """Same adapter with a different verification budget (batch paths use fewer attempts)."""
        return Rehoster(
            self.gateway,
            self.client,
            self.cdn_prefix,
            upload_timeout=self.upload_timeout,
            verify_policy=replace(self.verify_policy, max_attempts=max_attempts),
            sleep=self._sleep,
        )

    def is_cdn_url(self, url: str | None) -> bool:
        return bool(url) and url.startswith(self.cdn_prefix)

    async def upload(self, source_url: str) -> str | None:
        """One upload attempt bounded by ``upload_timeout``. None means it failed."""
        try:
            return await asyncio.wait_for(
                self.gateway.upload(source_url, "gif"), timeout=self.upload_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("CDN upload timed out after %.1fs: %s", self.upload_timeout, source_url)
        except Exception as e:
            logger.warning("CDN upload failed for %s: %s", source_url, e)
        return None

    async def verify(self, url: str) -> bool:
        """HEAD the CDN URL until it answers 2xx or the retry policy is exhausted."""
        policy = self.verify_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                # httpx timeouts are per phase; wait_for bounds the whole attempt
                resp = await asyncio.wait_for(
                    self.client.head(url, timeout=policy.per_attempt_timeout, follow_redirects=True),
                    timeout=policy.per_attempt_timeout,
                )
                if resp.is_success:
                    return True
                logger.debug("Verify attempt %d/%d for %s: HTTP %d", attempt, policy.max_attempts, url, resp.status_code)
            except asyncio.TimeoutError:
                logger.debug("Verify attempt %d/%d for %s timed out", attempt, policy.max_attempts, url)
            except httpx.HTTPError as e:
                logger.debug("Verify attempt %d/%d for %s failed: %s", attempt, policy.max_attempts, url, e)
            if attempt < policy.max_attempts:
                await self._sleep(policy.inter_attempt_delay)
        logger.warning("CDN URL never became reachable after %d attempts: %s", policy.max_attempts, url)
        return False

    async def process(self, item: GifItem) -> GifItem:
        try:
            thumb = item.media_formats.get(DEFAULT_FORMAT)
            if thumb is None or not thumb.url:
                return item.unusable()

            cdn_url = await self.upload(thumb.url)
            if cdn_url is None:
                return item.unusable()
            if not self.is_cdn_url(cdn_url):
                logger.warning("Upload of %s returned a non-CDN URL: %s", item.id, cdn_url)
                return item.unusable()
            if not await self.verify(cdn_url):
                return item.unusable()

            # Only the thumbnail is mirrored; "full" keeps its origin URL as a fallback reference.
            return item.rehosted(cdn_url)
        except Exception:
            logger.error("Unexpected error re-hosting GIF %s", item.id, exc_info=True)
            return item
