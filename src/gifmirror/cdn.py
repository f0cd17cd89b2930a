"""CDN re-hosting gateways: mirror an origin URL onto the durable CDN."""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_MIME_EXT = {"gif": ("image/gif", ".gif"), "mp4": ("video/mp4", ".mp4"), "webp": ("image/webp", ".webp")}


class CdnError(Exception):
    """The gateway rejected or could not complete an upload."""


class CdnGateway(Protocol):
    """Protocol for re-hosting backends."""

    async def upload(self, url: str, media_type: str = "gif") -> str:
        """Mirror *url* and return the CDN URL. Raises on failure."""
        ...


class HttpCdnGateway:
    """Ask a media upload endpoint to fetch *url* itself.

    The endpoint receives ``{"url": ..., "type": ...}`` and answers with
    ``{"mediaUrl": ...}``.
    """

    def __init__(self, client: httpx.AsyncClient, upload_url: str, token: str | None = None) -> None:
        self.client = client
        self.upload_url = upload_url
        self.token = token

    async def upload(self, url: str, media_type: str = "gif") -> str:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        resp = await self.client.post(
            self.upload_url, json={"url": url, "type": media_type}, headers=headers
        )
        resp.raise_for_status()
        media_url = resp.json().get("mediaUrl")
        if not media_url:
            raise CdnError(f"Upload endpoint returned no mediaUrl for {url}")
        return media_url


class S3CdnGateway:
    """Download the origin file and put it in an S3-compatible bucket fronted by a CDN."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        bucket: str,
        public_url: str,
        endpoint: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
    ) -> None:
        try:
            import aioboto3
        except ImportError:
            raise RuntimeError("aioboto3 is required for the S3 CDN backend: pip install gifmirror[s3]")
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.endpoint = endpoint
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self._session = aioboto3.Session()

    def _session_kwargs(self) -> dict:
        kwargs: dict = {}
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
        if self.access_key:
            kwargs["aws_access_key_id"] = self.access_key
        if self.secret_key:
            kwargs["aws_secret_access_key"] = self.secret_key
        kwargs["region_name"] = self.region
        return kwargs

    @staticmethod
    def object_key(url: str, media_type: str) -> str:
        _, ext = _MIME_EXT.get(media_type, ("application/octet-stream", ""))
        digest = hashlib.sha256(url.encode()).hexdigest()[:32]
        return f"gifs/{digest}{ext}"

    async def upload(self, url: str, media_type: str = "gif") -> str:
        resp = await self.client.get(url, follow_redirects=True)
        resp.raise_for_status()
        mime, _ = _MIME_EXT.get(media_type, ("application/octet-stream", ""))
        key = self.object_key(url, media_type)
        async with self._session.client("s3", **self._session_kwargs()) as s3:
            await s3.put_object(Bucket=self.bucket, Key=key, Body=resp.content, ContentType=mime)
        return f"{self.public_url}/{key}"


def create_gateway(client: httpx.AsyncClient) -> CdnGateway:
    """Build the configured gateway around a shared HTTP client."""
    from gifmirror.config import config

    cdn = config.cdn
    if cdn.backend == "s3":
        return S3CdnGateway(
            client,
            bucket=cdn.s3_bucket,
            public_url=cdn.url_prefix,
            endpoint=cdn.s3_endpoint,
            access_key=cdn.s3_access_key,
            secret_key=cdn.s3_secret_key,
            region=cdn.s3_region,
        )
    if cdn.backend == "http":
        if not cdn.upload_url:
            raise RuntimeError("GIFMIRROR_CDN_UPLOAD_URL must be set for the http CDN backend")
        return HttpCdnGateway(client, cdn.upload_url, cdn.upload_token)
    raise ValueError(f"Unknown CDN backend: {cdn.backend!r}")
