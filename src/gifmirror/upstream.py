"""Upstream GIF search providers, normalized into :class:`GifItem` pages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from gifmirror.config import UpstreamConfig, config
from gifmirror.models.gifs import GifItem, MediaRendition

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """The provider answered with a non-2xx status or an unusable body."""


class ProviderNotConfigured(Exception):
    """No API key, or an unknown provider name."""


@dataclass
class UpstreamPage:
    items: list[GifItem]
    next: str | None = None  # continuation cursor; None means no more pages


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# ---------------------------------------------------------------------------
# Tenor provider
# ---------------------------------------------------------------------------
_TENOR_SEARCH = "https://tenor.googleapis.com/v2/search"

# Tenor format -> our format name
_TENOR_FORMATS = {"gif": "full", "tinygif": "thumbnail", "nanogif": "preview", "mediumgif": "medium"}


def _tenor_search_url(api_key: str) -> str:
    return _TENOR_SEARCH


def _tenor_params(api_key: str, query: str, limit: int, cursor: str | None, up: UpstreamConfig) -> dict[str, str | int]:
    params: dict[str, str | int] = {
        "q": query,
        "key": api_key,
        "client_key": up.client_key,
        "media_filter": ",".join(_TENOR_FORMATS),
        "limit": limit,
    }
    if up.content_filter:
        params["contentfilter"] = up.content_filter
    if up.locale:
        params["locale"] = up.locale
    if cursor:
        params["pos"] = cursor
    return params


def _tenor_rendition(fmt: dict) -> MediaRendition:
    dims = fmt.get("dims") or [0, 0]
    return MediaRendition(
        url=fmt.get("url") or "",
        width=_int(dims[0]) if len(dims) > 0 else 0,
        height=_int(dims[1]) if len(dims) > 1 else 0,
        duration=_float(fmt.get("duration")),
        size=_int(fmt.get("size")),
    )


def _normalize_tenor(data: dict, query: str, cursor: str | None) -> UpstreamPage:
    results = data.get("results")
    if not isinstance(results, list):
        raise UpstreamError("Invalid response structure from Tenor")
    items: list[GifItem] = []
    for result in results:
        raw_formats = result.get("media_formats") or {}
        media_formats = {
            ours: _tenor_rendition(raw_formats[theirs])
            for theirs, ours in _TENOR_FORMATS.items()
            if raw_formats.get(theirs)
        }
        title = result.get("title") or ""
        created = result.get("created")
        items.append(GifItem(
            id=str(result.get("id", "")),
            title=title,
            media_formats=media_formats,
            content_description=result.get("content_description") or title or f"{query} gif",
            created=int(_float(created) * 1000) if created else 0,
            has_audio=bool(result.get("hasaudio", False)),
            url=result.get("url") or result.get("itemurl") or "",
        ))
    return UpstreamPage(items=items, next=data.get("next") or None)


# ---------------------------------------------------------------------------
# GIPHY provider
# ---------------------------------------------------------------------------
_GIPHY_SEARCH = "https://api.giphy.com/v1/gifs/search"

_GIPHY_RATINGS = {"high": "g", "medium": "pg", "low": "pg-13", "off": "r"}


def _giphy_search_url(api_key: str) -> str:
    return _GIPHY_SEARCH


def _giphy_params(api_key: str, query: str, limit: int, cursor: str | None, up: UpstreamConfig) -> dict[str, str | int]:
    params: dict[str, str | int] = {
        "q": query,
        "api_key": api_key,
        "limit": limit,
        "offset": _int(cursor),
        "rating": _GIPHY_RATINGS.get(up.content_filter, "g"),
    }
    if up.locale:
        params["lang"] = up.locale
    return params


def _giphy_rendition(rendition: dict | None, url_key: str = "url", size_key: str = "size") -> MediaRendition | None:
    if not rendition or not rendition.get(url_key):
        return None
    return MediaRendition(
        url=rendition[url_key],
        width=_int(rendition.get("width")),
        height=_int(rendition.get("height")),
        size=_int(rendition.get(size_key)),
    )


def _giphy_created(value: str | None) -> int:
    if not value:
        return 0
    try:
        dt = datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return 0
    return int(dt.timestamp() * 1000)


def _normalize_giphy(data: dict, query: str, cursor: str | None) -> UpstreamPage:
    results = data.get("data")
    if not isinstance(results, list):
        raise UpstreamError("Invalid response structure from GIPHY")
    items: list[GifItem] = []
    for result in results:
        images = result.get("images") or {}
        original = images.get("original")
        # fixed_height (~200px) is the closest thing GIPHY has to a thumbnail gif
        thumb_source = images.get("fixed_height") or images.get("downsized") or images.get("fixed_height_small")
        candidates = {
            "full": _giphy_rendition(original),
            "thumbnail": _giphy_rendition(thumb_source),
            "preview": _giphy_rendition(images.get("preview_gif")),
            "mp4": _giphy_rendition(original, url_key="mp4", size_key="mp4_size"),
        }
        title = result.get("title") or ""
        items.append(GifItem(
            id=str(result.get("id", "")),
            title=title,
            media_formats={k: v for k, v in candidates.items() if v is not None},
            content_description=result.get("alt_text") or title or f"{query} gif",
            created=_giphy_created(result.get("import_datetime")),
            has_audio=False,
            url=result.get("url") or "",
        ))

    pagination = data.get("pagination") or {}
    offset = _int(pagination.get("offset", cursor))
    next_offset = offset + _int(pagination.get("count", len(results)))
    total = _int(pagination.get("total_count"))
    has_more = bool(results) and next_offset < total
    return UpstreamPage(items=items, next=str(next_offset) if has_more else None)


# ---------------------------------------------------------------------------
# Klipy provider
# ---------------------------------------------------------------------------
_KLIPY_BASE = "https://api.klipy.com/api/v1"

# Klipy size -> our format name
_KLIPY_SIZES = (("hd", "full"), ("md", "medium"), ("sm", "thumbnail"), ("xs", "preview"))


def _klipy_search_url(api_key: str) -> str:
    return f"{_KLIPY_BASE}/{api_key}/gifs/search"


def _klipy_params(api_key: str, query: str, limit: int, cursor: str | None, up: UpstreamConfig) -> dict[str, str | int]:
    params: dict[str, str | int] = {"q": query, "per_page": limit, "page": _int(cursor) or 1}
    if up.content_filter:
        params["content_filter"] = up.content_filter
    if up.locale:
        params["locale"] = up.locale
    return params


def _normalize_klipy(data: dict, query: str, cursor: str | None) -> UpstreamPage:
    inner = data.get("data")
    if not isinstance(inner, dict) or not isinstance(inner.get("data"), list):
        raise UpstreamError("Invalid response structure from Klipy")
    items: list[GifItem] = []
    for item in inner["data"]:
        file_info = item.get("file", {})
        media_formats: dict[str, MediaRendition] = {}
        for size_key, format_key in _KLIPY_SIZES:
            gif_fmt = file_info.get(size_key, {}).get("gif", {})
            if gif_fmt.get("url"):
                media_formats[format_key] = MediaRendition(
                    url=gif_fmt["url"],
                    width=_int(gif_fmt.get("width")),
                    height=_int(gif_fmt.get("height")),
                    size=_int(gif_fmt.get("size")),
                )
        mp4_fmt = file_info.get("md", {}).get("mp4", {})
        if mp4_fmt.get("url"):
            media_formats["mp4"] = MediaRendition(
                url=mp4_fmt["url"],
                width=_int(mp4_fmt.get("width")),
                height=_int(mp4_fmt.get("height")),
            )
        title = item.get("title", "")
        items.append(GifItem(
            id=str(item.get("id", "")),
            title=title,
            media_formats=media_formats,
            content_description=title or f"{query} gif",
            url=item.get("url") or "",
        ))
    has_next = inner.get("has_next", False)
    page = _int(inner.get("current_page")) or 1
    return UpstreamPage(items=items, next=str(page + 1) if has_next else None)


# ---------------------------------------------------------------------------
# Provider dispatch
# ---------------------------------------------------------------------------
_PROVIDERS: dict[str, dict[str, Any]] = {
    "tenor": {
        "search_url": _tenor_search_url,
        "params": _tenor_params,
        "normalize": _normalize_tenor,
    },
    "giphy": {
        "search_url": _giphy_search_url,
        "params": _giphy_params,
        "normalize": _normalize_giphy,
    },
    "klipy": {
        "search_url": _klipy_search_url,
        "params": _klipy_params,
        "normalize": _normalize_klipy,
    },
}


class UpstreamClient:
    """Fetches one page of search results at a time. Never retries."""

    def __init__(self, client: httpx.AsyncClient, provider: str | None = None, api_key: str | None = None) -> None:
        self.client = client
        self.provider_name = provider or config.upstream.provider
        self.api_key = api_key if api_key is not None else config.upstream.api_key
        self.page_size = config.upstream.page_size
        self.timeout = config.upstream.timeout

    def _provider(self) -> dict[str, Any]:
        prov = _PROVIDERS.get(self.provider_name)
        if prov is None:
            raise ProviderNotConfigured(f"Unknown GIF provider: {self.provider_name!r}")
        if not self.api_key:
            raise ProviderNotConfigured("GIF provider API key is not configured")
        return prov

    def check_configured(self) -> None:
        self._provider()

    async def search_page(self, query: str, cursor: str | None = None) -> UpstreamPage:
        prov = self._provider()
        url = prov["search_url"](self.api_key)
        params = prov["params"](self.api_key, query, self.page_size, cursor, config.upstream)
        try:
            resp = await self.client.get(
                url, params=params, headers={"Accept": "application/json"}, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"{self.provider_name} request failed: {e}") from e
        if not resp.is_success:
            raise UpstreamError(f"{self.provider_name} returned status {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"{self.provider_name} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Invalid response structure from {self.provider_name}")
        return prov["normalize"](data, query, cursor)
