"""Data models for GIF search results and the batch search endpoint."""

from __future__ import annotations

from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from gifmirror.validators import int_limit, list_limit

# Renditions every item carries after normalization; absent ones become placeholders.
REQUIRED_FORMATS = ("full", "thumbnail", "preview")

# The rendition that gets re-hosted and must live on the CDN.
DEFAULT_FORMAT = "thumbnail"


class MediaRendition(BaseModel):
    url: str = ""
    width: int = 0
    height: int = 0
    duration: float = 0.0  # seconds
    size: int = 0  # bytes


class GifItem(BaseModel):
    id: str
    title: str = ""
    media_formats: dict[str, MediaRendition] = Field(default_factory=dict)
    content_description: str = ""
    created: int = 0  # epoch ms
    has_audio: bool = False
    url: str = ""

    def with_placeholders(self) -> GifItem:
        """Return a copy where every required format exists, empty if the upstream lacked it."""
        formats = dict(self.media_formats)
        for name in REQUIRED_FORMATS:
            if formats.get(name) is None:
                formats[name] = MediaRendition()
        return self.model_copy(update={"media_formats": formats})

    def unusable(self) -> GifItem:
        """Return a copy with the canonical and default rendition URLs cleared."""
        formats = dict(self.media_formats)
        default = formats.get(DEFAULT_FORMAT)
        if default is not None:
            formats[DEFAULT_FORMAT] = default.model_copy(update={"url": ""})
        return self.model_copy(update={"url": "", "media_formats": formats})

    def rehosted(self, cdn_url: str) -> GifItem:
        """Return a copy whose canonical and default rendition URLs point at *cdn_url*."""
        formats = dict(self.media_formats)
        default = formats.get(DEFAULT_FORMAT) or MediaRendition()
        formats[DEFAULT_FORMAT] = default.model_copy(update={"url": cdn_url})
        return self.model_copy(update={"url": cdn_url, "media_formats": formats})


class SearchResultSet(BaseModel):
    query: str
    results: list[GifItem]


# Requested result count: at least 1, at most the live search.max_limit.
SearchLimit = Annotated[int | None, AfterValidator(int_limit(ge=1, max_attr="max_limit"))]


class BatchSearchRequest(BaseModel):
    queries: Annotated[list[str], AfterValidator(list_limit(max_attr="max_batch_queries"))]
    limit: SearchLimit = None


class BatchSearchResponse(BaseModel):
    results: dict[str, list[GifItem]]
