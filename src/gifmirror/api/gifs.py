"""GIF search endpoints. Provider API keys and CDN credentials stay server-side."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from gifmirror.api.deps import get_search_service
from gifmirror.models.gifs import BatchSearchRequest, BatchSearchResponse, SearchLimit, SearchResultSet
from gifmirror.search import GifSearchService
from gifmirror.upstream import ProviderNotConfigured, UpstreamError

router = APIRouter(tags=["gifs"])
log = logging.getLogger(__name__)


def _provider_unavailable(message: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"error": {"code": "GIF_PROVIDER_UNAVAILABLE", "message": message}},
    )


@router.get("/api/v1/gifs/search")
async def gif_search(
    q: str = Query(..., min_length=1),
    limit: Annotated[SearchLimit, Query()] = None,
    service: GifSearchService = Depends(get_search_service),
) -> SearchResultSet:
    try:
        return await service.search(q, limit)
    except ProviderNotConfigured as e:
        raise _provider_unavailable(str(e))
    except UpstreamError:
        log.exception("GIF search upstream error")
        raise HTTPException(
            status_code=502,
            detail={"error": {"code": "GIF_UPSTREAM_ERROR", "message": "Failed to fetch GIFs from provider."}},
        )


@router.post("/api/v1/gifs/search-multiple")
async def gif_search_multiple(
    body: BatchSearchRequest,
    service: GifSearchService = Depends(get_search_service),
) -> BatchSearchResponse:
    try:
        service.upstream.check_configured()
    except ProviderNotConfigured as e:
        raise _provider_unavailable(str(e))
    results = await service.search_many(body.queries, body.limit)
    return BatchSearchResponse(results=results)
