from fastapi import HTTPException, Request

from gifmirror.search import GifSearchService


def get_search_service(request: Request) -> GifSearchService:
    service = getattr(request.app.state, "search_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail={"error": {"code": "GIF_PROVIDER_UNAVAILABLE", "message": "GIF search is not initialized."}},
        )
    return service
