import asyncio
import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI

from gifmirror.db.engine import (
    create_tables,
    database_url_from_env,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_engine,
)

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure structured JSON logging (or plain text for dev)."""
    log_format = os.environ.get("GIFMIRROR_LOG_FORMAT", "json")
    root = logging.getLogger()
    root.setLevel(os.environ.get("GIFMIRROR_LOG_LEVEL", "INFO").upper())
    # Remove existing handlers
    for h in root.handlers[:]:
        root.removeHandler(h)
    handler = logging.StreamHandler()
    if log_format == "json":
        import json as _json

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                d = {
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
                if record.exc_info:
                    d["exception"] = self.formatException(record.exc_info)
                return _json.dumps(d)

        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


async def _periodic_cleanup(store, interval: int):
    """Background task: drop expired cache entries so the kv table does not grow unbounded."""
    while True:
        await asyncio.sleep(interval)
        purge = getattr(store, "purge_expired", None)
        if purge is None:
            continue
        try:
            removed = await purge()
            if removed:
                logger.info("Periodic cleanup: purged %d expired cache entries", removed)
        except Exception:
            logger.error("Periodic cleanup: cache purge failed", exc_info=True)


# --- Health and readiness endpoints ---
_health_router = APIRouter(tags=["health"])


@_health_router.get("/health")
async def health():
    return {"status": "ok"}


@_health_router.get("/ready")
async def ready():
    from sqlalchemy import text
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception:
        from fastapi.responses import JSONResponse
        return JSONResponse(status_code=503, content={"status": "unavailable"})


def create_app(database_url: str | None = None) -> FastAPI:
    init_engine(database_url or database_url_from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()

        await create_tables()
        # Load config overrides from DB
        from gifmirror.config import config, load_config
        async with get_session_factory()() as db:
            await load_config(db)

        if not config.upstream.api_key:
            logger.warning("GIF provider API key is not configured (GIFMIRROR_UPSTREAM_API_KEY not set)")

        # One store and one HTTP client per process, shared by every request
        from gifmirror.search import build_service
        from gifmirror.store import create_store
        store = create_store(session_factory=get_session_factory())
        http_client = httpx.AsyncClient(timeout=10.0)
        try:
            app.state.search_service = build_service(http_client, store)
        except RuntimeError as e:
            # Search endpoints answer 503 until the CDN backend is configured
            logger.error("GIF search disabled: %s", e)
            app.state.search_service = None

        cleanup_task = asyncio.create_task(_periodic_cleanup(store, config.store.cleanup_interval))
        yield
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        await http_client.aclose()
        await dispose_engine()

    from gifmirror.models.errors import ErrorEnvelope

    app = FastAPI(
        title="gifmirror",
        version="1.0.0",
        description="Deduplicating, CDN-mirrored GIF search",
        lifespan=lifespan,
        responses={
            422: {"model": ErrorEnvelope},
            502: {"model": ErrorEnvelope},
            503: {"model": ErrorEnvelope},
        },
    )

    from fastapi.exceptions import RequestValidationError
    from fastapi.responses import JSONResponse

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        return JSONResponse(
            status_code=422,
            content={"error": {"code": "VALIDATION_ERROR", "message": str(exc)}},
        )

    # Register routers
    from gifmirror.api.gifs import router as gifs_router

    app.include_router(_health_router)
    app.include_router(gifs_router)

    return app
