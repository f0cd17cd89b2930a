import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from gifmirror.db.engine import get_engine
from gifmirror.db.models import Base
from gifmirror.models.gifs import GifItem, MediaRendition
from gifmirror.rehost import Rehoster, RetryPolicy
from gifmirror.search import GifSearchService
from gifmirror.store import MemoryStore
from gifmirror.upstream import ProviderNotConfigured, UpstreamPage

CDN = "https://i.redd.it/"
ORIGIN = "https://media.tenor.com/"


def _reset_config():
    """Reset the in-memory config singleton to defaults."""
    import gifmirror.config as _cfg
    _cfg._db_values.clear()
    _cfg._reload_all()


@pytest.fixture(autouse=True)
def _clear_state():
    _reset_config()
    yield
    _reset_config()


def make_item(
    item_id: str,
    width: int = 480,
    height: int = 270,
    duration: float = 2.0,
    description: str = "",
) -> GifItem:
    """An upstream (origin-hosted) item as a provider would return it."""
    return GifItem(
        id=item_id,
        title=description,
        media_formats={
            "full": MediaRendition(
                url=f"{ORIGIN}{item_id}/full.gif", width=width, height=height, duration=duration
            ),
            "thumbnail": MediaRendition(
                url=f"{ORIGIN}{item_id}/tiny.gif", width=width // 2, height=height // 2, duration=duration
            ),
        },
        content_description=description,
        url=f"https://tenor.com/view/{item_id}",
    )


class FakeUpstream:
    """Serves a fixed list of pages; page N+1 is reachable through the cursor of page N."""

    def __init__(self, pages: list[list[GifItem]], *, endless: bool = False, error: Exception | None = None):
        self.pages = pages
        self.endless = endless
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    def check_configured(self) -> None:
        if isinstance(self.error, ProviderNotConfigured):
            raise self.error

    async def search_page(self, query: str, cursor: str | None = None) -> UpstreamPage:
        self.calls.append((query, cursor))
        if self.error is not None:
            raise self.error
        index = int(cursor) if cursor else 0
        if self.endless:
            # Fresh IDs on every page, always a next cursor.
            items = [item.model_copy(update={"id": f"{item.id}-p{index}"}) for item in self.pages[0]]
            return UpstreamPage(items=items, next=str(index + 1))
        items = self.pages[index] if index < len(self.pages) else []
        nxt = str(index + 1) if index + 1 < len(self.pages) else None
        return UpstreamPage(items=items, next=nxt)


class FakeGateway:
    """Mirrors any URL to the CDN unless told to fail it."""

    def __init__(self, prefix: str = CDN):
        self.prefix = prefix
        self.fail: set[str] = set()
        self.hang: set[str] = set()
        self.uploads: list[str] = []

    async def upload(self, url: str, media_type: str = "gif") -> str:
        import asyncio

        self.uploads.append(url)
        if any(marker in url for marker in self.hang):
            await asyncio.sleep(3600)
        if any(marker in url for marker in self.fail):
            raise RuntimeError("upload rejected")
        name = url.rsplit("/", 2)[-2]
        return f"{self.prefix}{name}.gif"


def cdn_head_transport(missing: set[str] | None = None) -> httpx.MockTransport:
    missing = missing or set()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD" and str(request.url).startswith(CDN) and str(request.url) not in missing:
            return httpx.Response(200)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def fake_sleep():
    return FakeSleep()


@pytest.fixture()
async def http_client():
    async with httpx.AsyncClient(transport=cdn_head_transport()) as c:
        yield c


@pytest.fixture()
def rehoster(gateway, http_client, fake_sleep):
    return Rehoster(
        gateway,
        http_client,
        CDN,
        upload_timeout=0.05,
        verify_policy=RetryPolicy(max_attempts=4, per_attempt_timeout=2.5, inter_attempt_delay=0.7),
        sleep=fake_sleep,
    )


@pytest.fixture()
def make_service(rehoster, store):
    def _make(upstream) -> GifSearchService:
        return GifSearchService(upstream, rehoster, store)
    return _make


@pytest.fixture()
def app():
    from gifmirror.api.app import create_app
    return create_app("sqlite+aiosqlite://")


@pytest.fixture()
async def db(app):
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
async def client(app, db):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c
