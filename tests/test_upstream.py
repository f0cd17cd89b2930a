"""Tests for the upstream provider clients and their normalization."""

import httpx
import pytest

from gifmirror.upstream import ProviderNotConfigured, UpstreamClient, UpstreamError

TENOR_PAGE = {
    "results": [
        {
            "id": "111",
            "title": "Party Time",
            "content_description": "Cat party celebration",
            "created": 1700000000.5,
            "hasaudio": False,
            "url": "https://tenor.com/view/111",
            "media_formats": {
                "gif": {"url": "https://media.tenor.com/111/gif.gif", "dims": [498, 280], "duration": 2.1, "size": 900000},
                "tinygif": {"url": "https://media.tenor.com/111/tiny.gif", "dims": [220, 124], "duration": 2.1, "size": 90000},
                "nanogif": {"url": "https://media.tenor.com/111/nano.gif", "dims": [90, 50], "duration": 2.1, "size": 9000},
            },
        },
        {"id": "222", "title": "", "media_formats": {}},
    ],
    "next": "CAgQ",
}


def _client(handler, provider="tenor", api_key="k"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return UpstreamClient(http, provider=provider, api_key=api_key)


async def test_tenor_normalizes_formats_and_cursor():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json=TENOR_PAGE)

    page = await _client(handler).search_page("party")

    assert page.next == "CAgQ"
    first = page.items[0]
    assert first.id == "111"
    assert first.content_description == "Cat party celebration"
    assert first.created == 1700000000500
    assert first.media_formats["full"].width == 498
    assert first.media_formats["thumbnail"].url == "https://media.tenor.com/111/tiny.gif"
    assert first.media_formats["preview"].duration == 2.1
    # Missing description falls back to the query
    assert page.items[1].content_description == "party gif"
    assert page.items[1].media_formats == {}

    params = seen[0].params
    assert params["q"] == "party"
    assert params["key"] == "k"
    assert params["limit"] == "50"
    assert params["contentfilter"] == "high"
    assert "pos" not in params


async def test_tenor_passes_cursor():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"results": [], "next": ""})

    page = await _client(handler).search_page("party", cursor="CAgQ")
    assert seen[0].params["pos"] == "CAgQ"
    assert page.next is None


async def test_giphy_offset_cursor():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={
            "data": [{
                "id": "g1",
                "title": "Dance GIF",
                "url": "https://giphy.com/gifs/g1",
                "import_datetime": "2020-01-02 03:04:05",
                "images": {
                    "original": {"url": "https://media.giphy.com/g1/o.gif", "width": "480", "height": "360",
                                 "mp4": "https://media.giphy.com/g1/o.mp4", "mp4_size": "1000"},
                    "fixed_height": {"url": "https://media.giphy.com/g1/200.gif", "width": "267", "height": "200"},
                },
            }],
            "pagination": {"total_count": 120, "count": 50, "offset": 50},
        })

    page = await _client(handler, provider="giphy").search_page("dance", cursor="50")

    assert seen[0].params["offset"] == "50"
    assert seen[0].params["rating"] == "g"
    assert page.next == "100"
    item = page.items[0]
    assert item.media_formats["full"].height == 360
    assert item.media_formats["thumbnail"].url.endswith("200.gif")
    assert item.media_formats["mp4"].url.endswith("o.mp4")
    assert item.created > 0


async def test_giphy_last_page_has_no_cursor():
    def handler(request):
        return httpx.Response(200, json={
            "data": [{"id": "g1", "images": {}}],
            "pagination": {"total_count": 51, "count": 1, "offset": 50},
        })

    page = await _client(handler, provider="giphy").search_page("dance", cursor="50")
    assert page.next is None


async def test_klipy_page_cursor():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"data": {
            "data": [{
                "id": 7,
                "title": "wave",
                "file": {
                    "sm": {"gif": {"url": "https://static.klipy.com/7/sm.gif", "width": 200, "height": 100}},
                    "hd": {"gif": {"url": "https://static.klipy.com/7/hd.gif", "width": 800, "height": 400}},
                },
            }],
            "has_next": True,
            "current_page": 2,
        }})

    page = await _client(handler, provider="klipy").search_page("wave", cursor="2")
    assert "/k/gifs/search" in seen[0].path
    assert seen[0].params["page"] == "2"
    assert page.next == "3"
    assert page.items[0].id == "7"
    assert page.items[0].media_formats["thumbnail"].width == 200
    assert page.items[0].media_formats["full"].width == 800


async def test_non_2xx_raises_upstream_error():
    def handler(request):
        return httpx.Response(429, text="rate limited")

    with pytest.raises(UpstreamError, match="429"):
        await _client(handler).search_page("party")


async def test_network_error_raises_upstream_error():
    def handler(request):
        raise httpx.ConnectError("down")

    with pytest.raises(UpstreamError):
        await _client(handler).search_page("party")


async def test_malformed_body_raises_upstream_error():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(UpstreamError, match="Invalid response"):
        await _client(handler).search_page("party")


async def test_missing_api_key():
    client = _client(lambda r: httpx.Response(200), api_key="")
    with pytest.raises(ProviderNotConfigured):
        await client.search_page("party")


def test_unknown_provider():
    client = _client(lambda r: httpx.Response(200), provider="nope")
    with pytest.raises(ProviderNotConfigured, match="nope"):
        client.check_configured()


def test_defaults_come_from_config(monkeypatch):
    import gifmirror.config as cfg

    monkeypatch.setenv("GIFMIRROR_UPSTREAM_PROVIDER", "giphy")
    monkeypatch.setenv("GIFMIRROR_UPSTREAM_API_KEY", "from-env")
    cfg._reload_all()

    client = UpstreamClient(httpx.AsyncClient())
    assert client.provider_name == "giphy"
    assert client.api_key == "from-env"


def test_param_builders_read_upstream_config():
    from gifmirror.config import UpstreamConfig
    from gifmirror.upstream import _giphy_params, _klipy_params, _tenor_params

    up = UpstreamConfig(content_filter="medium", locale="fr_FR", client_key="mirror-app")
    assert _tenor_params("k", "cats", 10, None, up)["contentfilter"] == "medium"
    assert _tenor_params("k", "cats", 10, None, up)["client_key"] == "mirror-app"
    giphy = _giphy_params("k", "cats", 10, "20", up)
    assert giphy["rating"] == "pg"
    assert giphy["lang"] == "fr_FR"
    assert _klipy_params("k", "cats", 10, None, up)["page"] == 1
