"""Tests for the CDN re-hosting gateways."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from gifmirror.cdn import CdnError, HttpCdnGateway, S3CdnGateway, create_gateway


async def test_http_gateway_posts_url_and_reads_media_url():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"mediaUrl": "https://i.redd.it/abc.gif"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        gateway = HttpCdnGateway(client, "https://upload.example/media", token="secret")
        url = await gateway.upload("https://media.tenor.com/abc/tiny.gif")

    assert url == "https://i.redd.it/abc.gif"
    assert json.loads(seen[0].content) == {"url": "https://media.tenor.com/abc/tiny.gif", "type": "gif"}
    assert seen[0].headers["Authorization"] == "Bearer secret"


async def test_http_gateway_missing_media_url():
    def handler(request):
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CdnError):
            await HttpCdnGateway(client, "https://upload.example/media").upload("https://x/y.gif")


async def test_http_gateway_error_status():
    def handler(request):
        return httpx.Response(500)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpCdnGateway(client, "https://upload.example/media").upload("https://x/y.gif")


def test_s3_object_key_is_stable():
    a = S3CdnGateway.object_key("https://media.tenor.com/abc/tiny.gif", "gif")
    b = S3CdnGateway.object_key("https://media.tenor.com/abc/tiny.gif", "gif")
    assert a == b
    assert a.startswith("gifs/")
    assert a.endswith(".gif")


async def test_s3_gateway_uploads_downloaded_bytes():
    mock_s3_client = AsyncMock()
    mock_s3_client.put_object = AsyncMock()

    mock_client_ctx = AsyncMock()
    mock_client_ctx.__aenter__ = AsyncMock(return_value=mock_s3_client)
    mock_client_ctx.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.client.return_value = mock_client_ctx

    mock_aioboto3 = MagicMock()
    mock_aioboto3.Session.return_value = mock_session

    def handler(request):
        return httpx.Response(200, content=b"GIF89a")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with patch.dict("sys.modules", {"aioboto3": mock_aioboto3}):
            gateway = S3CdnGateway(client, bucket="gifs", public_url="https://i.redd.it/")
            url = await gateway.upload("https://media.tenor.com/abc/tiny.gif")

    key = S3CdnGateway.object_key("https://media.tenor.com/abc/tiny.gif", "gif")
    assert url == f"https://i.redd.it/{key}"
    mock_s3_client.put_object.assert_awaited_once_with(
        Bucket="gifs", Key=key, Body=b"GIF89a", ContentType="image/gif"
    )


def test_s3_gateway_requires_aioboto3():
    with patch.dict("sys.modules", {"aioboto3": None}):
        with pytest.raises(RuntimeError, match="aioboto3 is required"):
            S3CdnGateway(httpx.AsyncClient(), bucket="gifs", public_url="https://i.redd.it/")


def test_create_gateway_http(monkeypatch):
    import gifmirror.config as cfg

    monkeypatch.setenv("GIFMIRROR_CDN_UPLOAD_URL", "https://upload.example/media")
    cfg._reload_all()
    assert isinstance(create_gateway(httpx.AsyncClient()), HttpCdnGateway)


def test_create_gateway_http_requires_upload_url():
    with pytest.raises(RuntimeError, match="UPLOAD_URL"):
        create_gateway(httpx.AsyncClient())
