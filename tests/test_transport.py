from __future__ import annotations

import asyncio

import httpx
import pytest

from vn_imagegen.errors import TransportError
from vn_imagegen.transport import AssetTransport, asset_from_base64, sniff_media_type

URL = "https://cdn.example.com/out.png"


def fetch(backend, reference: str):
    async def go():
        async with AssetTransport(transport=backend.transport) as assets:
            return await assets.fetch(reference, provider="test")

    return asyncio.run(go())


def test_fetch_uses_content_type_header(backend, sprite_png):
    backend.add("GET", URL, {"status": 200, "content": sprite_png, "headers": {"content-type": "image/png"}})

    asset = fetch(backend, URL)

    assert asset.data == sprite_png
    assert asset.media_type == "image/png"


def test_fetch_sniffs_when_header_is_generic(backend, sprite_png):
    backend.add(
        "GET", URL, {"status": 200, "content": sprite_png, "headers": {"content-type": "binary/octet-stream"}}
    )
    assert fetch(backend, URL).media_type == "image/png"


def test_fetch_errors_become_transport_errors(backend):
    backend.add("GET", URL, {"status": 403, "text": "expired"})
    with pytest.raises(TransportError) as excinfo:
        fetch(backend, URL)
    assert excinfo.value.provider == "test"

    backend.routes.clear()
    backend.add("GET", URL, httpx.ConnectError("boom"))
    with pytest.raises(TransportError):
        fetch(backend, URL)


def test_data_uri_needs_no_network(backend):
    asset = fetch(backend, "data:image/png;base64,aGVsbG8=")
    assert asset.data == b"hello"
    assert backend.calls == []


def test_inline_base64():
    assert asset_from_base64("aGVsbG8=", "image/jpeg").media_type == "image/jpeg"
    with pytest.raises(TransportError):
        asset_from_base64("***not base64***")


def test_sniff_media_type():
    assert sniff_media_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert sniff_media_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_media_type(b"????") == "application/octet-stream"
