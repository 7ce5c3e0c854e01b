from __future__ import annotations

import base64
import binascii
import logging

import httpx

from .errors import TransportError
from .types import Asset

logger = logging.getLogger(__name__)


def sniff_media_type(data: bytes) -> str:
    """Best-effort media type from the leading magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:2] == b"BM":
        return "image/bmp"
    return "application/octet-stream"


def asset_from_base64(payload: str, media_type: str | None = None, *, provider: str | None = None) -> Asset:
    """Decode an inline base64 payload (bare or data-URI prefixed) into an Asset."""
    if payload.startswith("data:"):
        try:
            return Asset.from_data_uri(payload)
        except ValueError as exc:
            raise TransportError(str(exc), provider=provider) from exc
    try:
        data = base64.b64decode(payload, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise TransportError(f"Failed to decode base64 image data: {exc}", provider=provider) from exc
    if not data:
        raise TransportError("Inline image payload is empty", provider=provider)
    return Asset(data=data, media_type=media_type or sniff_media_type(data))


class AssetTransport:
    """Downloads result references and turns them into Assets.

    Result URLs handed out by backends are short-lived, so they are fetched as soon
    as an adapter sees them and never stored.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, reference: str, *, provider: str | None = None) -> Asset:
        if reference.startswith("data:"):
            return asset_from_base64(reference, provider=provider)

        try:
            response = await self._session.get(reference)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to download image: {exc}", provider=provider) from exc
        if response.status_code >= 400:
            raise TransportError(
                f"Failed to download image: {response.status_code}", provider=provider
            )

        data = response.content
        if not data:
            raise TransportError("Downloaded image is empty", provider=provider)
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = sniff_media_type(data)
        logger.debug("Fetched %d bytes (%s) from result reference", len(data), content_type)
        return Asset(data=data, media_type=content_type)

    async def aclose(self) -> None:
        await self._session.aclose()

    async def __aenter__(self) -> "AssetTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()
