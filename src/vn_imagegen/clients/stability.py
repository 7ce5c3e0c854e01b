from __future__ import annotations

import logging

import httpx

from ..config import StabilityConfig
from ..errors import BackendFailure, TransportError, error_from_response
from ..transport import asset_from_base64
from ..types import Asset

logger = logging.getLogger(__name__)


class StabilityMattingClient:
    """Stability AI ``remove-background``: one multipart upload, PNG back as base64."""

    name = "stability"

    def __init__(
        self,
        config: StabilityConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session = httpx.AsyncClient(
            base_url=config.api_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    async def remove_background(self, asset: Asset) -> Asset:
        try:
            response = await self._session.post(
                "stable-image/edit/remove-background",
                files={"image": ("input.png", asset.data, asset.media_type)},
                data={"output_format": "png"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Background removal request failed: {exc}", provider=self.name) from exc
        if response.is_error:
            raise error_from_response(self.name, response, "Background removal")

        try:
            data = response.json()
        except ValueError as exc:
            raise BackendFailure("Background removal returned invalid JSON", provider=self.name) from exc
        image = data.get("image") if isinstance(data, dict) else None
        if not image:
            raise BackendFailure("Background removal response has no image", provider=self.name)
        logger.debug("Hosted background removal finished (finish_reason=%s)", data.get("finish_reason"))
        return asset_from_base64(image, "image/png", provider=self.name)

    async def aclose(self) -> None:
        await self._session.aclose()

    async def __aenter__(self) -> "StabilityMattingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()
