from __future__ import annotations

import httpx

from ..config import GrokConfig
from ..errors import BackendFailure
from ..transport import AssetTransport, asset_from_base64
from ..types import EDIT_PURPOSES, Asset, GenerationRequest
from .base import ProviderAdapter


class GrokImageClient(ProviderAdapter):
    """xAI image edits: a single request/response call, no polling."""

    name = "grok"
    purposes = EDIT_PURPOSES

    def __init__(
        self,
        config: GrokConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=config.api_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            deadline_seconds=config.deadline_seconds,
            transport=transport,
            assets=assets,
        )

    async def submit(self, request: GenerationRequest) -> Asset:
        reference = self._require_reference(request)
        data = await self._post_json(
            "images/edits",
            context="Grok image edit",
            json={
                "model": self._config.model,
                "prompt": request.prompt,
                "image": {"url": reference.to_data_uri(), "type": "image_url"},
                "n": 1,
                "response_format": self._config.response_format,
            },
        )

        entries = data.get("data") or []
        first = entries[0] if entries and isinstance(entries[0], dict) else {}
        if first.get("b64_json"):
            return asset_from_base64(first["b64_json"], provider=self.name)
        if first.get("url"):
            return await self._assets.fetch(first["url"], provider=self.name)
        raise BackendFailure(
            f"Grok response missing image data. Response format: {list(data.keys())}",
            provider=self.name,
        )
