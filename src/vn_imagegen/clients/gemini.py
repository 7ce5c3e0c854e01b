from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from ..config import GeminiConfig
from ..errors import BackendFailure, GenerationError
from ..transport import AssetTransport, asset_from_base64
from ..types import EDIT_PURPOSES, Asset, GenerationRequest, Purpose
from .base import ProviderAdapter

logger = logging.getLogger(__name__)


class GeminiImageClient(ProviderAdapter):
    """Gemini native image output via ``generateContent``.

    Each configured model is tried in turn within one call; the image comes back
    inline as base64 in the first ``inlineData`` part of the first candidate.
    """

    name = "gemini"
    purposes = frozenset({Purpose.PORTRAIT}) | EDIT_PURPOSES

    def __init__(
        self,
        config: GeminiConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=config.api_url.rstrip("/") + "/",
            headers={
                "x-goog-api-key": config.api_key,
                "Content-Type": "application/json",
            },
            deadline_seconds=config.deadline_seconds,
            transport=transport,
            assets=assets,
        )

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        if request.purpose.is_edit:
            reference = self._require_reference(request)
        else:
            reference = request.reference_image

        parts: list[Dict[str, Any]] = [{"text": request.prompt}]
        if reference is not None:
            parts.append({"inline_data": {"mime_type": reference.media_type, "data": reference.to_base64()}})
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }

    async def submit(self, request: GenerationRequest) -> Asset:
        payload = self.build_payload(request)
        last_error: GenerationError | None = None
        for model in self._config.models:
            try:
                data = await self._post_json(
                    f"models/{model}:generateContent",
                    context=f"Gemini {model}",
                    json=payload,
                )
                asset = self._extract_image(data)
            except GenerationError as exc:
                logger.warning("Gemini model %s failed: %s", model, exc)
                last_error = exc
                continue
            if asset is not None:
                return asset
            logger.warning("Gemini model %s returned no image", model)
            last_error = BackendFailure(f"{model} returned no image data", provider=self.name)

        raise last_error or BackendFailure("No Gemini models configured", provider=self.name)

    def _extract_image(self, data: Dict[str, Any]) -> Asset | None:
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return None
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                media_type = inline.get("mimeType") or inline.get("mime_type")
                return asset_from_base64(inline["data"], media_type, provider=self.name)
        return None
