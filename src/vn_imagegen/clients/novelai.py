from __future__ import annotations

import io
import zipfile
from typing import Any, Dict

import httpx

from ..config import NovelAIConfig
from ..errors import BackendFailure
from ..transport import AssetTransport, sniff_media_type
from ..types import TEXT_TO_IMAGE_PURPOSES, Asset, GenerationRequest, Purpose
from .base import ProviderAdapter

DEFAULT_NEGATIVE = (
    "lowres, bad anatomy, bad hands, text, error, missing fingers, extra digit, fewer digits, "
    "cropped, worst quality, low quality, normal quality, jpeg artifacts, signature, watermark, "
    "username, blurry, multiple characters, duplicate"
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def extract_image(payload: bytes) -> bytes:
    """Pull the image out of a NovelAI response (a ZIP archive, or a bare image)."""
    if zipfile.is_zipfile(io.BytesIO(payload)):
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            for member in archive.infolist():
                if member.is_dir():
                    continue
                data = archive.read(member)
                if sniff_media_type(data).startswith("image/"):
                    return data
        raise ValueError("ZIP archive does not contain an image")

    start = payload.find(PNG_SIGNATURE)
    if start > 0:
        return payload[start:]
    return payload


class NovelAIClient(ProviderAdapter):
    """NovelAI text-to-image: one synchronous call, image returned in the body."""

    name = "novelai"
    purposes = TEXT_TO_IMAGE_PURPOSES

    def __init__(
        self,
        config: NovelAIConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=config.api_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            deadline_seconds=config.deadline_seconds,
            transport=transport,
            assets=assets,
        )

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        style = request.style
        if request.purpose is Purpose.BACKGROUND:
            width, height = 1024, 576
        else:
            width, height = 512, 768
        parameters: Dict[str, Any] = {
            "width": style.width or width,
            "height": style.height or height,
            "scale": style.guidance_scale if style.guidance_scale is not None else 5,
            "sampler": style.sampler or "k_euler",
            "steps": style.steps or 28,
            "n_samples": 1,
            "ucPreset": 0,
            "qualityToggle": True,
            "negative_prompt": style.negative_prompt or DEFAULT_NEGATIVE,
        }
        if style.seed is not None:
            parameters["seed"] = style.seed
        return {
            "input": request.prompt,
            "model": self._config.model,
            "action": "generate",
            "parameters": parameters,
        }

    async def submit(self, request: GenerationRequest) -> Asset:
        response = await self._send(
            "POST",
            "/ai/generate-image",
            context="NovelAI generate",
            json=self.build_payload(request),
        )
        try:
            data = extract_image(response.content)
        except (ValueError, zipfile.BadZipFile) as exc:
            raise BackendFailure(f"NovelAI response unreadable: {exc}", provider=self.name) from exc
        if not data:
            raise BackendFailure("NovelAI response was empty", provider=self.name)
        return Asset(data=data, media_type=sniff_media_type(data))
