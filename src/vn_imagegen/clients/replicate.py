from __future__ import annotations

from typing import Any, Dict

import httpx

from ..config import ReplicateConfig
from ..errors import BackendFailure
from ..transport import AssetTransport
from ..types import TEXT_TO_IMAGE_PURPOSES, Asset, GenerationRequest, JobState, ProviderJob, Purpose
from .base import ProviderAdapter

ANIME_NEGATIVE = (
    "lowres, bad anatomy, bad hands, text, error, missing fingers, extra digit, fewer digits, "
    "cropped, worst quality, low quality, normal quality, jpeg artifacts, signature, watermark, "
    "username, blurry, artist name, multiple views, multiple angles"
)
BACKGROUND_NEGATIVE = (
    "lowres, worst quality, low quality, jpeg artifacts, text, watermark, signature, logo, "
    "people, characters, figures, person, human, 1girl, 1boy"
)
KEY_ART_NEGATIVE = (
    "lowres, worst quality, low quality, jpeg artifacts, text, watermark, signature, logo, "
    "bad anatomy, deformed"
)

_NEGATIVES = {
    Purpose.PORTRAIT: ANIME_NEGATIVE,
    Purpose.BACKGROUND: BACKGROUND_NEGATIVE,
    Purpose.KEY_ART: KEY_ART_NEGATIVE,
}
_SIZES = {
    Purpose.PORTRAIT: (832, 1216),
    Purpose.BACKGROUND: (1216, 832),
    Purpose.KEY_ART: (832, 1216),
}


class ReplicateClient(ProviderAdapter):
    """Replicate predictions: create a prediction, then poll it by id."""

    name = "replicate"
    purposes = TEXT_TO_IMAGE_PURPOSES

    def __init__(
        self,
        config: ReplicateConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=config.api_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {config.api_token}",
                "Content-Type": "application/json",
            },
            deadline_seconds=config.deadline_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            transport=transport,
            assets=assets,
        )

    def build_input(self, request: GenerationRequest) -> Dict[str, Any]:
        style = request.style
        width, height = _SIZES.get(request.purpose, (832, 1216))
        model_input: Dict[str, Any] = {
            "prompt": request.prompt,
            "negative_prompt": style.negative_prompt or _NEGATIVES.get(request.purpose, ANIME_NEGATIVE),
            "width": style.width or width,
            "height": style.height or height,
            "cfg_scale": style.guidance_scale if style.guidance_scale is not None else 5,
            "steps": style.steps or 28,
            "scheduler": style.sampler or "Euler a",
        }
        if style.seed is not None:
            model_input["seed"] = style.seed
        return model_input

    async def submit(self, request: GenerationRequest) -> Asset | ProviderJob:
        prediction = await self._post_json(
            "predictions",
            context="Replicate create",
            json={"version": self._config.model_version, "input": self.build_input(request)},
        )
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise BackendFailure("Replicate create response missing prediction id", provider=self.name)

        poll_url = (prediction.get("urls") or {}).get("get") or f"predictions/{prediction_id}"
        job = ProviderJob(provider=self.name, job_id=str(prediction_id), status_url=poll_url)

        # The create call may already carry a terminal state.
        asset = await self._resolve(job, prediction)
        if asset is not None:
            return asset
        return job

    async def poll(self, job: ProviderJob) -> Asset | None:
        data = await self._poll_json(job.status_url or f"predictions/{job.job_id}")
        if data is None:
            return None
        return await self._resolve(job, data)

    async def _resolve(self, job: ProviderJob, data: Dict[str, Any]) -> Asset | None:
        status = (data.get("status") or "").lower()
        if status == "succeeded":
            job.resolve(JobState.SUCCEEDED)
            return await self._dereference(data.get("output"))
        if status == "failed":
            raise self._fail(job, JobState.FAILED, data.get("error") or "Replicate prediction failed")
        if status in {"canceled", "cancelled"}:
            raise self._fail(job, JobState.CANCELED, "Replicate prediction canceled")
        if status in {"starting", "processing"} and job.state is JobState.SUBMITTED:
            job.mark_running()
        return None

    async def _dereference(self, output: Any) -> Asset:
        if isinstance(output, str):
            urls = [output]
        elif isinstance(output, list):
            urls = [item for item in output if isinstance(item, str)]
        else:
            urls = []
        if not urls:
            raise BackendFailure("Replicate prediction succeeded without output URLs", provider=self.name)
        return await self._assets.fetch(urls[0], provider=self.name)
