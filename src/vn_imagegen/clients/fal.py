from __future__ import annotations

from typing import Any, Dict

import httpx

from ..config import FalConfig
from ..errors import BackendFailure
from ..transport import AssetTransport
from ..types import EDIT_PURPOSES, Asset, GenerationRequest, JobState, ProviderJob
from .base import ProviderAdapter


class FalQueueClient(ProviderAdapter):
    """fal.ai queue: submit, poll the status URL, then fetch the separate result URL."""

    name = "fal"
    purposes = EDIT_PURPOSES

    def __init__(
        self,
        config: FalConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        self._queue_url = config.queue_url.rstrip("/")
        super().__init__(
            base_url=self._queue_url + "/",
            headers={
                "Authorization": f"Key {config.api_key}",
                "Content-Type": "application/json",
            },
            deadline_seconds=config.deadline_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            transport=transport,
            assets=assets,
        )

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        reference = self._require_reference(request)
        style = request.style
        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "image_urls": [reference.to_data_uri()],
            "enable_safety_checker": self._config.enable_safety_checker,
            "num_images": 1,
            "image_size": {
                "width": style.width or self._config.image_width,
                "height": style.height or self._config.image_height,
            },
        }
        if style.negative_prompt:
            payload["negative_prompt"] = style.negative_prompt
        if style.seed is not None:
            payload["seed"] = style.seed
        return payload

    async def submit(self, request: GenerationRequest) -> ProviderJob:
        data = await self._post_json(
            self._config.sub_path,
            context="fal.ai submit",
            json=self.build_payload(request),
        )
        request_id = data.get("request_id")
        if not request_id:
            raise BackendFailure("No request_id in fal.ai response", provider=self.name)

        # Prefer the URLs handed back by the queue: they omit the model sub-path.
        return ProviderJob(
            provider=self.name,
            job_id=str(request_id),
            status_url=data.get("status_url") or f"{self._queue_url}/requests/{request_id}/status",
            result_url=data.get("response_url") or f"{self._queue_url}/requests/{request_id}",
        )

    async def poll(self, job: ProviderJob) -> Asset | None:
        data = await self._poll_json(job.status_url or f"{self._queue_url}/requests/{job.job_id}/status")
        if data is None:
            return None
        status = (data.get("status") or "").upper()

        if status == "COMPLETED":
            if data.get("error"):
                raise self._fail(job, JobState.FAILED, f"fal.ai request failed: {data['error']}")
            job.resolve(JobState.SUCCEEDED)
            return await self._fetch_result(job)
        if status in {"FAILED", "ERROR"}:
            raise self._fail(job, JobState.FAILED, f"fal.ai task failed: {data}")
        if status in {"CANCELED", "CANCELLED"}:
            raise self._fail(job, JobState.CANCELED, "fal.ai request canceled")
        if status == "IN_PROGRESS" and job.state is JobState.SUBMITTED:
            job.mark_running()
        return None

    async def _fetch_result(self, job: ProviderJob) -> Asset:
        result = await self._get_json(
            job.result_url or f"{self._queue_url}/requests/{job.job_id}",
            context="fal.ai result fetch",
        )
        images = result.get("images") or []
        image_url = images[0].get("url") if images and isinstance(images[0], dict) else None
        if not image_url:
            raise BackendFailure("No image URL in fal.ai result", provider=self.name)
        return await self._assets.fetch(image_url, provider=self.name)
