from __future__ import annotations

from typing import Any, Dict

import httpx

from ..config import DashScopeConfig
from ..errors import BackendFailure
from ..transport import AssetTransport
from ..types import EDIT_PURPOSES, Asset, GenerationRequest, JobState, ProviderJob
from .base import ProviderAdapter


class DashScopeClient(ProviderAdapter):
    """DashScope image-to-image: explicitly async task, polled by task id."""

    name = "dashscope"
    purposes = EDIT_PURPOSES

    def __init__(
        self,
        config: DashScopeConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=config.api_url.rstrip("/") + "/",
            headers={"Authorization": f"Bearer {config.api_key}"},
            deadline_seconds=config.deadline_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            transport=transport,
            assets=assets,
        )

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        reference = self._require_reference(request)
        parameters: Dict[str, Any] = {"n": 1, "prompt_extend": False, "watermark": False}
        if request.style.seed is not None:
            parameters["seed"] = request.style.seed
        if request.style.negative_prompt:
            parameters["negative_prompt"] = request.style.negative_prompt
        return {
            "model": self._config.model,
            "input": {"prompt": request.prompt, "images": [reference.to_data_uri()]},
            "parameters": parameters,
        }

    async def submit(self, request: GenerationRequest) -> ProviderJob:
        data = await self._post_json(
            "services/aigc/image2image/image-synthesis",
            context="DashScope task creation",
            headers={"Content-Type": "application/json", "X-DashScope-Async": "enable"},
            json=self.build_payload(request),
        )
        task_id = (data.get("output") or {}).get("task_id")
        if not task_id:
            raise BackendFailure("No task_id in DashScope response", provider=self.name)
        return ProviderJob(provider=self.name, job_id=str(task_id), status_url=f"tasks/{task_id}")

    async def poll(self, job: ProviderJob) -> Asset | None:
        data = await self._poll_json(job.status_url or f"tasks/{job.job_id}")
        if data is None:
            return None
        output = data.get("output") or {}
        status = (output.get("task_status") or "").upper()

        if status == "SUCCEEDED":
            job.resolve(JobState.SUCCEEDED)
            urls = [item["url"] for item in output.get("results") or [] if isinstance(item, dict) and item.get("url")]
            if not urls:
                raise BackendFailure("No result URL in DashScope response", provider=self.name)
            # Result URLs expire, so every one is fetched right away.
            assets = [await self._assets.fetch(url, provider=self.name) for url in urls]
            job.detail["result_count"] = len(assets)
            return assets[0]
        if status == "FAILED":
            raise self._fail(job, JobState.FAILED, f"DashScope task failed: {output.get('message') or 'unknown error'}")
        if status in {"CANCELED", "CANCELLED"}:
            raise self._fail(job, JobState.CANCELED, "DashScope task canceled")
        if status == "RUNNING" and job.state is JobState.SUBMITTED:
            job.mark_running()
        return None
