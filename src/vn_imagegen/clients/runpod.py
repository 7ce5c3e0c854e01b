from __future__ import annotations

import random
from typing import Any, Dict

import httpx

from ..config import RunPodConfig
from ..errors import BackendFailure
from ..transport import AssetTransport, asset_from_base64
from ..types import EDIT_PURPOSES, Asset, GenerationRequest, JobState, ProviderJob, Purpose
from .base import ProviderAdapter

SDXL_NEGATIVE = (
    "lowres, bad anatomy, bad hands, text, error, missing fingers, extra digit, fewer digits, "
    "cropped, worst quality, low quality, normal quality, jpeg artifacts, signature, watermark, "
    "username, blurry, artist name, deformed, ugly, duplicate, morbid, mutilated, extra limbs, "
    "cloned face, gross proportions, malformed limbs, missing arms, missing legs, extra arms, "
    "extra legs, fused fingers, too many fingers, long neck"
)

# (denoise, cfg) per edit purpose; outfits need a much larger change than expressions.
EDIT_DEFAULTS = {
    Purpose.OUTFIT_EDIT: (0.82, 7.5),
    Purpose.EXPRESSION_EDIT: (0.45, 5.5),
}


def build_img2img_workflow(
    *,
    checkpoint: str,
    prompt: str,
    negative_prompt: str,
    seed: int,
    denoise: float,
    cfg: float,
    steps: int = 30,
    sampler: str = "euler_ancestral",
    input_name: str = "input.png",
) -> Dict[str, Dict[str, Any]]:
    """ComfyUI API-format graph: load checkpoint, encode prompts and image, sample, decode, save."""
    return {
        "1": {"inputs": {"ckpt_name": checkpoint}, "class_type": "CheckpointLoaderSimple"},
        "2": {"inputs": {"text": prompt, "clip": ["1", 1]}, "class_type": "CLIPTextEncode"},
        "3": {"inputs": {"text": negative_prompt, "clip": ["1", 1]}, "class_type": "CLIPTextEncode"},
        "4": {"inputs": {"image": input_name}, "class_type": "LoadImage"},
        "5": {"inputs": {"pixels": ["4", 0], "vae": ["1", 2]}, "class_type": "VAEEncode"},
        "6": {
            "inputs": {
                "seed": seed,
                "steps": steps,
                "cfg": cfg,
                "sampler_name": sampler,
                "scheduler": "normal",
                "denoise": denoise,
                "model": ["1", 0],
                "positive": ["2", 0],
                "negative": ["3", 0],
                "latent_image": ["5", 0],
            },
            "class_type": "KSampler",
        },
        "7": {"inputs": {"samples": ["6", 0], "vae": ["1", 2]}, "class_type": "VAEDecode"},
        "8": {"inputs": {"filename_prefix": "output", "images": ["7", 0]}, "class_type": "SaveImage"},
    }


class RunPodComfyClient(ProviderAdapter):
    """RunPod serverless ComfyUI worker: submit a job, poll its status.

    Completed jobs either embed the image (``type: base64``) or point at an upload
    (``type: s3_url``); only the latter goes through the asset transport.
    """

    name = "runpod"
    purposes = EDIT_PURPOSES

    def __init__(
        self,
        config: RunPodConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        self._config = config
        super().__init__(
            base_url=f"{config.api_url.rstrip('/')}/{config.endpoint_id}/",
            headers={
                "Authorization": f"Bearer {config.api_key}",
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
        denoise, cfg = EDIT_DEFAULTS.get(request.purpose, (0.55, 6.0))
        seed = style.seed if style.seed is not None else random.randint(0, 2147483646)
        workflow = build_img2img_workflow(
            checkpoint=self._config.checkpoint,
            prompt=request.prompt,
            negative_prompt=style.negative_prompt or SDXL_NEGATIVE,
            seed=seed,
            denoise=style.strength if style.strength is not None else denoise,
            cfg=style.guidance_scale if style.guidance_scale is not None else cfg,
            steps=style.steps or self._config.steps,
            sampler=style.sampler or "euler_ancestral",
        )
        return {
            "input": {
                "workflow": workflow,
                "images": [{"name": "input.png", "image": reference.to_base64()}],
            }
        }

    async def submit(self, request: GenerationRequest) -> ProviderJob:
        data = await self._post_json("run", context="RunPod submit", json=self.build_payload(request))
        job_id = data.get("id")
        if not job_id:
            raise BackendFailure("No job ID in RunPod response", provider=self.name)
        return ProviderJob(provider=self.name, job_id=str(job_id), status_url=f"status/{job_id}")

    async def poll(self, job: ProviderJob) -> Asset | None:
        data = await self._poll_json(job.status_url or f"status/{job.job_id}")
        if data is None:
            return None
        status = (data.get("status") or "").upper()

        if status == "COMPLETED":
            job.resolve(JobState.SUCCEEDED)
            return await self._extract(data.get("output"))
        if status == "FAILED":
            raise self._fail(job, JobState.FAILED, f"RunPod job failed: {data.get('error') or data}")
        if status in {"CANCELLED", "CANCELED"}:
            raise self._fail(job, JobState.CANCELED, "RunPod job cancelled")
        if status == "TIMED_OUT":
            # Backend-side timeout is a reported failure, not our local deadline.
            raise self._fail(job, JobState.FAILED, "RunPod job timed out on the worker")
        if status == "IN_PROGRESS" and job.state is JobState.SUBMITTED:
            job.mark_running()
        return None

    async def _extract(self, output: Any) -> Asset:
        if not isinstance(output, dict):
            raise BackendFailure("No image data in RunPod response", provider=self.name)

        images = output.get("images") or []
        if images and isinstance(images[0], dict):
            image = images[0]
            kind = image.get("type")
            if kind == "base64" and image.get("data"):
                return asset_from_base64(image["data"], provider=self.name)
            if kind == "s3_url" and image.get("data"):
                return await self._assets.fetch(image["data"], provider=self.name)

        # Older worker versions put a URL or bare base64 in output.message.
        message = output.get("message")
        if isinstance(message, str) and message:
            if message.startswith("http"):
                return await self._assets.fetch(message, provider=self.name)
            return asset_from_base64(message, provider=self.name)
        raise BackendFailure("No image data in RunPod response", provider=self.name)
