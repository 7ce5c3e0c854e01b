from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .types import Purpose


class ReplicateConfig(BaseModel):
    """Settings for the Replicate predictions API (create-then-poll)."""

    api_token: str = Field(..., description="Replicate API token")
    api_url: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL for the Replicate REST API",
    )
    model_version: str = Field(
        default="057e2276ac5dcd8d1575dc37b131f903df9c10c41aed53d47cd7d4f068c19fa5",
        description="Versioned model id used for text-to-image (Animagine XL 4.0)",
    )
    poll_interval_seconds: float = Field(default=2.0, gt=0.0, le=30.0)
    deadline_seconds: float = Field(
        default=90.0,
        gt=0.0,
        le=600.0,
        description="Wall-clock budget for one adapter invocation, polling included",
    )


class NovelAIConfig(BaseModel):
    """Settings for the NovelAI image endpoint (single synchronous call)."""

    api_key: str = Field(..., description="NovelAI API key")
    api_url: str = Field(default="https://image.novelai.net")
    model: str = Field(default="nai-diffusion-4-curated-preview")
    deadline_seconds: float = Field(default=60.0, gt=0.0, le=600.0)


class GrokConfig(BaseModel):
    """Settings for the xAI image edits endpoint (single synchronous call)."""

    api_key: str = Field(..., description="xAI API key")
    api_url: str = Field(default="https://api.x.ai/v1")
    model: str = Field(default="grok-imagine-image")
    response_format: str = Field(
        default="b64_json",
        pattern="^(b64_json|url)$",
        description="Ask for inline base64 data or a downloadable URL",
    )
    deadline_seconds: float = Field(default=90.0, gt=0.0, le=600.0)


class GeminiConfig(BaseModel):
    """Settings for Gemini native image generation (generateContent, single call)."""

    api_key: str = Field(..., description="Google AI Studio API key")
    api_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    models: tuple[str, ...] = Field(
        default=(
            "gemini-3-pro-image-preview",
            "gemini-2.5-flash-image",
            "gemini-2.0-flash-exp-image-generation",
        ),
        min_length=1,
        description="Image-capable models, tried in order until one returns an image",
    )
    deadline_seconds: float = Field(default=60.0, gt=0.0, le=600.0)


class StabilityConfig(BaseModel):
    """Settings for Stability AI's hosted background removal."""

    api_key: str = Field(..., description="Stability AI API key")
    api_url: str = Field(default="https://api.stability.ai/v2beta")
    timeout_seconds: float = Field(default=60.0, gt=0.0, le=300.0)


class DashScopeConfig(BaseModel):
    """Settings for DashScope image-to-image async tasks."""

    api_key: str = Field(..., description="DashScope API key")
    api_url: str = Field(default="https://dashscope-intl.aliyuncs.com/api/v1")
    model: str = Field(default="wan2.5-i2i-preview")
    poll_interval_seconds: float = Field(default=3.0, gt=0.0, le=30.0)
    deadline_seconds: float = Field(default=90.0, gt=0.0, le=600.0)


class FalConfig(BaseModel):
    """Settings for the fal.ai queue API."""

    api_key: str = Field(..., description="fal.ai key")
    queue_url: str = Field(
        default="https://queue.fal.run/fal-ai/wan-25-preview",
        description="Queue base URL of the model app, without the sub-path",
    )
    sub_path: str = Field(default="image-to-image")
    enable_safety_checker: bool = Field(default=False)
    image_width: int = Field(default=832, ge=64, le=4096)
    image_height: int = Field(default=1216, ge=64, le=4096)
    poll_interval_seconds: float = Field(default=3.0, gt=0.0, le=30.0)
    deadline_seconds: float = Field(default=120.0, gt=0.0, le=600.0)


class RunPodConfig(BaseModel):
    """Settings for a RunPod serverless ComfyUI endpoint."""

    api_key: str = Field(..., description="RunPod API key")
    endpoint_id: str = Field(..., description="Serverless endpoint id")
    api_url: str = Field(default="https://api.runpod.ai/v2")
    checkpoint: str = Field(
        default="JANKUTrainedNoobaiRouwei_v69.safetensors",
        description="Checkpoint file loaded by the ComfyUI workflow",
    )
    steps: int = Field(default=30, ge=1, le=150)
    poll_interval_seconds: float = Field(default=3.0, gt=0.0, le=30.0)
    deadline_seconds: float = Field(default=120.0, gt=0.0, le=600.0)


class RetryPolicy(BaseModel):
    """Rate-limit retry policy applied around every adapter invocation."""

    max_attempts: int = Field(default=3, ge=1, le=20)
    backoff_base_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Attempt n waits backoff_base_seconds * n before retrying",
    )


class MattingSettings(BaseModel):
    """Tunable constants of the edge-based background removal."""

    edge_stride: int = Field(default=2, ge=1, description="Sample every n-th border pixel")
    achromatic_spread: int = Field(
        default=35, ge=0, le=255, description="Edge samples with channel spread below this are achromatic"
    )
    chroma_green_min: int = Field(default=150, ge=0, le=255)
    chroma_other_max: int = Field(default=120, ge=0, le=255)
    dark_brightness: float = Field(default=50.0, ge=0.0, le=255.0)
    chroma_threshold: float = Field(default=80.0, ge=0.0)
    bright_threshold: float = Field(default=70.0, ge=0.0)
    dark_threshold: float = Field(default=110.0, ge=0.0)
    chromatic_threshold: float = Field(default=70.0, ge=0.0)
    feather: float = Field(default=15.0, gt=0.0, description="Color-distance width of the alpha ramp")
    low_saturation_abs: int = Field(default=30, ge=0, le=255)
    low_saturation_rel: float = Field(default=0.18, ge=0.0, le=1.0)
    near_black_max: int = Field(default=10, ge=0, le=255)
    neighborhood_radius: int = Field(default=3, ge=0, description="3 gives a 7x7 vote window")
    majority_fraction: float = Field(default=0.65, ge=0.0, le=1.0)
    min_background_fraction: float = Field(default=0.05, ge=0.0, le=1.0)
    max_background_fraction: float = Field(default=0.92, ge=0.0, le=1.0)
    sprite_purposes: frozenset[Purpose] = Field(
        default=frozenset({Purpose.PORTRAIT}),
        description="Purposes whose generated images get their background removed",
    )


class AppConfig(BaseModel):
    """Top-level configuration consumed by the provider registry and pipeline."""

    replicate: ReplicateConfig | None = None
    novelai: NovelAIConfig | None = None
    grok: GrokConfig | None = None
    gemini: GeminiConfig | None = None
    dashscope: DashScopeConfig | None = None
    fal: FalConfig | None = None
    runpod: RunPodConfig | None = None
    stability: StabilityConfig | None = Field(
        default=None, description="Hosted background removal, tried before the local matting engine"
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    matting: MattingSettings = Field(default_factory=MattingSettings)
    provider_order: tuple[str, ...] = Field(
        default=(),
        description="Optional explicit provider priority; unlisted providers keep their default rank after these",
    )

    def configured_providers(self) -> list[str]:
        names = ("replicate", "novelai", "grok", "gemini", "dashscope", "fal", "runpod")
        return [name for name in names if getattr(self, name) is not None]


def _bool_from_env(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _float_from_env(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value: {value}") from exc


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value: {value}") from exc


def _drop_unset(data: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in data.items() if value is not None}


def load_config(dotenv_path: str | Path | None = None) -> AppConfig:
    """
    Load configuration from environment variables (optionally seeded by a .env file).

    A backend section is only populated when its credentials are present, so the
    set of configured backends directly drives the adapter chains built from it.

    Raises
    ------
    RuntimeError
        If a value is malformed or out of bounds.
    """
    env_path = Path(dotenv_path) if dotenv_path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    env = os.environ

    replicate_data: dict[str, object] | None = None
    if env.get("REPLICATE_API_TOKEN"):
        replicate_data = _drop_unset(
            {
                "api_token": env["REPLICATE_API_TOKEN"],
                "api_url": env.get("REPLICATE_API_URL"),
                "model_version": env.get("REPLICATE_MODEL_VERSION"),
                "poll_interval_seconds": _float_from_env(env.get("REPLICATE_POLL_INTERVAL"), 2.0),
                "deadline_seconds": _float_from_env(env.get("REPLICATE_DEADLINE"), 90.0),
            }
        )

    novelai_data: dict[str, object] | None = None
    if env.get("NOVELAI_API_KEY"):
        novelai_data = _drop_unset(
            {
                "api_key": env["NOVELAI_API_KEY"],
                "api_url": env.get("NOVELAI_API_URL"),
                "model": env.get("NOVELAI_MODEL"),
                "deadline_seconds": _float_from_env(env.get("NOVELAI_DEADLINE"), 60.0),
            }
        )

    grok_data: dict[str, object] | None = None
    if env.get("XAI_API_KEY"):
        grok_data = _drop_unset(
            {
                "api_key": env["XAI_API_KEY"],
                "api_url": env.get("XAI_API_URL"),
                "model": env.get("XAI_IMAGE_MODEL"),
                "response_format": env.get("XAI_RESPONSE_FORMAT"),
                "deadline_seconds": _float_from_env(env.get("XAI_DEADLINE"), 90.0),
            }
        )

    gemini_data: dict[str, object] | None = None
    if env.get("GEMINI_API_KEY"):
        models = env.get("GEMINI_IMAGE_MODELS")
        gemini_data = _drop_unset(
            {
                "api_key": env["GEMINI_API_KEY"],
                "api_url": env.get("GEMINI_API_URL"),
                "models": tuple(m.strip() for m in models.split(",") if m.strip()) if models else None,
                "deadline_seconds": _float_from_env(env.get("GEMINI_DEADLINE"), 60.0),
            }
        )

    stability_data: dict[str, object] | None = None
    if env.get("STABILITY_API_KEY"):
        stability_data = _drop_unset(
            {
                "api_key": env["STABILITY_API_KEY"],
                "api_url": env.get("STABILITY_API_URL"),
                "timeout_seconds": _float_from_env(env.get("STABILITY_TIMEOUT"), 60.0),
            }
        )

    dashscope_data: dict[str, object] | None = None
    if env.get("DASHSCOPE_API_KEY"):
        dashscope_data = _drop_unset(
            {
                "api_key": env["DASHSCOPE_API_KEY"],
                "api_url": env.get("DASHSCOPE_API_URL"),
                "model": env.get("DASHSCOPE_MODEL"),
                "poll_interval_seconds": _float_from_env(env.get("DASHSCOPE_POLL_INTERVAL"), 3.0),
                "deadline_seconds": _float_from_env(env.get("DASHSCOPE_DEADLINE"), 90.0),
            }
        )

    fal_data: dict[str, object] | None = None
    if env.get("FAL_KEY"):
        fal_data = _drop_unset(
            {
                "api_key": env["FAL_KEY"],
                "queue_url": env.get("FAL_QUEUE_URL"),
                "enable_safety_checker": _bool_from_env(env.get("FAL_ENABLE_SAFETY_CHECKER"), False),
                "poll_interval_seconds": _float_from_env(env.get("FAL_POLL_INTERVAL"), 3.0),
                "deadline_seconds": _float_from_env(env.get("FAL_DEADLINE"), 120.0),
            }
        )

    # RunPod needs both the key and the endpoint id to be usable.
    runpod_data: dict[str, object] | None = None
    if env.get("RUNPOD_API_KEY") and env.get("RUNPOD_ENDPOINT_ID"):
        runpod_data = _drop_unset(
            {
                "api_key": env["RUNPOD_API_KEY"],
                "endpoint_id": env["RUNPOD_ENDPOINT_ID"],
                "checkpoint": env.get("RUNPOD_CHECKPOINT"),
                "steps": _int_from_env(env.get("RUNPOD_STEPS"), 30),
                "poll_interval_seconds": _float_from_env(env.get("RUNPOD_POLL_INTERVAL"), 3.0),
                "deadline_seconds": _float_from_env(env.get("RUNPOD_DEADLINE"), 120.0),
            }
        )

    order = env.get("PROVIDER_ORDER", "")
    data = {
        "replicate": replicate_data,
        "novelai": novelai_data,
        "grok": grok_data,
        "gemini": gemini_data,
        "dashscope": dashscope_data,
        "fal": fal_data,
        "runpod": runpod_data,
        "stability": stability_data,
        "retry": {
            "max_attempts": _int_from_env(env.get("RETRY_MAX_ATTEMPTS"), 3),
            "backoff_base_seconds": _float_from_env(env.get("RETRY_BACKOFF_SECONDS"), 2.0),
        },
        "matting": _drop_unset(
            {
                "chroma_threshold": _float_from_env(env.get("MATTING_CHROMA_THRESHOLD"), 80.0),
                "bright_threshold": _float_from_env(env.get("MATTING_BRIGHT_THRESHOLD"), 70.0),
                "dark_threshold": _float_from_env(env.get("MATTING_DARK_THRESHOLD"), 110.0),
                "chromatic_threshold": _float_from_env(env.get("MATTING_CHROMATIC_THRESHOLD"), 70.0),
                "feather": _float_from_env(env.get("MATTING_FEATHER"), 15.0),
            }
        ),
        "provider_order": tuple(name.strip() for name in order.split(",") if name.strip()),
    }

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        invalid = {"/".join(str(part) for part in err["loc"]) for err in exc.errors()}
        invalid_str = ", ".join(sorted(invalid))
        raise RuntimeError(f"Invalid configuration values: {invalid_str}") from exc
