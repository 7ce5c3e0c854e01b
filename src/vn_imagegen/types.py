from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .errors import GenerationError


class Purpose(str, Enum):
    """What a generated image is for."""

    PORTRAIT = "portrait"
    EXPRESSION_EDIT = "expression_edit"
    OUTFIT_EDIT = "outfit_edit"
    BACKGROUND = "background"
    KEY_ART = "key_art"

    @property
    def is_edit(self) -> bool:
        return self in EDIT_PURPOSES


EDIT_PURPOSES = frozenset({Purpose.EXPRESSION_EDIT, Purpose.OUTFIT_EDIT})
TEXT_TO_IMAGE_PURPOSES = frozenset({Purpose.PORTRAIT, Purpose.BACKGROUND, Purpose.KEY_ART})


class Asset(BaseModel):
    """Self-describing in-memory image: raw bytes plus their media type."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    media_type: str = "image/png"

    @classmethod
    def from_base64(cls, payload: str, media_type: str = "image/png") -> "Asset":
        return cls(data=base64.b64decode(payload, validate=True), media_type=media_type)

    @classmethod
    def from_data_uri(cls, uri: str) -> "Asset":
        """Decode a ``data:<type>;base64,<payload>`` URI."""
        header, sep, payload = uri.partition(",")
        if not sep or not header.startswith("data:") or not header.endswith(";base64"):
            raise ValueError("Not a base64 data URI")
        media_type = header[len("data:") : -len(";base64")] or "image/png"
        try:
            return cls.from_base64(payload, media_type)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 payload in data URI: {exc}") from exc

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.media_type};base64,{self.to_base64()}"

    def __repr__(self) -> str:
        return f"Asset(media_type={self.media_type!r}, size={len(self.data)})"


class StyleParameters(BaseModel):
    """Optional rendering knobs; adapters fill in their own defaults for unset fields."""

    model_config = ConfigDict(frozen=True)

    width: int | None = Field(default=None, ge=64, le=4096)
    height: int | None = Field(default=None, ge=64, le=4096)
    strength: float | None = Field(default=None, ge=0.0, le=1.0, description="Denoise strength for edits")
    guidance_scale: float | None = Field(default=None, ge=0.0, le=30.0)
    sampler: str | None = None
    steps: int | None = Field(default=None, ge=1, le=150)
    negative_prompt: str | None = None
    seed: int | None = Field(default=None, ge=0)


class GenerationRequest(BaseModel):
    """Immutable description of one image to generate or edit."""

    model_config = ConfigDict(frozen=True)

    purpose: Purpose
    prompt: str = Field(..., min_length=1, description="Final prompt text sent to the backend")
    reference_image: Asset | None = Field(
        default=None, description="Source image for edit purposes or style reference"
    )
    style: StyleParameters = Field(default_factory=StyleParameters)


class JobState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.SUBMITTED, JobState.RUNNING)


@dataclass(slots=True)
class ProviderJob:
    """Adapter-owned handle for an in-flight backend request."""

    provider: str
    job_id: str
    state: JobState = JobState.SUBMITTED
    status_url: str | None = None
    result_url: str | None = None
    polls: int = 0
    detail: dict[str, object] = field(default_factory=dict)

    def mark_running(self) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Job {self.job_id} already resolved as {self.state.value}")
        self.state = JobState.RUNNING

    def resolve(self, state: JobState) -> None:
        """Move the job to a terminal state; a job resolves exactly once."""
        if not state.is_terminal:
            raise ValueError(f"{state.value} is not a terminal state")
        if self.state.is_terminal:
            raise RuntimeError(
                f"Job {self.job_id} already resolved as {self.state.value}, cannot become {state.value}"
            )
        self.state = state


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of one request: an asset from a provider, or a typed failure."""

    asset: Asset | None = None
    provider_used: str | None = None
    failure: "GenerationError | None" = None

    def __post_init__(self) -> None:
        if (self.asset is None) == (self.failure is None):
            raise ValueError("GenerationResult needs exactly one of asset or failure")
        if self.asset is not None and not self.provider_used:
            raise ValueError("A successful GenerationResult must name the provider used")

    @classmethod
    def success(cls, asset: Asset, provider_used: str) -> "GenerationResult":
        return cls(asset=asset, provider_used=provider_used)

    @classmethod
    def failed(cls, failure: "GenerationError") -> "GenerationResult":
        return cls(failure=failure)

    @property
    def ok(self) -> bool:
        return self.asset is not None
