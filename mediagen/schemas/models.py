"""Pydantic models shared by adapters, the asset store and the job lifecycle."""

from __future__ import annotations

import base64
import binascii
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from mediagen.errors import InvalidTransition, ValidationError

# Content types accepted for input images, with the extension they are stored under
SUPPORTED_IMAGE_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class GenerationMode(str, Enum):
    TEXT = "text"  # text-to-image / text-to-video; input assets optional
    IMAGE = "image"  # image-to-video; first frame mandatory


class AssetCategory(str, Enum):
    IMAGES = "images"
    VIDEOS = "videos"


class AssetPhase(str, Enum):
    INPUT = "input"
    RESULTS = "results"


class InputAsset(BaseModel):
    """One binary image payload supplied with a request."""

    data: bytes
    content_type: str = "image/png"

    @field_validator("content_type")
    @classmethod
    def _supported_type(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in SUPPORTED_IMAGE_TYPES:
            raise ValueError(f"Unsupported input asset type: {v}")
        return v

    @property
    def extension(self) -> str:
        return SUPPORTED_IMAGE_TYPES[self.content_type]

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    @classmethod
    def from_data_url(cls, value: str) -> "InputAsset":
        """Decode ``data:<mime>;base64,<payload>`` or bare base64 (assumed PNG)."""
        content_type = "image/png"
        payload = value.strip()
        if payload.startswith("data:"):
            header, sep, payload = payload.partition(",")
            if not sep or ";base64" not in header:
                raise ValidationError("Input asset must be a base64 data URL")
            content_type = header[len("data:"):].split(";", 1)[0] or content_type
        if content_type.lower() not in SUPPORTED_IMAGE_TYPES:
            raise ValidationError(f"Unsupported input asset type: {content_type}")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Invalid base64 input asset: {e}") from e
        if not data:
            raise ValidationError("Input asset is empty")
        return cls(data=data, content_type=content_type)


class GenerationRequest(BaseModel):
    """Immutable description of one generation to submit."""

    model_config = ConfigDict(frozen=True)

    kind: MediaKind
    provider_id: str
    sub_model: str
    prompt: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    mode: GenerationMode = GenerationMode.TEXT
    input_assets: list[InputAsset] = Field(default_factory=list)
    credential: SecretStr = SecretStr("")

    def parameters_for_record(self) -> dict[str, Any]:
        """Parameters safe to persist (the credential is never part of them)."""
        return {**self.parameters, "mode": self.mode.value}


class ProviderState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class NormalizedStatus(BaseModel):
    """Provider status envelope reduced to what the poller needs."""

    state: ProviderState
    progress_percent: int | None = None  # None = provider gave no progress
    result_url: str | None = None
    failure_message: str | None = None


class Submission(BaseModel):
    """Parsed creation response: a task id, or a result URL for synchronous providers."""

    correlation_id: str | None = None
    result_url: str | None = None


class StoredAsset(BaseModel):
    """A write-once file in the asset store."""

    model_config = ConfigDict(frozen=True)

    category: AssetCategory
    phase: AssetPhase
    year: int
    month: int
    name: str

    @property
    def relative_path(self) -> str:
        return f"{self.category.value}/{self.phase.value}/{self.year:04d}/{self.month:02d}/{self.name}"


class JobState(str, Enum):
    CREATED = "created"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})

_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.CREATED: frozenset({JobState.SUBMITTING, JobState.CANCELLED}),
    JobState.SUBMITTING: frozenset({JobState.POLLING, JobState.CANCELLED}),
    JobState.POLLING: frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


class Job(BaseModel):
    """In-memory view of one submission, driven through the state machine."""

    id: str = Field(default_factory=new_job_id)
    kind: MediaKind
    provider_id: str
    sub_model: str
    correlation_id: str | None = None
    status: JobState = JobState.CREATED
    progress_percent: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    input_asset_refs: list[str] = Field(default_factory=list)
    output_asset_ref: str | None = None
    result_url: str | None = None
    failure_reason: str | None = None
    materialization_warning: str | None = None
    last_tick: int = -1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def transition(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Job {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target
        self.updated_at = _now()

    def start_submitting(self) -> None:
        self.transition(JobState.SUBMITTING)

    def start_polling(self, correlation_id: str) -> None:
        if not correlation_id:
            raise InvalidTransition(f"Job {self.id}: polling requires a correlation id")
        self.transition(JobState.POLLING)
        self.correlation_id = correlation_id

    def record_progress(self, tick: int, progress: int | None) -> None:
        """Apply a pending tick. Progress never goes backwards; None keeps the last value."""
        self.last_tick = tick
        if progress is not None:
            self.progress_percent = max(self.progress_percent, min(max(progress, 0), 100))
        self.updated_at = _now()

    def succeed(
        self,
        tick: int,
        result_url: str,
        output_asset_ref: str | None,
        warning: str | None = None,
    ) -> None:
        if output_asset_ref is None and not warning:
            raise InvalidTransition(
                f"Job {self.id}: success without a stored asset needs a materialization warning"
            )
        self.transition(JobState.SUCCEEDED)
        self.last_tick = tick
        self.progress_percent = 100
        self.result_url = result_url
        self.output_asset_ref = output_asset_ref
        self.materialization_warning = None if output_asset_ref else warning

    def fail(self, reason: str, tick: int | None = None) -> None:
        self.transition(JobState.FAILED)
        if tick is not None:
            self.last_tick = tick
        self.failure_reason = reason or "generation failed"

    def cancel(self) -> None:
        self.transition(JobState.CANCELLED)

    def attach_output(self, output_asset_ref: str) -> None:
        """Fill in the stored result of a succeeded job whose first materialization failed."""
        if self.status != JobState.SUCCEEDED:
            raise InvalidTransition(f"Job {self.id}: only succeeded jobs carry an output asset")
        self.output_asset_ref = output_asset_ref
        self.materialization_warning = None
        self.updated_at = _now()
