"""Pydantic models for requests, jobs and stored assets."""

from mediagen.schemas.models import (
    TERMINAL_STATES,
    AssetCategory,
    AssetPhase,
    GenerationMode,
    GenerationRequest,
    InputAsset,
    Job,
    JobState,
    MediaKind,
    NormalizedStatus,
    ProviderState,
    StoredAsset,
    Submission,
    new_job_id,
)

__all__ = [
    "TERMINAL_STATES",
    "AssetCategory",
    "AssetPhase",
    "GenerationMode",
    "GenerationRequest",
    "InputAsset",
    "Job",
    "JobState",
    "MediaKind",
    "NormalizedStatus",
    "ProviderState",
    "StoredAsset",
    "Submission",
    "new_job_id",
]
