"""Persisted job record: the projection of a Job shared with the history layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from mediagen.schemas.models import GenerationRequest, Job, JobState, MediaKind


class RecordStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


# A cancelled poll leaves the provider task running, so the record status stays
# "processing" and the provider can still be asked about it. The record's
# ``cancelled`` flag keeps the job itself terminal.
_STATUS_PROJECTION = {
    JobState.CREATED: RecordStatus.PENDING,
    JobState.SUBMITTING: RecordStatus.PENDING,
    JobState.POLLING: RecordStatus.PROCESSING,
    JobState.CANCELLED: RecordStatus.PROCESSING,
    JobState.SUCCEEDED: RecordStatus.SUCCESS,
    JobState.FAILED: RecordStatus.FAILED,
}


def record_status(state: JobState) -> RecordStatus:
    return _STATUS_PROJECTION[state]


class JobRecord(BaseModel):
    """Generation job as persisted. Asset references are filenames/paths, never full URLs."""

    job_id: str
    kind: MediaKind
    prompt: str
    model: str
    sub_model: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    input_asset_names: list[str] = Field(default_factory=list)
    result_asset_name: str | None = None
    result_url: str | None = None
    correlation_id: str
    status: RecordStatus = RecordStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    failure_reason: str | None = None
    materialization_warning: str | None = None
    cancelled: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_job(cls, job: Job, request: GenerationRequest) -> "JobRecord":
        if not job.correlation_id:
            raise ValueError(f"Job {job.id} has no correlation id; submitted jobs only")
        record = cls(
            job_id=job.id,
            kind=job.kind,
            prompt=request.prompt,
            model=request.provider_id,
            sub_model=request.sub_model,
            parameters=request.parameters_for_record(),
            correlation_id=job.correlation_id,
            created_at=job.created_at,
        )
        record.apply(job)
        return record

    def apply(self, job: Job) -> None:
        """Copy the mutable lifecycle fields of a Job onto this record."""
        self.status = record_status(job.status)
        self.progress = job.progress_percent
        self.input_asset_names = list(job.input_asset_refs)
        self.result_asset_name = job.output_asset_ref
        self.result_url = job.result_url
        self.failure_reason = job.failure_reason
        self.materialization_warning = job.materialization_warning
        self.cancelled = self.cancelled or job.status == JobState.CANCELLED
        self.updated_at = job.updated_at

    def to_job(self) -> Job:
        """Rebuild the Job this record projects. A cancelled record stays cancelled."""
        state = JobState.CANCELLED if self.cancelled else {
            RecordStatus.PENDING: JobState.CREATED,
            RecordStatus.PROCESSING: JobState.POLLING,
            RecordStatus.SUCCESS: JobState.SUCCEEDED,
            RecordStatus.FAILED: JobState.FAILED,
        }[self.status]
        return Job(
            id=self.job_id,
            kind=self.kind,
            provider_id=self.model,
            sub_model=self.sub_model,
            correlation_id=self.correlation_id,
            status=state,
            progress_percent=self.progress,
            created_at=self.created_at,
            updated_at=self.updated_at,
            input_asset_refs=list(self.input_asset_names),
            output_asset_ref=self.result_asset_name,
            result_url=self.result_url,
            failure_reason=self.failure_reason,
            materialization_warning=self.materialization_warning,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class HistoryPage(BaseModel):
    """Newest-first page of job records."""

    records: list[JobRecord] = Field(default_factory=list)
    pagination: Pagination
