"""Generation API routes: submit, re-check, inspect, cancel and stream jobs.

POST   /api/images/generate            submit an image job (202)
POST   /api/videos/generate            submit a video job (202)
POST   /api/{images|videos}/status/{task_id}
GET    /api/{images|videos}/records/{job_id}
GET    /api/jobs/{job_id}              live job snapshot
DELETE /api/jobs/{job_id}              stop polling
GET    /api/jobs/{job_id}/events       server-sent events until terminal
POST   /api/jobs/{job_id}/materialize  retry storing a provider result
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mediagen.errors import (
    CredentialError,
    GenerationError,
    InvalidTransition,
    JobNotFound,
    MaterializationError,
    ProtocolError,
    ProviderReportedFailure,
    TransientNetworkError,
    ValidationError,
)
from mediagen.jobs import JobManager, JobRecord
from mediagen.schemas.models import (
    GenerationMode,
    GenerationRequest,
    InputAsset,
    Job,
    MediaKind,
    NormalizedStatus,
)

logger = logging.getLogger(__name__)
router = APIRouter()

_HTTP_STATUS = {
    ValidationError: 400,
    CredentialError: 401,
    JobNotFound: 404,
    InvalidTransition: 409,
    ProviderReportedFailure: 422,
    ProtocolError: 502,
    MaterializationError: 502,
    TransientNetworkError: 503,
}

_KINDS = {"images": MediaKind.IMAGE, "videos": MediaKind.VIDEO}


def to_http_error(e: GenerationError) -> HTTPException:
    """Map a lifecycle error onto the HTTP status the API reports for it."""
    for error_cls, code in _HTTP_STATUS.items():
        if isinstance(e, error_cls):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def get_manager(request: Request) -> JobManager:
    return request.app.state.manager


def media_kind(collection: str) -> MediaKind:
    kind = _KINDS.get(collection)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {collection}")
    return kind


# ---------------------------------------------------------------------------
# Request / response models (camelCase accepted for browser clients)
# ---------------------------------------------------------------------------

class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageGenerateRequest(_ApiModel):
    api_key: str = ""
    prompt: str
    model: str = "nano-banana"
    sub_model: Optional[str] = None
    aspect_ratio: Optional[str] = "16:9"
    style: Optional[str] = None
    images: list[str] = Field(default_factory=list, description="Base64 data URLs of reference images")


class VideoGenerateRequest(_ApiModel):
    api_key: str = ""
    prompt: str
    model: str = "sora2"
    sub_model: Optional[str] = None
    mode: GenerationMode = GenerationMode.TEXT
    aspect_ratio: Optional[str] = "16:9"
    duration: Optional[Union[str, int]] = None
    hd: Optional[bool] = None
    watermark: Optional[bool] = None
    enhance_prompt: Optional[bool] = None
    images: list[str] = Field(default_factory=list, description="First frame, optional last frame")


class StatusCheckRequest(_ApiModel):
    api_key: str = ""


class GenerateResponse(BaseModel):
    job_id: str
    task_id: str
    status: str


class StatusCheckResponse(BaseModel):
    record: JobRecord
    provider_status: NormalizedStatus


_DEFAULT_SUB_MODELS = {"sora2": "sora-2", "veo3": "veo3.1"}


def _decode_images(images: list[str]) -> list[InputAsset]:
    return [InputAsset.from_data_url(value) for value in images]


async def _submit(manager: JobManager, request: GenerationRequest) -> GenerateResponse:
    try:
        handle = await manager.submit(request)
    except GenerationError as e:
        logger.info("Submission to %s rejected: %s", request.provider_id, e)
        raise to_http_error(e) from e
    record = manager.record(handle.id)
    return GenerateResponse(job_id=handle.id, task_id=record.correlation_id, status=record.status.value)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@router.post("/images/generate", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_image(body: ImageGenerateRequest, request: Request):
    """Submit a text-to-image (or reference-image) job and start polling it."""
    try:
        assets = _decode_images(body.images)
        generation = GenerationRequest(
            kind=MediaKind.IMAGE,
            provider_id=body.model,
            sub_model=body.sub_model or body.model,
            prompt=body.prompt,
            parameters={"aspect_ratio": body.aspect_ratio, "style": body.style},
            mode=GenerationMode.IMAGE if assets else GenerationMode.TEXT,
            input_assets=assets,
            credential=body.api_key,
        )
    except ValidationError as e:
        raise to_http_error(e) from e
    return await _submit(get_manager(request), generation)


@router.post("/videos/generate", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_video(body: VideoGenerateRequest, request: Request):
    """Submit a text-to-video or image-to-video job and start polling it."""
    try:
        assets = _decode_images(body.images)
        generation = GenerationRequest(
            kind=MediaKind.VIDEO,
            provider_id=body.model,
            sub_model=body.sub_model or _DEFAULT_SUB_MODELS.get(body.model, body.model),
            prompt=body.prompt,
            parameters={
                "aspect_ratio": body.aspect_ratio,
                "duration": body.duration,
                "hd": body.hd,
                "watermark": body.watermark,
                "enhance_prompt": body.enhance_prompt,
            },
            mode=body.mode,
            input_assets=assets,
            credential=body.api_key,
        )
    except ValidationError as e:
        raise to_http_error(e) from e
    return await _submit(get_manager(request), generation)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

@router.post("/{collection}/status/{task_id}", response_model=StatusCheckResponse)
async def check_status(collection: str, task_id: str, body: StatusCheckRequest, request: Request):
    """Poll the provider once for a task and fold the answer into its record."""
    kind = media_kind(collection)
    try:
        record, provider_status = await get_manager(request).check_status(kind, task_id, body.api_key)
    except GenerationError as e:
        raise to_http_error(e) from e
    return StatusCheckResponse(record=record, provider_status=provider_status)


@router.get("/{collection}/records/{job_id}", response_model=JobRecord)
async def get_record(collection: str, job_id: str, request: Request):
    """Fetch one persisted record."""
    kind = media_kind(collection)
    try:
        record = get_manager(request).record(job_id)
    except JobNotFound as e:
        raise to_http_error(e) from e
    if record.kind != kind:
        raise HTTPException(status_code=404, detail=f"No {kind.value} record {job_id}")
    return record


# ---------------------------------------------------------------------------
# Live jobs
# ---------------------------------------------------------------------------

@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str, request: Request):
    """Current snapshot of a job; finished jobs are read from their record."""
    try:
        return get_manager(request).get(job_id)
    except JobNotFound as e:
        raise to_http_error(e) from e


@router.delete("/jobs/{job_id}", response_model=Job)
async def cancel_job(job_id: str, request: Request):
    """Stop polling. The provider task itself keeps running."""
    try:
        return get_manager(request).cancel(job_id)
    except GenerationError as e:
        raise to_http_error(e) from e


@router.get("/jobs/{job_id}/events")
async def job_events(job_id: str, request: Request):
    """Server-sent events: one ``job`` event per change, ending with the terminal snapshot."""
    manager = get_manager(request)
    try:
        manager.get(job_id)
    except JobNotFound as e:
        raise to_http_error(e) from e

    async def _stream():
        async for snapshot in manager.subscribe(job_id):
            yield f"event: job\ndata: {snapshot.model_dump_json()}\n\n"

    return StreamingResponse(
        _stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/jobs/{job_id}/materialize", response_model=Job)
async def materialize_job(job_id: str, request: Request):
    """Retry storing the result of a succeeded job that carries a materialization warning."""
    try:
        return await get_manager(request).retry_materialization(job_id)
    except GenerationError as e:
        raise to_http_error(e) from e
