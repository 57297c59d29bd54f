"""Job submission: validate, store inputs, shape the payload, call the creation endpoint."""

from __future__ import annotations

import asyncio
import logging

import httpx

from mediagen.assets import AssetStore
from mediagen.config import Settings
from mediagen.errors import CredentialError, ProtocolError, ValidationError
from mediagen.providers import ProviderAdapter, get_adapter
from mediagen.providers.http import request_json
from mediagen.schemas.models import GenerationRequest, Job, StoredAsset, Submission

logger = logging.getLogger(__name__)


class JobSubmitter:
    """Turns a GenerationRequest into a Job in ``polling`` state, or raises a typed error.

    Input assets are written before the provider call so a failed call never
    loses uploaded content. No Job escapes a failed submission.
    """

    def __init__(self, settings: Settings, asset_store: AssetStore, client: httpx.AsyncClient):
        self._settings = settings
        self._assets = asset_store
        self._client = client

    def adapter_for(self, request: GenerationRequest) -> ProviderAdapter:
        return get_adapter(request.kind, request.provider_id, strict=self._settings.strict_parameters)

    def _url(self, path: str) -> str:
        return f"{self._settings.provider_base_url.rstrip('/')}{path}"

    def _image_refs(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
        stored: list[StoredAsset],
    ) -> list[str]:
        if adapter.asset_reference == "inline":
            return [asset.to_data_url() for asset in request.input_assets]
        return [self._assets.resolve(asset) for asset in stored]

    async def submit(self, request: GenerationRequest) -> tuple[Job, Submission]:
        adapter = self.adapter_for(request)
        adapter.validate(request)
        if len(request.input_assets) > self._settings.max_input_assets:
            raise ValidationError(
                f"At most {self._settings.max_input_assets} input images are accepted"
            )
        for asset in request.input_assets:
            if len(asset.data) > self._settings.max_upload_bytes:
                raise ValidationError(
                    f"Input image exceeds {self._settings.max_upload_bytes // (1024 * 1024)}MB"
                )
        credential = request.credential.get_secret_value().strip()
        if not credential:
            raise CredentialError(f"No API key supplied for provider '{request.provider_id}'")

        job = Job(kind=request.kind, provider_id=request.provider_id, sub_model=request.sub_model)
        job.start_submitting()

        stored = [
            await asyncio.to_thread(self._assets.store_input, asset)
            for asset in request.input_assets
        ]
        job.input_asset_refs = [asset.relative_path for asset in stored]

        payload = adapter.build_payload(request, self._image_refs(adapter, request, stored))
        logger.info(
            "Submitting %s job %s to %s/%s (%d input images)",
            request.kind.value, job.id, request.provider_id, request.sub_model, len(stored),
        )
        raw = await request_json(
            self._client,
            "POST",
            self._url(adapter.submit_path),
            credential,
            payload=payload,
            timeout=self._settings.request_timeout_seconds,
        )
        submission = adapter.parse_submission(raw)
        if submission.correlation_id is None and submission.result_url:
            # Synchronous provider: no task to poll, the result is already here
            submission = Submission(correlation_id=f"sync-{job.id}", result_url=submission.result_url)
        if not submission.correlation_id:
            raise ProtocolError("Provider accepted the request but returned no correlation id")

        job.start_polling(submission.correlation_id)
        logger.info("Job %s accepted by provider as %s", job.id, job.correlation_id)
        return job, submission
