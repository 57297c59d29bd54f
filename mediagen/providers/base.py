"""Provider adapter protocol and the shaping/normalizing logic shared by all variants."""

from __future__ import annotations

import logging
import re
from typing import Any, Literal, Protocol

from mediagen.errors import ProtocolError, ValidationError
from mediagen.schemas.models import (
    AssetCategory,
    GenerationMode,
    GenerationRequest,
    MediaKind,
    NormalizedStatus,
    ProviderState,
    Submission,
)

logger = logging.getLogger(__name__)

AssetReference = Literal["url", "inline"]

# Provider status vocabularies, compared upper-cased
_SUCCEEDED = {"SUCCESS", "SUCCEEDED", "SUCCEED", "COMPLETED", "COMPLETE", "DONE"}
_FAILED = {"FAILURE", "FAILED", "FAIL", "ERROR", "CANCELLED", "CANCELED"}
_PENDING = {
    "NOT_START", "NOT_STARTED", "SUBMITTED", "QUEUED", "PENDING",
    "IN_PROGRESS", "PROCESSING", "RUNNING", "STARTED",
}

_PROGRESS_RE = re.compile(r"(\d{1,3})\s*%")
_WHITESPACE_RE = re.compile(r"\s+")


class ProviderAdapter(Protocol):
    """Translation layer between generic requests and one provider's wire format."""

    kind: MediaKind
    provider_id: str
    submit_path: str
    asset_reference: AssetReference
    result_category: AssetCategory

    def validate(self, request: GenerationRequest) -> None:
        """Raise ValidationError if the request cannot be sent to this provider."""
        ...

    def build_payload(self, request: GenerationRequest, image_refs: list[str]) -> dict[str, Any]:
        """Return the JSON body for the creation call. Pure; never touches the network."""
        ...

    def parse_submission(self, raw: Any) -> Submission:
        """Extract the correlation id (or a synchronous result URL) from a creation response."""
        ...

    def parse_status(self, raw: Any) -> NormalizedStatus:
        """Normalize a status envelope; raise ProtocolError on unrecognized shapes."""
        ...

    def status_path(self, correlation_id: str) -> str:
        ...


def parse_progress(value: Any) -> int | None:
    """Parse ``"42%"``, ``"42"`` or ``42`` into 0..100. Absent or unparseable gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0, min(100, int(value)))
    if isinstance(value, str):
        text = value.strip()
        m = _PROGRESS_RE.search(text)
        if m:
            return max(0, min(100, int(m.group(1))))
        if text.isdigit():
            return max(0, min(100, int(text)))
    return None


def clean_url(value: Any) -> str | None:
    """Provider URLs occasionally contain embedded whitespace; strip all of it."""
    if not isinstance(value, str):
        return None
    url = _WHITESPACE_RE.sub("", value)
    return url or None


def normalize_state(raw_status: Any) -> ProviderState:
    if not isinstance(raw_status, str) or not raw_status.strip():
        raise ProtocolError(f"Status envelope has no usable 'status' field: {raw_status!r}")
    key = raw_status.strip().upper()
    if key in _SUCCEEDED:
        return ProviderState.SUCCEEDED
    if key in _FAILED:
        return ProviderState.FAILED
    if key in _PENDING:
        return ProviderState.PENDING
    raise ProtocolError(f"Unrecognized provider status: {raw_status!r}")


def data_result_url(envelope: dict[str, Any]) -> str | None:
    """Result URL from ``data.output``, ``data.url`` or ``data[0].url``."""
    data = envelope.get("data")
    if isinstance(data, dict):
        return clean_url(data.get("output") or data.get("url"))
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return clean_url(data[0].get("url"))
    return None


def failure_message(raw: dict[str, Any]) -> str | None:
    for key in ("fail_reason", "failure_reason", "message", "error"):
        value = raw.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class BaseAdapter:
    """Per-variant payload shaping driven by declarative parameter tables.

    ``base_params`` are accepted by every sub-model. ``tier_params`` maps each
    sub-model to the extra keys it supports. A key known to the provider but
    not to the chosen sub-model is dropped (or rejected when ``strict``);
    a key unknown to the provider is always rejected.
    """

    kind: MediaKind
    provider_id: str
    submit_path: str
    asset_reference: AssetReference = "url"
    result_category: AssetCategory
    base_params: frozenset[str] = frozenset()
    tier_params: dict[str, frozenset[str]] = {}
    max_input_assets: int | None = None
    default_aspect_ratio = "16:9"
    allowed_aspect_ratios: frozenset[str] = frozenset()

    def __init__(self, strict: bool = False):
        self.strict = strict

    # -- validation -------------------------------------------------------

    def validate(self, request: GenerationRequest) -> None:
        if request.kind != self.kind:
            raise ValidationError(
                f"Provider '{self.provider_id}' generates {self.kind.value}, not {request.kind.value}"
            )
        if request.sub_model not in self.tier_params:
            raise ValidationError(
                f"Unknown sub-model '{request.sub_model}' for provider '{self.provider_id}'. "
                f"Supported: {', '.join(sorted(self.tier_params))}"
            )
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        if request.mode == GenerationMode.IMAGE and not request.input_assets:
            raise ValidationError(
                f"{self.kind.value.capitalize()} from image requires a first image (input_assets[0])"
            )
        if self.max_input_assets is not None and len(request.input_assets) > self.max_input_assets:
            raise ValidationError(
                f"Provider '{self.provider_id}' accepts at most {self.max_input_assets} input images, "
                f"got {len(request.input_assets)}"
            )

        known = self.base_params.union(*self.tier_params.values())
        allowed = self.base_params | self.tier_params[request.sub_model]
        for key, value in request.parameters.items():
            if value is None:
                continue
            if key not in known:
                raise ValidationError(f"Unknown parameter '{key}' for provider '{self.provider_id}'")
            if key not in allowed and self.strict:
                raise ValidationError(
                    f"Parameter '{key}' is not supported by sub-model '{request.sub_model}'"
                )
            self._check_value(key, value)

        aspect = request.parameters.get("aspect_ratio")
        if aspect is not None and self.allowed_aspect_ratios and aspect not in self.allowed_aspect_ratios:
            raise ValidationError(
                f"Unsupported aspect_ratio '{aspect}'. Supported: {', '.join(sorted(self.allowed_aspect_ratios))}"
            )

    def _check_value(self, key: str, value: Any) -> None:
        """Hook for per-provider value checks."""

    def _shaped_parameters(self, request: GenerationRequest) -> dict[str, Any]:
        """Parameters the chosen sub-model accepts, in the provider's wire form."""
        allowed = self.base_params | self.tier_params[request.sub_model]
        shaped: dict[str, Any] = {}
        for key, value in request.parameters.items():
            if value is None:
                continue
            if key not in allowed:
                logger.debug(
                    "Dropping '%s' for %s/%s (not supported by this tier)",
                    key, self.provider_id, request.sub_model,
                )
                continue
            shaped[key] = self._wire_value(key, value)
        if "aspect_ratio" in self.base_params:
            shaped.setdefault("aspect_ratio", self.default_aspect_ratio)
        return shaped

    def _wire_value(self, key: str, value: Any) -> Any:
        return value

    # -- payload ------------------------------------------------------------

    def build_payload(self, request: GenerationRequest, image_refs: list[str]) -> dict[str, Any]:
        self.validate(request)
        if len(image_refs) != len(request.input_assets):
            raise ValidationError("Every input asset needs exactly one image reference")
        payload: dict[str, Any] = {"prompt": request.prompt, "model": request.sub_model}
        payload.update(self._shaped_parameters(request))
        if image_refs:
            payload["images"] = list(image_refs)
        return payload

    # -- responses ----------------------------------------------------------

    def status_path(self, correlation_id: str) -> str:
        return f"{self.submit_path}/{correlation_id}"

    def parse_submission(self, raw: Any) -> Submission:
        if not isinstance(raw, dict):
            raise ProtocolError("Creation response is not a JSON object")
        task_id = raw.get("task_id")
        if isinstance(task_id, (str, int)) and str(task_id).strip():
            return Submission(correlation_id=str(task_id).strip())
        raise ProtocolError("Creation response did not contain a task_id")

    def parse_status(self, raw: Any) -> NormalizedStatus:
        if not isinstance(raw, dict):
            raise ProtocolError("Status response is not a JSON object")
        # Some gateways wrap the task in {"code": ..., "data": {...task...}}
        envelope = raw
        if "status" not in raw and isinstance(raw.get("data"), dict) and "status" in raw["data"]:
            envelope = raw["data"]
        state = normalize_state(envelope.get("status"))
        progress = parse_progress(envelope.get("progress"))
        if state == ProviderState.SUCCEEDED:
            return NormalizedStatus(
                state=state,
                progress_percent=100,
                result_url=self._result_url(envelope),
            )
        if state == ProviderState.FAILED:
            return NormalizedStatus(
                state=state,
                progress_percent=progress,
                failure_message=failure_message(envelope),
            )
        return NormalizedStatus(state=state, progress_percent=progress)

    def _result_url(self, envelope: dict[str, Any]) -> str | None:
        return data_result_url(envelope)
