"""Image generation providers (``/v1/images/generations``).

The creation call either returns a ``task_id`` to poll, or (synchronous
providers) the finished image directly in ``data[0].url``.
"""

from __future__ import annotations

from typing import Any

from mediagen.errors import ProtocolError, ValidationError
from mediagen.providers.base import BaseAdapter, data_result_url
from mediagen.schemas.models import AssetCategory, MediaKind, Submission

IMAGE_ASPECT_RATIOS = frozenset({"1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "21:9"})


class ImageAdapter(BaseAdapter):
    """Shared shaping for image models: ``{prompt, model, aspect_ratio, style?, images?}``."""

    kind = MediaKind.IMAGE
    submit_path = "/v1/images/generations"
    asset_reference = "url"
    result_category = AssetCategory.IMAGES
    base_params = frozenset({"aspect_ratio", "style"})
    allowed_aspect_ratios = IMAGE_ASPECT_RATIOS

    def _check_value(self, key: str, value: Any) -> None:
        if key == "style" and not isinstance(value, str):
            raise ValidationError("style must be a string")

    def parse_submission(self, raw: Any) -> Submission:
        if not isinstance(raw, dict):
            raise ProtocolError("Creation response is not a JSON object")
        task_id = raw.get("task_id")
        if isinstance(task_id, (str, int)) and str(task_id).strip():
            return Submission(correlation_id=str(task_id).strip())
        url = data_result_url(raw)
        if url:
            # "created" is a timestamp, not an id; without "id" the submitter assigns one
            sync_id = raw.get("id")
            if isinstance(sync_id, (str, int)) and str(sync_id).strip():
                return Submission(correlation_id=str(sync_id).strip(), result_url=url)
            return Submission(correlation_id=None, result_url=url)
        raise ProtocolError("Creation response contained neither a task_id nor data[0].url")


class NanoBananaAdapter(ImageAdapter):
    provider_id = "nano-banana"
    tier_params = {
        "nano-banana": frozenset(),
        "nano-banana-hd": frozenset(),
    }


class GptImageAdapter(ImageAdapter):
    provider_id = "gpt-image-1"
    tier_params = {
        "gpt-image-1": frozenset(),
    }
