"""Video generation providers (``/v2/videos/generations``).

Both families share the endpoint and the status envelope
(``{status, progress: "42%", data: {output}}``) but accept different bodies:
Sora's pro tier adds ``hd``/``duration``/``watermark``, Veo adds
``enhance_prompt`` and takes frames inline as base64.
"""

from __future__ import annotations

from typing import Any

from mediagen.errors import ValidationError
from mediagen.providers.base import BaseAdapter
from mediagen.schemas.models import AssetCategory, MediaKind

VIDEO_ASPECT_RATIOS = frozenset({"16:9", "9:16", "1:1"})
SORA_DURATIONS = frozenset({"10", "15"})


class VideoAdapter(BaseAdapter):
    kind = MediaKind.VIDEO
    submit_path = "/v2/videos/generations"
    result_category = AssetCategory.VIDEOS
    base_params = frozenset({"aspect_ratio"})
    max_input_assets = 2  # first frame, optional last frame
    allowed_aspect_ratios = VIDEO_ASPECT_RATIOS


class Sora2Adapter(VideoAdapter):
    provider_id = "sora2"
    asset_reference = "url"
    tier_params = {
        "sora-2": frozenset(),
        "sora-2-pro": frozenset({"hd", "duration", "watermark"}),
    }

    def _check_value(self, key: str, value: Any) -> None:
        if key in ("hd", "watermark") and not isinstance(value, bool):
            raise ValidationError(f"{key} must be a boolean")
        if key == "duration":
            if isinstance(value, bool) or str(value) not in SORA_DURATIONS:
                raise ValidationError(
                    f"duration must be one of {', '.join(sorted(SORA_DURATIONS))} seconds"
                )

    def _wire_value(self, key: str, value: Any) -> Any:
        if key == "duration":
            return str(value)
        return value


class Veo3Adapter(VideoAdapter):
    provider_id = "veo3"
    asset_reference = "inline"
    tier_params = {
        "veo3.1": frozenset({"enhance_prompt"}),
        "veo3.1-pro": frozenset({"enhance_prompt"}),
    }

    def _check_value(self, key: str, value: Any) -> None:
        if key == "enhance_prompt" and not isinstance(value, bool):
            raise ValidationError("enhance_prompt must be a boolean")
