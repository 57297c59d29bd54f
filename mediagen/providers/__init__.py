"""Provider adapters, one per (kind, provider), behind a common protocol."""

from mediagen.errors import ValidationError
from mediagen.providers.base import BaseAdapter, ProviderAdapter
from mediagen.providers.images import GptImageAdapter, NanoBananaAdapter
from mediagen.providers.video import Sora2Adapter, Veo3Adapter
from mediagen.schemas.models import MediaKind

_ADAPTERS: dict[tuple[MediaKind, str], type[BaseAdapter]] = {
    (MediaKind.IMAGE, NanoBananaAdapter.provider_id): NanoBananaAdapter,
    (MediaKind.IMAGE, GptImageAdapter.provider_id): GptImageAdapter,
    (MediaKind.VIDEO, Sora2Adapter.provider_id): Sora2Adapter,
    (MediaKind.VIDEO, Veo3Adapter.provider_id): Veo3Adapter,
}


def get_adapter(kind: MediaKind | str, provider_id: str, strict: bool = False) -> ProviderAdapter:
    """Return the adapter for a provider. Unknown pairs are a ValidationError."""
    kind = MediaKind(kind)
    adapter_cls = _ADAPTERS.get((kind, provider_id))
    if adapter_cls is None:
        known = ", ".join(sorted(p for k, p in _ADAPTERS if k == kind))
        raise ValidationError(f"Unknown {kind.value} provider '{provider_id}'. Supported: {known}")
    return adapter_cls(strict=strict)


def list_providers(kind: MediaKind | str | None = None) -> dict[str, list[str]]:
    """provider_id -> sub-models, optionally filtered by kind."""
    wanted = MediaKind(kind) if kind is not None else None
    return {
        provider_id: sorted(adapter_cls.tier_params)
        for (k, provider_id), adapter_cls in _ADAPTERS.items()
        if wanted is None or k == wanted
    }


__all__ = ["ProviderAdapter", "BaseAdapter", "get_adapter", "list_providers"]
