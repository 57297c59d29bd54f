"""Local asset storage for input uploads and materialized results."""

from mediagen.assets.store import AssetStore, guess_extension

__all__ = ["AssetStore", "guess_extension"]
