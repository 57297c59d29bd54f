"""Date-partitioned local asset storage and result materialization.

Layout under the uploads root::

    <images|videos>/<input|results>/<yyyy>/<mm>/<uuid><ext>

The same relative path, appended to the public base URL, is what providers
receive as an input reference, so the shape is part of the external contract.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from mediagen.errors import MaterializationError
from mediagen.schemas.models import AssetCategory, AssetPhase, InputAsset, StoredAsset

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm"}

CONTENT_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
}

_DEFAULT_EXTENSION = {
    AssetCategory.IMAGES: ".png",
    AssetCategory.VIDEOS: ".mp4",
}


def _known_extensions(category: AssetCategory) -> set[str]:
    return IMAGE_EXTENSIONS if category == AssetCategory.IMAGES else VIDEO_EXTENSIONS


def guess_extension(url: str, content_type: str | None, category: AssetCategory) -> str:
    """Extension from the URL path, then the content type, then the category default."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix in _known_extensions(category):
        return suffix
    if content_type:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type.split(";", 1)[0].strip().lower())
        if ext and ext in _known_extensions(category):
            return ext
    return _DEFAULT_EXTENSION[category]


class AssetStore:
    """Owns the mapping from generated names to bytes on disk."""

    def __init__(
        self,
        root: Path,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def root(self) -> Path:
        return self._root

    # -- local storage ------------------------------------------------------

    def store(
        self,
        category: AssetCategory,
        phase: AssetPhase,
        data: bytes,
        extension: str,
        now: datetime | None = None,
    ) -> StoredAsset:
        """Write bytes under a fresh random name. Creates the date directory if needed."""
        if not extension.startswith("."):
            extension = f".{extension}"
        now = now or datetime.now(timezone.utc)
        asset = StoredAsset(
            category=AssetCategory(category),
            phase=AssetPhase(phase),
            year=now.year,
            month=now.month,
            name=f"{uuid.uuid4()}{extension.lower()}",
        )
        path = self.path_for(asset)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Stored %s (%d bytes)", asset.relative_path, len(data))
        return asset

    def store_input(self, asset: InputAsset) -> StoredAsset:
        return self.store(AssetCategory.IMAGES, AssetPhase.INPUT, asset.data, asset.extension)

    def path_for(self, asset: StoredAsset) -> Path:
        return self._root.joinpath(*asset.relative_path.split("/"))

    def read(self, asset: StoredAsset) -> bytes:
        return self.path_for(asset).read_bytes()

    def resolve(self, asset: StoredAsset) -> str:
        """Public URL of a stored asset; depends only on the asset, never on the clock."""
        return f"{self._base_url}/{asset.relative_path}"

    @staticmethod
    def parse(relative_path: str) -> StoredAsset:
        """Inverse of ``StoredAsset.relative_path``."""
        parts = relative_path.strip("/").split("/")
        if len(parts) != 5:
            raise ValueError(f"Not an asset path: {relative_path}")
        category, phase, year, month, name = parts
        try:
            return StoredAsset(
                category=AssetCategory(category),
                phase=AssetPhase(phase),
                year=int(year),
                month=int(month),
                name=name,
            )
        except ValueError as e:
            raise ValueError(f"Not an asset path: {relative_path}") from e

    # -- remote results -----------------------------------------------------

    async def fetch(self, url: str) -> tuple[bytes, str | None]:
        """Download a provider-hosted file. Raises MaterializationError on any failure."""
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self._timeout, follow_redirects=True)
            else:
                async with httpx.AsyncClient(follow_redirects=True, timeout=self._timeout) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            raise MaterializationError(f"Download of {url} failed: {e}") from e
        if response.status_code >= 400:
            raise MaterializationError(f"Download of {url} failed: HTTP {response.status_code}")
        if not response.content:
            raise MaterializationError(f"Download of {url} returned an empty body")
        return response.content, response.headers.get("content-type")

    async def materialize(self, url: str, category: AssetCategory) -> StoredAsset:
        """Fetch a result and store it under ``<category>/results``."""
        data, content_type = await self.fetch(url)
        extension = guess_extension(url, content_type, category)
        try:
            asset = await asyncio.to_thread(
                self.store, category, AssetPhase.RESULTS, data, extension
            )
        except OSError as e:
            raise MaterializationError(f"Could not store result from {url}: {e}") from e
        logger.info("Materialized %s -> %s", url, asset.relative_path)
        return asset
