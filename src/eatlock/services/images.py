"""Bridge between the photo object store and inference payloads."""

import asyncio
import base64
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from eatlock.errors import (
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_CONTENT_TYPE = "image/jpeg"
UPLOAD_PREFIX = "uploads/"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """Raw object as returned by the store."""

    key: str
    content: bytes
    content_type: str | None


@dataclass(frozen=True)
class ObjectEntry:
    """Listing entry for a stored object."""

    key: str
    uploaded_at: datetime


class ObjectStore(Protocol):
    """Interface for the immutable photo store."""

    async def get(self, key: str) -> StoredObject | None:
        """Return the object, or None when the key does not exist."""

    async def put(self, key: str, content: bytes, content_type: str) -> None:
        """Store an object under the key."""

    async def delete(self, key: str) -> None:
        """Delete an object; deleting a missing key is not an error."""

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        """Return every object whose key starts with the prefix."""


@dataclass(frozen=True)
class EncodedImage:
    """Photo ready to be embedded in an inference request."""

    key: str
    content_type: str
    size: int
    data_url: str


@dataclass
class ImageService:
    """Fetches, validates, encodes and removes meal photos."""

    store: ObjectStore
    max_bytes: int = MAX_IMAGE_BYTES

    async def fetch(self, key: str) -> EncodedImage:
        """Download a photo and convert it to a base64 data URL."""
        stored = await self.store.get(key)
        if stored is None:
            raise NotFoundError("Image not found in R2 (expired or invalid key)")
        content_type = normalize_content_type(stored.content_type)
        if content_type != ALLOWED_CONTENT_TYPE:
            raise UnsupportedMediaTypeError(f"Unsupported content type for {key}")
        if len(stored.content) > self.max_bytes:
            raise PayloadTooLargeError(f"Image {key} exceeds 5 MB limit")
        return EncodedImage(
            key=key,
            content_type=content_type,
            size=len(stored.content),
            data_url=to_data_url(stored.content, content_type),
        )

    async def fetch_many(self, keys: Iterable[str]) -> list[EncodedImage]:
        """Download several photos concurrently, preserving order."""
        return list(await asyncio.gather(*(self.fetch(key) for key in keys)))

    async def delete(self, key: str) -> None:
        """Delete a photo; failures are logged and never raised."""
        try:
            await self.store.delete(key)
        except Exception:
            _logger.warning("Failed to delete object %s", key, exc_info=True)

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete photos concurrently; each failure is tolerated on its own."""
        await asyncio.gather(*(self.delete(key) for key in keys))

    async def purge_stale_uploads(
        self, ttl_seconds: float, prefix: str = UPLOAD_PREFIX
    ) -> int:
        """Delete uploads older than ``ttl_seconds`` and return how many."""
        cutoff = datetime.now(UTC) - timedelta(seconds=ttl_seconds)
        entries = await self.store.list_objects(prefix)
        stale = [entry.key for entry in entries if entry.uploaded_at < cutoff]
        await self.delete_many(stale)
        return len(stale)


def normalize_content_type(raw: str | None) -> str:
    """Lower-case a content type and drop its parameters."""
    if not raw:
        return ALLOWED_CONTENT_TYPE
    return raw.split(";", maxsplit=1)[0].strip().lower()


def to_data_url(content: bytes, content_type: str) -> str:
    """Convert bytes to a base64 data URL for image input."""
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{content_type};base64,{encoded}"
