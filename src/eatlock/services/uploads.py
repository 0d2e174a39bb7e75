"""Upload key issuance and direct photo uploads."""

import json
import time
import uuid
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass, field

from eatlock.errors import (
    ForbiddenError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from eatlock.services.images import (
    ALLOWED_CONTENT_TYPE,
    MAX_IMAGE_BYTES,
    ImageService,
    normalize_content_type,
)
from eatlock.services.rate_limit import AbuseGuard, LimitPolicy

UPLOAD_WINDOW_SECONDS = 2 * 60
UPLOAD_URL_TTL_SECONDS = 600

SIGNED_UPLOAD_POLICY = LimitPolicy(
    operation="signed",
    burst_limit=18,
    ip_burst_limit=40,
    burst_window_seconds=UPLOAD_WINDOW_SECONDS,
    burst_message="Too many upload requests. Please wait and try again.",
)
DIRECT_UPLOAD_POLICY = LimitPolicy(
    operation="upload",
    burst_limit=16,
    ip_burst_limit=36,
    burst_window_seconds=UPLOAD_WINDOW_SECONDS,
    burst_message="Upload rate limited. Please slow down and retry.",
)

_TOO_LARGE = "Image too large (max 5MB)"


def _short_token() -> str:
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True)
class UploadTicket:
    """Instructions the client follows to upload one photo."""

    upload_url: str
    r2_key: str
    expires_in_seconds: int = UPLOAD_URL_TTL_SECONDS

    def to_payload(self) -> dict[str, object]:
        return {
            "uploadUrl": self.upload_url,
            "r2Key": self.r2_key,
            "method": "PUT",
            "headers": {"Content-Type": ALLOWED_CONTENT_TYPE},
            "expiresInSeconds": self.expires_in_seconds,
        }


@dataclass
class UploadService:
    """Issues user-namespaced keys and stores uploaded JPEG photos."""

    guard: AbuseGuard
    images: ImageService
    max_bytes: int = MAX_IMAGE_BYTES
    clock: Callable[[], float] = time.time
    token_factory: Callable[[], str] = field(default=_short_token)

    def issue_upload(
        self, user_id: str, ip: str, raw_body: bytes, base_url: str
    ) -> UploadTicket:
        """Create a fresh object key for a before or after photo."""
        self.guard.check(SIGNED_UPLOAD_POLICY, user_id, ip)
        kind = "after" if _parse_kind(raw_body) == "after" else "before"
        epoch_ms = int(self.clock() * 1000)
        r2_key = f"uploads/{user_id}/{epoch_ms}_{kind}_{self.token_factory()}.jpg"
        return UploadTicket(
            upload_url=f"{base_url.rstrip('/')}/v1/r2/upload/{r2_key}",
            r2_key=r2_key,
        )

    async def store_upload(  # noqa: PLR0913
        self,
        user_id: str,
        ip: str,
        key: str,
        content_type: str | None,
        content_length: str | None,
        body: AsyncIterable[bytes],
    ) -> dict[str, object]:
        """Validate and store a photo under a key owned by the caller.

        All header checks run before any of ``body`` is
        read, and reading stops as soon as the size cap is passed.
        """
        self.guard.check(DIRECT_UPLOAD_POLICY, user_id, ip)
        if user_id not in key:
            raise ForbiddenError("Forbidden")
        if not content_type or normalize_content_type(content_type) != (
            ALLOWED_CONTENT_TYPE
        ):
            raise UnsupportedMediaTypeError("Only image/jpeg uploads are allowed")
        if content_length is not None:
            declared = _parse_content_length(content_length)
            if declared > self.max_bytes:
                raise PayloadTooLargeError(_TOO_LARGE)
        content = await read_capped(body, self.max_bytes)
        if not content:
            raise ValidationError("Empty body")
        await self.images.store.put(key, content, ALLOWED_CONTENT_TYPE)
        return {"ok": True, "r2_key": key}


async def read_capped(body: AsyncIterable[bytes], max_bytes: int) -> bytes:
    """Collect a streamed body, failing once it grows past ``max_bytes``."""
    buffer = bytearray()
    async for chunk in body:
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise PayloadTooLargeError(_TOO_LARGE)
    return bytes(buffer)


def _parse_kind(raw_body: bytes) -> str | None:
    if not raw_body.strip():
        return None
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    if isinstance(payload, dict) and isinstance(payload.get("kind"), str):
        return payload["kind"]
    return None


def _parse_content_length(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError("Invalid content-length header") from exc
    if value <= 0:
        raise ValidationError("Invalid content-length header")
    return value
