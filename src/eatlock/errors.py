"""Error taxonomy shared by the HTTP routes and the queue consumer.

Every error carries the HTTP status it maps to and a ``retryable`` flag that
is decided where the error is raised, so callers never inspect message text.
"""


class EatLockError(Exception):
    """Base class for errors rendered as ``{"error": ..., **extra}``."""

    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        extra: dict[str, object] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        if retryable is not None:
            self.retryable = retryable

    def to_payload(self) -> dict[str, object]:
        """Return the JSON error envelope."""
        return {"error": self.message, **self.extra}


class AuthError(EatLockError):
    """Missing, malformed or rejected bearer credential."""

    status_code = 401


class ForbiddenError(EatLockError):
    """Object key does not belong to the authenticated user."""

    status_code = 403


class ValidationError(EatLockError):
    """Malformed or incomplete request body."""

    status_code = 400


class NotFoundError(EatLockError):
    """Missing object-store entry or row."""

    status_code = 404
    # Freshly uploaded objects may not be readable yet.
    retryable = True


class PayloadTooLargeError(EatLockError):
    """Object exceeds the size ceiling."""

    status_code = 413


class UnsupportedMediaTypeError(EatLockError):
    """Object is not the accepted image format."""

    status_code = 415


class RateLimitedError(EatLockError):
    """A limiter layer or the external quota rejected the request."""

    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        remaining: int | None = None,
        reset_at: float | None = None,
    ) -> None:
        extra: dict[str, object] = {}
        if remaining is not None:
            extra["remaining"] = remaining
        if reset_at is not None:
            extra["reset_at"] = reset_at
        super().__init__(message, extra=extra)
        self.remaining = remaining
        self.reset_at = reset_at


class UpstreamError(EatLockError):
    """An upstream dependency failed."""

    status_code = 502


class InferenceUnavailableError(UpstreamError):
    """The inference backend answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        body_excerpt: str = "",
        retryable: bool = False,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.upstream_status = upstream_status
        self.body_excerpt = body_excerpt[:300]


class InferenceMalformedError(UpstreamError):
    """The inference backend returned no parsable structured payload."""

    retryable = False


def truncate(message: str, limit: int = 200) -> str:
    """Shorten a message for user-visible output."""
    if len(message) <= limit:
        return message
    return message[:limit]
