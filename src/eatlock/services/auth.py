"""Bearer-token authentication and key ownership checks."""

import logging
from dataclasses import dataclass
from typing import Protocol

from eatlock.errors import AuthError, ForbiddenError

_logger = logging.getLogger(__name__)

_INVALID_TOKEN = "Invalid or expired token"


class IdentityClient(Protocol):
    """Interface for resolving access tokens with the identity provider."""

    async def get_user_id(self, access_token: str) -> str | None:
        """Return the user id for a valid token, or None when rejected."""


@dataclass
class AuthGate:
    """Resolves an ``Authorization`` header to a user id on every request."""

    identity_client: IdentityClient

    async def authenticate(self, authorization: str | None) -> str:
        """Validate the bearer credential and return the user id."""
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthError("Missing or invalid Authorization header")
        token = authorization[len("Bearer ") :].strip()
        if not _looks_signed(token):
            raise AuthError(_INVALID_TOKEN)
        user_id = await self.identity_client.get_user_id(token)
        if not user_id:
            _logger.info("Identity provider rejected token (len=%s)", len(token))
            raise AuthError(_INVALID_TOKEN)
        return user_id


def ensure_owned(user_id: str, *keys: str) -> None:
    """Reject keys whose namespace does not embed the caller's user id."""
    for key in keys:
        if user_id not in key:
            raise ForbiddenError("r2Key does not belong to user")


def _looks_signed(token: str) -> bool:
    """Return true for tokens shaped like ``header.payload.signature``."""
    parts = token.split(".")
    return len(parts) == 3 and all(parts)
