"""Supabase Auth client for access-token validation."""

import logging
from dataclasses import dataclass

import httpx

from eatlock.services.auth import IdentityClient

_logger = logging.getLogger(__name__)


@dataclass
class HttpxSupabaseAuthClient(IdentityClient):
    """Identity client calling the Supabase ``/auth/v1/user`` endpoint."""

    supabase_url: str
    api_key: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, supabase_url: str, api_key: str) -> "HttpxSupabaseAuthClient":
        """Create an auth client with a managed httpx session."""
        return cls(
            supabase_url=supabase_url.rstrip("/"),
            api_key=api_key,
            http_client=httpx.AsyncClient(),
        )

    async def get_user_id(self, access_token: str) -> str | None:
        """Resolve a token to a user id; any non-success answer is a rejection."""
        try:
            response = await self.http_client.get(
                f"{self.supabase_url}/auth/v1/user",
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {access_token}",
                },
                timeout=10,
            )
        except httpx.HTTPError:
            _logger.exception("Identity provider request failed")
            return None
        if not response.is_success:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        user_id = payload.get("id") if isinstance(payload, dict) else None
        return str(user_id) if user_id else None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
