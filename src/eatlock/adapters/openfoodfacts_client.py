"""OpenFoodFacts product database client."""

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx

_logger = logging.getLogger(__name__)

USER_AGENT = "EatLock/1.0 (contact@eatlock.app)"


class OpenFoodFactsClient(Protocol):
    """Interface for product lookups by barcode."""

    async def get_product(self, barcode: str) -> dict[str, object] | None:
        """Return the raw product response, or None on any failure."""


@dataclass
class HttpxOpenFoodFactsClient(OpenFoodFactsClient):
    """HTTPX-backed OpenFoodFacts client."""

    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str) -> "HttpxOpenFoodFactsClient":
        """Create an OpenFoodFacts client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(headers={"User-Agent": USER_AGENT}),
        )

    async def get_product(self, barcode: str) -> dict[str, object] | None:
        """Fetch a product; network and HTTP errors count as a miss."""
        url = f"{self.base_url}/api/v2/product/{quote(barcode, safe='')}.json"
        try:
            response = await self.http_client.get(url, timeout=10)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            _logger.warning(
                "OpenFoodFacts lookup failed for %s", barcode, exc_info=True
            )
            return None
        return payload if isinstance(payload, dict) else None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
