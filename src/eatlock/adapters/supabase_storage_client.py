"""Supabase Storage client for meal photos."""

from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import quote

import httpx

from eatlock.errors import UpstreamError
from eatlock.services.images import ObjectEntry, ObjectStore, StoredObject

_MISSING_STATUSES = {400, 404}
_LIST_PAGE_SIZE = 1000


@dataclass
class HttpxStorageClient(ObjectStore):
    """Object store backed by the Supabase Storage REST API."""

    base_url: str
    bucket: str
    service_key: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(
        cls, supabase_url: str, service_key: str, bucket: str
    ) -> "HttpxStorageClient":
        """Create a storage client with a managed httpx session."""
        return cls(
            base_url=f"{supabase_url.rstrip('/')}/storage/v1",
            bucket=bucket,
            service_key=service_key,
            http_client=httpx.AsyncClient(),
        )

    async def get(self, key: str) -> StoredObject | None:
        """Download an object; missing keys return None."""
        response = await self._request("GET", key, timeout=20)
        if response.status_code in _MISSING_STATUSES:
            return None
        _raise_for_upstream(response, f"download {key}")
        return StoredObject(
            key=key,
            content=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def put(self, key: str, content: bytes, content_type: str) -> None:
        """Upload an object, replacing any previous version."""
        response = await self._request(
            "POST",
            key,
            content=content,
            headers={"content-type": content_type, "x-upsert": "true"},
            timeout=30,
        )
        _raise_for_upstream(response, f"upload {key}")

    async def delete(self, key: str) -> None:
        """Delete an object; a missing key counts as deleted."""
        response = await self._request("DELETE", key, timeout=10)
        if response.status_code in _MISSING_STATUSES:
            return
        _raise_for_upstream(response, f"delete {key}")

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        """List objects under a prefix, descending into sub-folders."""
        folder = prefix.strip("/")
        entries: list[ObjectEntry] = []
        offset = 0
        while True:
            page = await self._list_page(folder, offset)
            for item in page:
                name = str(item.get("name") or "")
                if not name:
                    continue
                path = f"{folder}/{name}" if folder else name
                if item.get("id") is None:
                    entries.extend(await self.list_objects(path))
                    continue
                uploaded = item.get("created_at") or item.get("updated_at")
                if isinstance(uploaded, str):
                    entries.append(
                        ObjectEntry(key=path, uploaded_at=_parse_time(uploaded))
                    )
            if len(page) < _LIST_PAGE_SIZE:
                return entries
            offset += _LIST_PAGE_SIZE

    async def _list_page(self, folder: str, offset: int) -> list[dict[str, object]]:
        url = f"{self.base_url}/object/list/{self.bucket}"
        payload = {
            "prefix": folder,
            "limit": _LIST_PAGE_SIZE,
            "offset": offset,
            "sortBy": {"column": "name", "order": "asc"},
        }
        try:
            response = await self.http_client.post(
                url, json=payload, headers=self._auth_headers(), timeout=20
            )
        except httpx.TransportError as exc:
            raise UpstreamError(
                f"Storage list failed: {exc}", retryable=True
            ) from exc
        _raise_for_upstream(response, f"list {folder}")
        data = response.json()
        return data if isinstance(data, list) else []

    async def _request(
        self,
        method: str,
        key: str,
        *,
        timeout: float,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/object/{self.bucket}/{quote(key)}"
        request_headers = {**self._auth_headers(), **(headers or {})}
        try:
            return await self.http_client.request(
                method, url, content=content, headers=request_headers, timeout=timeout
            )
        except httpx.TransportError as exc:
            raise UpstreamError(
                f"Storage {method} failed: {exc}", retryable=True
            ) from exc

    def _auth_headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _raise_for_upstream(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    retryable = response.status_code >= 500 or response.status_code == 429
    raise UpstreamError(
        f"Storage {action} failed with {response.status_code}",
        retryable=retryable,
    )


def _parse_time(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
