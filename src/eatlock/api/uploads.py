"""Photo upload endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from eatlock.api.dependencies import client_ip, get_container, require_user

router = APIRouter(prefix="/v1/r2", tags=["uploads"])


@router.post("/signed-upload")
async def signed_upload(
    request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Issue a user-namespaced key and the URL to upload it to."""
    container = get_container(request)
    ticket = container.upload_service.issue_upload(
        user_id,
        client_ip(request),
        await request.body(),
        base_url=str(request.base_url),
    )
    return ticket.to_payload()


@router.put("/upload/{key:path}")
async def direct_upload(
    key: str, request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Store a JPEG photo under a key owned by the caller."""
    container = get_container(request)
    return await container.upload_service.store_upload(
        user_id,
        client_ip(request),
        key,
        content_type=request.headers.get("content-type"),
        content_length=request.headers.get("content-length"),
        body=request.stream(),
    )
