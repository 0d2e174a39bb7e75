"""Barcode lookup endpoint."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from eatlock.api.dependencies import client_ip, get_container, require_user

router = APIRouter(tags=["barcode"])


@router.post("/v1/barcode/lookup")
async def barcode_lookup(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(require_user),
) -> dict[str, object]:
    """Resolve a barcode; unknown products answer with a placeholder."""
    service = get_container(request).barcode_service
    lookup = await service.lookup(user_id, client_ip(request), await request.body())
    if lookup.source == "openfoodfacts":
        background_tasks.add_task(service.remember, lookup.barcode, lookup.product)
    return lookup.to_payload()
