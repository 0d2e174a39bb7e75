"""Vision and nutrition endpoints."""

from __future__ import annotations

import json

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from eatlock.api.dependencies import client_ip, get_container, require_user
from eatlock.errors import ValidationError

router = APIRouter(tags=["vision"])


@router.post("/v1/vision/verify-food")
async def verify_food(
    request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Check that one uploaded photo shows real food."""
    container = get_container(request)
    result = await container.verification_service.verify_food(
        user_id, client_ip(request), await request.body()
    )
    return result.model_dump()


@router.post("/v1/vision/compare-meal")
async def compare_meal(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(require_user),
) -> dict[str, object]:
    """Compare before/after photos; both photos are deleted afterwards."""
    container = get_container(request)
    service = container.verification_service
    outcome = await service.compare_meal(
        user_id, client_ip(request), await request.body()
    )
    background_tasks.add_task(service.discard_images, outcome.consumed_keys)
    return outcome.comparison.model_dump()


@router.post("/v1/nutrition/estimate")
async def estimate_nutrition(
    request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Estimate calories for one uploaded photo."""
    container = get_container(request)
    result = await container.verification_service.estimate_nutrition(
        user_id,
        client_ip(request),
        await request.body(),
        bypass_header=request.headers.get("x-dev-bypass"),
        bypass_token=request.headers.get("x-dev-bypass-token"),
    )
    return result.model_dump()


@router.post("/v1/vision/enqueue", status_code=status.HTTP_201_CREATED)
async def enqueue_vision(
    request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Queue an asynchronous START_SCAN or END_SCAN job."""
    container = get_container(request)
    try:
        payload = json.loads(await request.body() or b"")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    return await container.job_service.enqueue(user_id, payload)


@router.get("/v1/vision/job/{job_id}")
async def get_job(
    job_id: str, request: Request, user_id: str = Depends(require_user)
) -> dict[str, object]:
    """Return the caller's job status and result."""
    container = get_container(request)
    return await container.job_service.get_status(user_id, job_id)
