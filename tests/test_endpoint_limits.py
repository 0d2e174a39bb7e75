"""Tests for limits enforced on the vision endpoints."""

import pytest
from fastapi.testclient import TestClient

from eatlock.api.app import create_app
from eatlock.config import Settings
from eatlock.containers import AppContainer
from eatlock.services.rate_limit import (
    AbuseGuard,
    FailedScanTracker,
    InMemoryRateLimiter,
)
from tests.conftest import (
    AUTH_HEADERS,
    USER_ID,
    FakeClock,
    InMemoryNutritionQuotaRepository,
    InMemoryObjectStore,
    ScriptedVisionClient,
    food_check_json,
    nutrition_json,
)

PHOTO_KEY = f"uploads/{USER_ID}/1700000000000_before_aaaa1111.jpg"
BYPASS_TOKEN = "local-dev-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service.role.key",
        openai_api_key="openai-key",
        enforce_limits=True,
        nutrition_daily_limit=2,
        dev_bypass_user_ids=f"someone-else, {USER_ID}",
        dev_bypass_token=BYPASS_TOKEN,
    )


@pytest.fixture
def client(
    container: AppContainer,
    object_store: InMemoryObjectStore,
    vision_client: ScriptedVisionClient,
) -> TestClient:
    object_store.add(PHOTO_KEY)
    vision_client.outputs.extend([nutrition_json()] * 3)
    return TestClient(create_app(container))


def _estimate(client: TestClient, **headers: str):  # type: ignore[no-untyped-def]
    return client.post(
        "/v1/nutrition/estimate",
        json={"r2Key": PHOTO_KEY},
        headers={**AUTH_HEADERS, **headers},
    )


def test_nutrition_quota_is_counted_per_user(
    client: TestClient,
    quota_repository: InMemoryNutritionQuotaRepository,
    vision_client: ScriptedVisionClient,
) -> None:
    assert _estimate(client).status_code == 200
    assert _estimate(client).status_code == 200

    response = _estimate(client)

    assert response.status_code == 429
    assert response.json() == {
        "error": "Rate limit exceeded (2 nutrition estimates/day)",
        "remaining": 0,
    }
    assert quota_repository.used == {USER_ID: 2}
    assert len(vision_client.calls) == 2


def test_dev_bypass_skips_quota(
    client: TestClient, quota_repository: InMemoryNutritionQuotaRepository
) -> None:
    quota_repository.used[USER_ID] = 2

    denied = _estimate(client)
    allowed = _estimate(
        client, **{"x-dev-bypass": "true", "x-dev-bypass-token": BYPASS_TOKEN}
    )

    assert denied.status_code == 429
    assert allowed.status_code == 200
    assert quota_repository.used == {USER_ID: 2}


def test_dev_bypass_requires_matching_secret(
    client: TestClient, quota_repository: InMemoryNutritionQuotaRepository
) -> None:
    quota_repository.used[USER_ID] = 2

    response = _estimate(
        client, **{"x-dev-bypass": "1", "x-dev-bypass-token": "guessed"}
    )

    assert response.status_code == 429


def test_quota_failure_is_reported_as_upstream_error(
    client: TestClient,
    quota_repository: InMemoryNutritionQuotaRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def unavailable(user_id: str, limit: int) -> None:
        raise RuntimeError("rpc timeout")

    monkeypatch.setattr(quota_repository, "consume_nutrition_quota", unavailable)

    response = _estimate(client)

    assert response.status_code == 502
    assert response.json() == {"error": "Nutrition estimation error: rpc timeout"}


def test_vision_concurrency_limit_applies_to_verify(client: TestClient) -> None:
    statuses = [
        client.post(
            "/v1/vision/verify-food",
            json={"r2Key": "uploads/user-456/x.jpg"},
            headers=AUTH_HEADERS,
        ).status_code
        for _ in range(4)
    ]

    assert statuses == [403, 403, 403, 429]


def test_repeated_non_food_scans_trigger_cooldown(
    container: AppContainer,
    object_store: InMemoryObjectStore,
    vision_client: ScriptedVisionClient,
) -> None:
    clock = FakeClock()
    container.verification_service.guard = AbuseGuard(
        limiter=InMemoryRateLimiter(clock=clock),
        failed_scans=FailedScanTracker(clock=clock),
        enforce=True,
    )
    object_store.add(PHOTO_KEY)
    vision_client.outputs.extend(
        [food_check_json(is_food=False, reason_code="NOT_FOOD")] * 11
    )
    client = TestClient(create_app(container))

    for _ in range(10):
        response = client.post(
            "/v1/vision/verify-food", json={"r2Key": PHOTO_KEY}, headers=AUTH_HEADERS
        )
        assert response.status_code == 200
        assert response.json()["isFood"] is False
        clock.advance(61)

    blocked = client.post(
        "/v1/vision/verify-food", json={"r2Key": PHOTO_KEY}, headers=AUTH_HEADERS
    )

    assert blocked.status_code == 429
    assert blocked.json()["error"] == "Too many failed scans, try again in 5 minutes."
    assert len(vision_client.calls) == 10
