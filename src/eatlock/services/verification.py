"""Synchronous verify-food, compare-meal and nutrition-estimate flows."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from eatlock.domain.vision import (
    Detail,
    FoodCheck,
    MealComparison,
    NutritionEstimate,
)
from eatlock.errors import (
    EatLockError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
    ValidationError,
    truncate,
)
from eatlock.services.auth import ensure_owned
from eatlock.services.contracts import (
    COMPARE_MEAL,
    FOOD_CHECK,
    NUTRITION_ESTIMATE,
)
from eatlock.services.images import ImageService
from eatlock.services.rate_limit import AbuseGuard, LimitPolicy
from eatlock.services.vision import LabeledImage, VisionService

_logger = logging.getLogger(__name__)

RETRY_CONFIDENCE_THRESHOLD = 0.55
_MISSING_PAIR = "One or both images not found in R2 (expired or invalid key)"

BodyT = TypeVar("BodyT", bound=BaseModel)


class _RequestBody(BaseModel):
    model_config = ConfigDict(extra="forbid", str_min_length=1)


class VerifyFoodRequest(_RequestBody):
    r2Key: str  # noqa: N815


class CompareMealRequest(_RequestBody):
    preKey: str  # noqa: N815
    postKey: str  # noqa: N815


class NutritionEstimateRequest(_RequestBody):
    r2Key: str  # noqa: N815


@dataclass(frozen=True)
class NutritionQuota:
    """Result of the external atomic quota call."""

    allowed: bool
    used: int
    limit: int


class NutritionQuotaRepository(Protocol):
    """Persistence interface for the restart-safe nutrition quota."""

    def consume_nutrition_quota(self, user_id: str, limit: int) -> NutritionQuota:
        """Atomically count one estimate and report whether it is allowed."""


@dataclass(frozen=True)
class DevBypass:
    """Allow-list and secret that unlock the nutrition quota bypass."""

    user_ids: frozenset[str] = frozenset()
    token: str | None = None

    def matches(self, user_id: str, header: str | None, token: str | None) -> bool:
        """Return true only when user, header flag and secret all match."""
        if not self.token or user_id not in self.user_ids:
            return False
        if (header or "").strip().lower() not in {"1", "true"}:
            return False
        return token == self.token


@dataclass(frozen=True)
class VerificationPolicies:
    """Limiter policies for the synchronous vision operations."""

    verify: LimitPolicy
    compare: LimitPolicy
    nutrition: LimitPolicy


def build_policies(
    verify_daily_limit: int, compare_daily_limit: int
) -> VerificationPolicies:
    """Create limiter policies using the configured daily quotas."""
    return VerificationPolicies(
        verify=LimitPolicy(
            operation="verify",
            burst_limit=8,
            burst_message="Too many verify requests. Please slow down.",
            daily_limit=verify_daily_limit,
            daily_message=f"Rate limit exceeded ({verify_daily_limit} verify/day)",
            concurrency_group="vision",
            check_cooldown=True,
        ),
        compare=LimitPolicy(
            operation="compare",
            burst_limit=6,
            burst_message="Too many compare requests. Please slow down.",
            daily_limit=compare_daily_limit,
            daily_message=f"Rate limit exceeded ({compare_daily_limit} compare/day)",
            concurrency_group="vision",
        ),
        nutrition=LimitPolicy(
            operation="nutrition",
            burst_limit=6,
            burst_message="Too many nutrition requests. Please slow down.",
            concurrency_group="nutrition",
        ),
    )


@dataclass(frozen=True)
class CompareOutcome:
    """Comparison result plus the single-use keys to discard afterwards."""

    comparison: MealComparison
    consumed_keys: tuple[str, ...]


@dataclass
class VerificationService:
    """Runs the limit, validate, fetch and infer template per operation."""

    guard: AbuseGuard
    images: ImageService
    vision: VisionService
    quota_repository: NutritionQuotaRepository
    policies: VerificationPolicies
    nutrition_daily_limit: int = 10
    dev_bypass: DevBypass = field(default_factory=DevBypass)

    async def verify_food(self, user_id: str, ip: str, raw_body: bytes) -> FoodCheck:
        """Check that a single photo shows real food."""
        self.guard.check(self.policies.verify, user_id, ip)
        body = parse_body(
            VerifyFoodRequest,
            raw_body,
            missing_message='Missing "r2Key" field',
            extra_message="verify-food accepts exactly one image key",
        )
        ensure_owned(user_id, body.r2Key)
        async with _vision_boundary("verify-food", "Vision error", user_id):
            image = await self.images.fetch(body.r2Key)
            result = await self.vision.infer(FOOD_CHECK, [LabeledImage(image)])
        if not result.isFood:
            self.guard.record_failed_scan(user_id)
        return result

    async def compare_meal(
        self, user_id: str, ip: str, raw_body: bytes
    ) -> CompareOutcome:
        """Compare before/after photos, escalating detail once when unsure."""
        self.guard.check(self.policies.compare, user_id, ip)
        body = parse_body(
            CompareMealRequest,
            raw_body,
            missing_message='Missing "preKey" and/or "postKey" fields',
            extra_message="compare-meal requires exactly preKey and postKey",
        )
        ensure_owned(user_id, body.preKey, body.postKey)
        async with _vision_boundary("compare-meal", "Vision error", user_id):
            try:
                before, after = await self.images.fetch_many(
                    [body.preKey, body.postKey]
                )
            except NotFoundError as exc:
                raise NotFoundError(_MISSING_PAIR) from exc
            pair = [
                LabeledImage(before, label="BEFORE eating:"),
                LabeledImage(after, label="AFTER eating:"),
            ]
            result = await self.vision.infer(COMPARE_MEAL, pair, Detail.LOW)
            if needs_high_detail(result):
                _logger.info("Retrying comparison with high detail")
                result = await self.vision.infer(COMPARE_MEAL, pair, Detail.HIGH)
        return CompareOutcome(
            comparison=result, consumed_keys=(body.preKey, body.postKey)
        )

    async def estimate_nutrition(  # noqa: PLR0913
        self,
        user_id: str,
        ip: str,
        raw_body: bytes,
        bypass_header: str | None = None,
        bypass_token: str | None = None,
    ) -> NutritionEstimate:
        """Estimate calories for one photo against the external daily quota."""
        self.guard.check(self.policies.nutrition, user_id, ip)
        body = parse_body(
            NutritionEstimateRequest,
            raw_body,
            missing_message='Missing "r2Key" field',
            extra_message="nutrition estimate accepts exactly one image key",
        )
        ensure_owned(user_id, body.r2Key)
        async with _vision_boundary(
            "nutrition-estimate", "Nutrition estimation error", user_id
        ):
            if self.dev_bypass.matches(user_id, bypass_header, bypass_token):
                _logger.info("Nutrition quota bypassed", extra={"user_id": user_id})
            else:
                await self._consume_nutrition_quota(user_id)
            image = await self.images.fetch(body.r2Key)
            return await self.vision.infer(NUTRITION_ESTIMATE, [LabeledImage(image)])

    async def discard_images(self, keys: tuple[str, ...]) -> None:
        """Delete single-use photos; failures are only logged."""
        await self.images.delete_many(keys)

    async def _consume_nutrition_quota(self, user_id: str) -> None:
        if not self.guard.enforce or not self.guard.daily_limits_enabled:
            return
        quota = await asyncio.to_thread(
            self.quota_repository.consume_nutrition_quota,
            user_id,
            self.nutrition_daily_limit,
        )
        if not quota.allowed:
            raise RateLimitedError(
                f"Rate limit exceeded ({quota.limit} nutrition estimates/day)",
                remaining=max(quota.limit - quota.used, 0),
            )


def needs_high_detail(result: MealComparison) -> bool:
    """Return true for an ambiguous low-confidence comparison."""
    return (
        result.verdict == "UNVERIFIABLE"
        and result.confidence < RETRY_CONFIDENCE_THRESHOLD
    )


def parse_body(
    model: type[BodyT],
    raw_body: bytes,
    *,
    missing_message: str,
    extra_message: str,
) -> BodyT:
    """Decode a JSON body and validate it strictly against ``model``."""
    try:
        payload = json.loads(raw_body or b"")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        error_types = {error["type"] for error in exc.errors()}
        if error_types == {"extra_forbidden"}:
            raise ValidationError(extra_message) from exc
        raise ValidationError(missing_message) from exc


@asynccontextmanager
async def _vision_boundary(
    operation: str, prefix: str, user_id: str
) -> AsyncIterator[None]:
    """Map resource failures to the error taxonomy with operation context."""
    try:
        yield
    except UpstreamError as exc:
        _logger.warning(
            "%s upstream failure: %s",
            operation,
            exc.message,
            extra={"operation": operation, "user_id": user_id},
        )
        raise UpstreamError(f"{prefix}: {truncate(exc.message)}") from exc
    except EatLockError:
        raise
    except Exception as exc:
        _logger.exception(
            "%s failed", operation, extra={"operation": operation, "user_id": user_id}
        )
        raise UpstreamError(f"{prefix}: {truncate(str(exc))}") from exc
