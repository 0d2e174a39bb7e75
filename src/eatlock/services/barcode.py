"""Barcode lookup with a read-through product cache."""

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from typing import Protocol

from eatlock.adapters.openfoodfacts_client import OpenFoodFactsClient
from eatlock.domain.barcode import UNKNOWN_PRODUCT, BarcodeLookup, BarcodeProduct
from eatlock.errors import ValidationError
from eatlock.services.rate_limit import AbuseGuard, LimitPolicy

_logger = logging.getLogger(__name__)

MIN_BARCODE_LENGTH = 4

BARCODE_POLICY = LimitPolicy(
    operation="barcode",
    burst_limit=10,
    burst_message="Too many barcode requests. Please slow down.",
)


class BarcodeCacheRepository(Protocol):
    """Persistence interface for cached products."""

    def get_product(self, barcode: str) -> BarcodeProduct | None:
        """Return the cached product for a barcode, if present."""

    def upsert_product(self, barcode: str, product: BarcodeProduct) -> None:
        """Insert or replace the cached product for a barcode."""


@dataclass
class BarcodeService:
    """Answers every lookup: cache, then OpenFoodFacts, then a placeholder."""

    guard: AbuseGuard
    cache: BarcodeCacheRepository
    client: OpenFoodFactsClient

    async def lookup(self, user_id: str, ip: str, raw_body: bytes) -> BarcodeLookup:
        """Resolve a barcode to product facts."""
        self.guard.check(BARCODE_POLICY, user_id, ip)
        barcode = parse_barcode(raw_body)
        cached = await self._read_cache(barcode)
        if cached is not None:
            return BarcodeLookup(product=cached, source="cache", barcode=barcode)
        payload = await self.client.get_product(barcode)
        product = map_product(payload) if payload else None
        if product is None:
            return BarcodeLookup(
                product=UNKNOWN_PRODUCT, source="not_found", barcode=barcode
            )
        return BarcodeLookup(product=product, source="openfoodfacts", barcode=barcode)

    def remember(self, barcode: str, product: BarcodeProduct) -> None:
        """Cache an externally found product; failures are only logged."""
        try:
            self.cache.upsert_product(barcode, product)
        except Exception:
            _logger.warning("Failed to cache barcode %s", barcode, exc_info=True)

    async def _read_cache(self, barcode: str) -> BarcodeProduct | None:
        try:
            return await asyncio.to_thread(self.cache.get_product, barcode)
        except Exception:
            _logger.warning("Barcode cache read failed for %s", barcode, exc_info=True)
            return None


def parse_barcode(raw_body: bytes) -> str:
    """Extract the trimmed barcode from a JSON request body."""
    try:
        payload = json.loads(raw_body or b"")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    barcode = payload.get("barcode") if isinstance(payload, dict) else None
    if not isinstance(barcode, str) or len(barcode) < MIN_BARCODE_LENGTH:
        raise ValidationError('Missing or invalid "barcode" field')
    return barcode.strip()


def map_product(payload: dict[str, object]) -> BarcodeProduct | None:
    """Map an OpenFoodFacts product response using per-100 g nutrients."""
    product = payload.get("product")
    if payload.get("status") != 1 or not isinstance(product, dict):
        return None
    nutriments = product.get("nutriments")
    if not isinstance(nutriments, dict):
        nutriments = {}
    calories = _number(nutriments.get("energy-kcal_100g"))
    return BarcodeProduct(
        name=product.get("product_name") or UNKNOWN_PRODUCT.name,
        calories=_round_half_up(calories) if calories is not None else None,
        protein_g=_one_decimal(nutriments.get("proteins_100g")),
        carbs_g=_one_decimal(nutriments.get("carbohydrates_100g")),
        fat_g=_one_decimal(nutriments.get("fat_100g")),
        serving_hint=product.get("serving_size") or None,
    )


def _number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _one_decimal(value: object) -> float | None:
    number = _number(value)
    return _round_half_up(number * 10) / 10 if number is not None else None


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)
