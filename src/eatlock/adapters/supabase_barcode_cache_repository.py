"""Supabase repository for cached barcode products."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from eatlock.domain.barcode import BarcodeProduct
from eatlock.services.barcode import BarcodeCacheRepository


@dataclass
class SupabaseBarcodeCacheRepository(BarcodeCacheRepository):
    """Supabase implementation for the ``barcode_cache`` table."""

    client: Client

    def get_product(self, barcode: str) -> BarcodeProduct | None:
        """Return the cached product for a barcode."""
        response = (
            self.client.table("barcode_cache")
            .select("product_name, calories_per_serving, serving_size, raw_data")
            .eq("barcode", barcode)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        raw = row.get("raw_data") or {}
        return BarcodeProduct(
            name=row.get("product_name") or "Unknown item",
            calories=row.get("calories_per_serving"),
            protein_g=raw.get("protein_g"),
            carbs_g=raw.get("carbs_g"),
            fat_g=raw.get("fat_g"),
            serving_hint=row.get("serving_size") or None,
        )

    def upsert_product(self, barcode: str, product: BarcodeProduct) -> None:
        """Insert or replace the cache row for a barcode."""
        self.client.table("barcode_cache").upsert(
            {
                "barcode": barcode,
                "barcode_type": "ean13",
                "product_name": product.name,
                "calories_per_serving": product.calories,
                "serving_size": product.serving_hint,
                "source_api": "openfoodfacts",
                "raw_data": {
                    "protein_g": product.protein_g,
                    "carbs_g": product.carbs_g,
                    "fat_g": product.fat_g,
                },
                "updated_at": datetime.now(tz=UTC).isoformat(),
            },
            on_conflict="barcode",
        ).execute()
