"""Supabase-backed nutrition quota."""

from dataclasses import dataclass

from supabase import Client

from eatlock.services.verification import NutritionQuota, NutritionQuotaRepository


@dataclass
class SupabaseNutritionQuotaRepository(NutritionQuotaRepository):
    """Calls the ``consume_nutrition_quota`` database function."""

    client: Client

    def consume_nutrition_quota(self, user_id: str, limit: int) -> NutritionQuota:
        """Atomically count one estimate for today."""
        response = self.client.rpc(
            "consume_nutrition_quota", {"p_user_id": user_id, "p_limit": limit}
        ).execute()
        data = response.data
        row = data[0] if isinstance(data, list) and data else data
        if not row:
            raise RuntimeError("Nutrition quota check returned no data")
        return NutritionQuota(
            allowed=bool(row["allowed"]),
            used=int(row.get("used") or 0),
            limit=int(row.get("limit") or limit),
        )
