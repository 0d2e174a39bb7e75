"""Barcode product models."""

from dataclasses import asdict, dataclass
from typing import Literal

ProductSource = Literal["cache", "openfoodfacts", "not_found"]


@dataclass(frozen=True)
class BarcodeProduct:
    """Product facts for a scanned barcode, per 100 g where available."""

    name: str
    calories: float | None
    protein_g: float | None
    carbs_g: float | None
    fat_g: float | None
    serving_hint: str | None


UNKNOWN_PRODUCT = BarcodeProduct(
    name="Unknown item",
    calories=None,
    protein_g=None,
    carbs_g=None,
    fat_g=None,
    serving_hint=None,
)


@dataclass(frozen=True)
class BarcodeLookup:
    """Lookup outcome with the source that answered it."""

    product: BarcodeProduct
    source: ProductSource
    barcode: str = ""

    def to_payload(self) -> dict[str, object]:
        return {**asdict(self.product), "source": self.source}
