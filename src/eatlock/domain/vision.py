"""Models for structured vision results."""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Stage(StrEnum):
    """Half of a meal session a photo belongs to."""

    START_SCAN = "START_SCAN"
    END_SCAN = "END_SCAN"


class Detail(StrEnum):
    """Image detail level sent to the model."""

    LOW = "low"
    HIGH = "high"


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class PhotoQuality(_StrictModel):
    """Photo quality scores, 1 = perfect."""

    brightness: float
    blur: float
    framing: float


class FoodCheck(_StrictModel):
    """Single-photo food presence check."""

    isFood: bool  # noqa: N815
    confidence: float
    hasPlateOrBowl: bool  # noqa: N815
    quality: PhotoQuality
    reasonCode: Literal[  # noqa: N815
        "OK",
        "NOT_FOOD",
        "HAND_SELFIE",
        "TOO_DARK",
        "TOO_BLURRY",
        "NO_PLATE",
        "BAD_FRAMING",
    ]
    roastLine: str  # noqa: N815
    retakeHint: str  # noqa: N815


class MealComparison(_StrictModel):
    """Before/after comparison of a meal."""

    isSameScene: bool  # noqa: N815
    duplicateScore: float  # noqa: N815
    foodChangeScore: float  # noqa: N815
    verdict: Literal["EATEN", "PARTIAL", "UNCHANGED", "UNVERIFIABLE"]
    confidence: float
    reasonCode: Literal[  # noqa: N815
        "OK",
        "DUPLICATE_AFTER",
        "UNCHANGED",
        "PARTIAL",
        "ANGLE_MISMATCH",
        "LIGHTING_MISMATCH",
        "CANT_TELL",
    ]
    roastLine: str  # noqa: N815
    retakeHint: str  # noqa: N815


class NutritionEstimate(_StrictModel):
    """Calorie range estimated from one photo."""

    food_label: str
    estimated_calories: float
    min_calories: float
    max_calories: float
    confidence: float
    notes: str


class StartScanSignals(_StrictModel):
    has_food: bool
    food_type: str | None
    is_screenshot: bool
    is_stock_photo: bool
    plate_visible: bool


class EndScanSignals(_StrictModel):
    plate_empty: bool
    food_remaining_pct: float
    same_setting: bool
    utensils_moved: bool
    napkin_used: bool


class StartScanResult(_StrictModel):
    """Queue-path verdict for a photo taken before eating."""

    verdict: Literal["FOOD_OK", "NOT_FOOD", "UNCLEAR", "CHEATING"]
    confidence: float = Field(ge=0.0, le=1.0)
    finished_score: None
    reason: str
    roast: str
    signals: StartScanSignals


class EndScanResult(_StrictModel):
    """Queue-path verdict for a before/after pair."""

    verdict: Literal["FINISHED", "NOT_FINISHED"]
    confidence: float = Field(ge=0.0, le=1.0)
    finished_score: float = Field(ge=0.0, le=1.0)
    reason: str
    roast: str
    signals: EndScanSignals


class VisionResult(BaseModel):
    """Stored outcome of a completed vision job."""

    model_config = ConfigDict(frozen=True)

    verdict: str
    confidence: float = Field(ge=0.0, le=1.0)
    finished_score: float | None = Field(default=None, ge=0.0, le=1.0)
    reason: str | None = None
    roast: str | None = None
    signals: dict[str, object] = Field(default_factory=dict)
