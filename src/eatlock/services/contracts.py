"""Structured inference contracts: instructions, JSON schemas and result models."""

from dataclasses import dataclass

from pydantic import BaseModel

from eatlock.domain.vision import (
    EndScanResult,
    FoodCheck,
    MealComparison,
    NutritionEstimate,
    Stage,
    StartScanResult,
)


@dataclass(frozen=True)
class InferenceContract:
    """A strict JSON schema paired with the instruction that produces it."""

    name: str
    instructions: str
    prompt: str
    schema: dict[str, object]
    result_model: type[BaseModel]


def _strict(properties: dict[str, object]) -> dict[str, object]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_NUMBER = {"type": "number"}
_BOOLEAN = {"type": "boolean"}
_STRING = {"type": "string"}

FOOD_CHECK = InferenceContract(
    name="food_check",
    instructions="""You are EatLock's strict meal-photo verifier.
Given a single photo, determine whether it shows REAL food on a plate/bowl that someone is about to eat.
Be harsh: reject selfies, fingers covering the lens, screenshots, dark/blurry shots, and non-food objects.
Write a short witty roastLine (max 18 words, include 1-2 emojis). If rejected, provide a helpful retakeHint (max 15 words).
If accepted (isFood=true), set reasonCode to "OK", roastLine to a compliment, and retakeHint to empty string.
quality.brightness/blur/framing are 0-1 scores (1 = perfect).
Confidence is 0-1.""",  # noqa: E501
    prompt="Verify this meal photo.",
    schema=_strict(
        {
            "isFood": _BOOLEAN,
            "confidence": _NUMBER,
            "hasPlateOrBowl": _BOOLEAN,
            "quality": _strict(
                {"brightness": _NUMBER, "blur": _NUMBER, "framing": _NUMBER}
            ),
            "reasonCode": {
                "type": "string",
                "enum": [
                    "OK",
                    "NOT_FOOD",
                    "HAND_SELFIE",
                    "TOO_DARK",
                    "TOO_BLURRY",
                    "NO_PLATE",
                    "BAD_FRAMING",
                ],
            },
            "roastLine": _STRING,
            "retakeHint": _STRING,
        }
    ),
    result_model=FoodCheck,
)

COMPARE_MEAL = InferenceContract(
    name="compare_meal",
    instructions="""You are EatLock's before/after meal comparison AI.
You receive two photos: BEFORE eating (first) and AFTER eating (second).
Determine how much food was consumed.

Rules:
- EATEN: plate is clearly emptier (foodChangeScore > 0.75)
- PARTIAL: some food gone but visible leftovers (0.25 < foodChangeScore <= 0.75)
- UNCHANGED: food looks the same as before (foodChangeScore <= 0.25)
- UNVERIFIABLE: can't tell (different angle, lighting, blurry, or photos don't match)
- duplicateScore: 0 = completely different, 1 = identical (detect duplicate/resubmitted photos)
- If duplicateScore > 0.9 -> reasonCode = "DUPLICATE_AFTER"
- foodChangeScore: 0 = no change, 1 = all food gone
- isSameScene: are both photos from the same table/setting?

Write a short witty roastLine (max 18 words, include 1-2 emojis). Provide retakeHint when UNVERIFIABLE.
Confidence is 0-1.""",  # noqa: E501
    prompt="Compare the BEFORE and AFTER photos of this meal.",
    schema=_strict(
        {
            "isSameScene": _BOOLEAN,
            "duplicateScore": _NUMBER,
            "foodChangeScore": _NUMBER,
            "verdict": {
                "type": "string",
                "enum": ["EATEN", "PARTIAL", "UNCHANGED", "UNVERIFIABLE"],
            },
            "confidence": _NUMBER,
            "reasonCode": {
                "type": "string",
                "enum": [
                    "OK",
                    "DUPLICATE_AFTER",
                    "UNCHANGED",
                    "PARTIAL",
                    "ANGLE_MISMATCH",
                    "LIGHTING_MISMATCH",
                    "CANT_TELL",
                ],
            },
            "roastLine": _STRING,
            "retakeHint": _STRING,
        }
    ),
    result_model=MealComparison,
)

NUTRITION_ESTIMATE = InferenceContract(
    name="nutrition_estimate",
    instructions="""Estimate meal calories from a single food photo.
Return a realistic range and a concise assumption note.
Never claim certainty.""",
    prompt="Estimate calories for this meal.",
    schema=_strict(
        {
            "food_label": _STRING,
            "estimated_calories": _NUMBER,
            "min_calories": _NUMBER,
            "max_calories": _NUMBER,
            "confidence": _NUMBER,
            "notes": _STRING,
        }
    ),
    result_model=NutritionEstimate,
)

START_SCAN = InferenceContract(
    name="start_scan",
    instructions="""You are EatLock's food verification AI. Analyze the provided image.

TASK: Determine if the image shows REAL FOOD that someone is about to eat.

VERDICT RULES:
- FOOD_OK: Real food on a plate/bowl/container, clearly about to be eaten
- NOT_FOOD: No food visible, random object, blank image, clearly not a meal
- UNCLEAR: Blurry, too dark, partial view, can't determine
- CHEATING: Screenshot of food, stock photo, previously taken image, food on a screen

Set finished_score to null. Keep reason under 30 words and write a short playful
non-hateful roast about their meal (max 20 words).

Be strict. If unsure, return UNCLEAR.""",
    prompt="Analyze this food image:",
    schema=_strict(
        {
            "verdict": {
                "type": "string",
                "enum": ["FOOD_OK", "NOT_FOOD", "UNCLEAR", "CHEATING"],
            },
            "confidence": _NUMBER,
            "finished_score": {"type": "null"},
            "reason": _STRING,
            "roast": _STRING,
            "signals": _strict(
                {
                    "has_food": _BOOLEAN,
                    "food_type": {"anyOf": [_STRING, {"type": "null"}]},
                    "is_screenshot": _BOOLEAN,
                    "is_stock_photo": _BOOLEAN,
                    "plate_visible": _BOOLEAN,
                }
            ),
        }
    ),
    result_model=StartScanResult,
)

END_SCAN = InferenceContract(
    name="end_scan",
    instructions="""You are EatLock's meal completion AI. Compare the BEFORE and AFTER images of a meal.

TASK: Determine if the person has finished eating their meal.

The first image is BEFORE eating. The second image is AFTER eating.

VERDICT RULES:
- FINISHED: Plate/bowl is mostly empty (>80% eaten), clear evidence meal is done
- NOT_FINISHED: Significant food remains, plate looks largely untouched, or images don't match

finished_score guidance (1 = completely finished, 0 = untouched):
- 1.0: Completely clean plate
- 0.8-0.99: Nearly done, small scraps remain
- 0.5-0.79: About half eaten
- 0.0-0.49: Barely touched

signals.food_remaining_pct is 0-100. Keep reason under 30 words and write a short
playful non-hateful roast about their eating (max 20 words).

Be fair but strict. A mostly-eaten meal (>80%) counts as FINISHED.""",  # noqa: E501
    prompt="Compare these BEFORE and AFTER meal images:",
    schema=_strict(
        {
            "verdict": {"type": "string", "enum": ["FINISHED", "NOT_FINISHED"]},
            "confidence": _NUMBER,
            "finished_score": _NUMBER,
            "reason": _STRING,
            "roast": _STRING,
            "signals": _strict(
                {
                    "plate_empty": _BOOLEAN,
                    "food_remaining_pct": _NUMBER,
                    "same_setting": _BOOLEAN,
                    "utensils_moved": _BOOLEAN,
                    "napkin_used": _BOOLEAN,
                }
            ),
        }
    ),
    result_model=EndScanResult,
)

STAGE_CONTRACTS: dict[Stage, InferenceContract] = {
    Stage.START_SCAN: START_SCAN,
    Stage.END_SCAN: END_SCAN,
}
