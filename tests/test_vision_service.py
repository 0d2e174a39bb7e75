"""Tests for vision request building and result validation."""

import asyncio

import pytest

from eatlock.domain.vision import Detail, FoodCheck, NutritionEstimate
from eatlock.errors import InferenceMalformedError
from eatlock.services.contracts import COMPARE_MEAL, FOOD_CHECK, NUTRITION_ESTIMATE
from eatlock.services.images import EncodedImage
from eatlock.services.vision import (
    LabeledImage,
    VisionService,
    build_content,
    normalize_json_text,
    parse_result,
)
from tests.conftest import ScriptedVisionClient, food_check_json, nutrition_json


def _image(key: str) -> EncodedImage:
    return EncodedImage(
        key=key,
        content_type="image/jpeg",
        size=4,
        data_url=f"data:image/jpeg;base64,{key}",
    )


def test_build_content_interleaves_labels_and_images() -> None:
    content = build_content(
        "Compare.",
        [
            LabeledImage(_image("pre"), label="BEFORE eating:"),
            LabeledImage(_image("post"), label="AFTER eating:"),
        ],
        Detail.HIGH,
    )

    assert content == [
        {"type": "input_text", "text": "Compare."},
        {"type": "input_text", "text": "BEFORE eating:"},
        {
            "type": "input_image",
            "image_url": "data:image/jpeg;base64,pre",
            "detail": "high",
        },
        {"type": "input_text", "text": "AFTER eating:"},
        {
            "type": "input_image",
            "image_url": "data:image/jpeg;base64,post",
            "detail": "high",
        },
    ]


def test_infer_sends_contract_and_returns_model() -> None:
    client = ScriptedVisionClient(outputs=[food_check_json()])
    service = VisionService(
        client=client, model="gpt-4o-mini", reasoning_effort=None, store=False
    )

    result = asyncio.run(service.infer(FOOD_CHECK, [LabeledImage(_image("a"))]))

    assert isinstance(result, FoodCheck)
    assert result.isFood is True
    call = client.calls[0]
    assert call["schema_name"] == "food_check"
    assert call["instructions"] == FOOD_CHECK.instructions
    assert call["content"][1]["detail"] == "low"


@pytest.mark.parametrize(
    "wrapped",
    [
        "```json\n{\"a\": 1}\n```",
        "```\n{\"a\": 1}\n```",
        "  ```JSON {\"a\": 1}```  ",
        "{\"a\": 1}",
    ],
)
def test_normalize_json_text_strips_single_fence(wrapped: str) -> None:
    assert normalize_json_text(wrapped) == '{"a": 1}'


def test_normalize_json_text_leaves_inner_fences_alone() -> None:
    text = 'prefix ```json\n{"a": 1}\n```'

    assert normalize_json_text(text) == text


def test_parse_result_accepts_fenced_json() -> None:
    result = parse_result(NutritionEstimate, f"```json\n{nutrition_json()}\n```")

    assert result.food_label == "spaghetti bolognese"
    assert result.estimated_calories == 650


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("", "No text in OpenAI response"),
        ("   ", "No text in OpenAI response"),
        ("not json", "OpenAI response is not valid JSON"),
        ('{"food_label": "soup"}', "OpenAI response does not match schema"),
    ],
)
def test_parse_result_rejects_malformed_output(raw: str, message: str) -> None:
    with pytest.raises(InferenceMalformedError) as excinfo:
        parse_result(NutritionEstimate, raw)

    assert excinfo.value.message.startswith(message)
    assert excinfo.value.status_code == 502
    assert excinfo.value.retryable is False


def test_parse_result_rejects_unknown_enum_value() -> None:
    raw = food_check_json(reason_code="SOMETHING_ELSE")

    with pytest.raises(InferenceMalformedError):
        parse_result(FoodCheck, raw)


def test_contract_schemas_are_strict() -> None:
    for contract in (FOOD_CHECK, COMPARE_MEAL, NUTRITION_ESTIMATE):
        assert contract.schema["additionalProperties"] is False
        assert contract.schema["required"] == list(contract.schema["properties"])
        assert set(contract.schema["properties"]) == set(
            contract.result_model.model_fields
        )
