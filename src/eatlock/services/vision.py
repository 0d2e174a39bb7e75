"""Vision inference: request building and structured-response validation."""

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from eatlock.domain.vision import Detail
from eatlock.errors import InferenceMalformedError
from eatlock.services.contracts import InferenceContract
from eatlock.services.images import EncodedImage

ResultT = TypeVar("ResultT", bound=BaseModel)

_FENCED_BLOCK = re.compile(r"\A```[a-zA-Z]*[ \t]*\n?(?P<body>.*?)\n?```\Z", re.DOTALL)


class VisionClient(Protocol):
    """Interface for a vision-capable model with structured outputs."""

    async def respond(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        instructions: str,
        content: list[dict[str, object]],
        schema_name: str,
        schema: dict[str, object],
    ) -> str:
        """Return the raw text the model produced for the request."""


@dataclass(frozen=True)
class LabeledImage:
    """Image placed in the request, optionally preceded by a text label."""

    image: EncodedImage
    label: str | None = None


@dataclass
class VisionService:
    """Builds inference requests and validates results against their contract.

    No retries happen here; callers choose their own strategy.
    """

    client: VisionClient
    model: str
    reasoning_effort: str | None
    store: bool

    async def infer(
        self,
        contract: InferenceContract,
        images: Sequence[LabeledImage],
        detail: Detail = Detail.LOW,
    ) -> BaseModel:
        """Run one inference call and return the validated result model."""
        raw_text = await self.client.respond(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            instructions=contract.instructions,
            content=build_content(contract.prompt, images, detail),
            schema_name=contract.name,
            schema=contract.schema,
        )
        return parse_result(contract.result_model, raw_text)


def build_content(
    prompt: str, images: Sequence[LabeledImage], detail: Detail
) -> list[dict[str, object]]:
    """Interleave text labels and image blocks in request order."""
    content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
    for item in images:
        if item.label:
            content.append({"type": "input_text", "text": item.label})
        content.append(
            {
                "type": "input_image",
                "image_url": item.image.data_url,
                "detail": detail.value,
            }
        )
    return content


def normalize_json_text(text: str) -> str:
    """Strip one fenced code block wrapping the whole text, if present.

    Grammar: optional surrounding whitespace, then ```` ``` ```` with an optional
    language tag, the body, and a closing ```` ``` ````. Anything else is
    returned unchanged apart from outer whitespace.
    """
    stripped = text.strip()
    match = _FENCED_BLOCK.match(stripped)
    if match:
        return match.group("body").strip()
    return stripped


def parse_result(result_model: type[ResultT], raw_text: str) -> ResultT:
    """Parse model output as JSON and validate it against the result model."""
    if not raw_text or not raw_text.strip():
        raise InferenceMalformedError("No text in OpenAI response")
    try:
        payload = json.loads(normalize_json_text(raw_text))
    except json.JSONDecodeError as exc:
        raise InferenceMalformedError(
            f"OpenAI response is not valid JSON: {exc.msg}"
        ) from exc
    try:
        return result_model.model_validate(payload)
    except PydanticValidationError as exc:
        raise InferenceMalformedError(
            f"OpenAI response does not match schema ({exc.error_count()} errors)"
        ) from exc
