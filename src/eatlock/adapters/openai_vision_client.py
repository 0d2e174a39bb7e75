"""OpenAI Responses API client for structured vision inference."""

from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from eatlock.errors import InferenceMalformedError, InferenceUnavailableError
from eatlock.services.vision import VisionClient

_RETRYABLE_STATUSES = {408, 409, 429}


@dataclass
class OpenAIVisionClient(VisionClient):
    """Vision client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAIVisionClient":
        """Create an OpenAI vision client without SDK-level retries."""
        return cls(client=AsyncOpenAI(api_key=api_key, max_retries=0, timeout=60))

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
        """Call OpenAI Responses API with structured outputs."""
        request_payload: dict[str, object] = {
            "model": model,
            "instructions": instructions,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        try:
            response = await self.client.responses.create(**request_payload)
        except openai.APIStatusError as exc:
            raise InferenceUnavailableError(
                f"OpenAI {exc.status_code}: {str(exc.message)[:300]}",
                upstream_status=exc.status_code,
                body_excerpt=str(exc.message),
                retryable=exc.status_code >= 500
                or exc.status_code in _RETRYABLE_STATUSES,
            ) from exc
        except openai.APIConnectionError as exc:
            # APITimeoutError is a subclass.
            raise InferenceUnavailableError(
                f"OpenAI unreachable: {exc}", retryable=True
            ) from exc
        output_text = response.output_text
        if not output_text:
            raise InferenceMalformedError("No text in OpenAI response")
        return output_text

    async def close(self) -> None:
        """Close the underlying OpenAI HTTP session."""
        await self.client.close()
