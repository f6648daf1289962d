"""Utility client for one-shot JSON generation and embeddings.

Wraps any ``ContentGenerator`` with the deterministic sampling and response
validation that internal helper calls (classification, summarization, routing)
need.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from switchboard.errors import APIError
from switchboard.types import EmbedRequest, GenerateRequest

if TYPE_CHECKING:
    from switchboard.providers.base import ContentGenerator
    from switchboard.types import ContentInput, SystemInstructionInput

logger = logging.getLogger(__name__)

_JSON_FENCE_PREFIX = "```json"
_FENCE = "```"


def clean_json_text(text: str) -> str:
    """Strip a surrounding ```json fence, which some models add despite JSON mode."""
    text = text.strip()
    if text.startswith(_JSON_FENCE_PREFIX) and text.endswith(_FENCE):
        logger.debug("Removing markdown fence from JSON response")
        return text[len(_JSON_FENCE_PREFIX) : len(text) - len(_FENCE)].strip()
    return text


class LlmClient:
    """Deterministic helper calls on top of a content generator."""

    def __init__(self, generator: ContentGenerator) -> None:
        """Wrap *generator*."""
        self.generator = generator

    async def generate_json(
        self,
        contents: list[ContentInput],
        schema: dict[str, Any],
        *,
        prompt_id: str,
        model: str | None = None,
        system_instruction: SystemInstructionInput | None = None,
    ) -> dict[str, Any]:
        """Generate a JSON object matching *schema* with temperature 0 and top_p 1.

        Raises:
            APIError: The response was empty or not a JSON object. Marked
                retryable so an outer retry policy may try again.
        """
        request = GenerateRequest(
            contents=contents,
            system_instruction=system_instruction,
            response_schema=schema,
            temperature=0.0,
            top_p=1.0,
            model=model,
        )
        response = await self.generator.generate(request, prompt_id)

        text = clean_json_text(response.text)
        if not text:
            raise APIError(
                "API returned an empty response for generate_json",
                retryable=True,
                phase="generate_json",
            )
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise APIError(
                f"Failed to parse API response as JSON: {e}",
                hint="The model ignored the schema; retrying usually helps.",
                retryable=True,
                phase="generate_json",
            ) from e
        if not isinstance(parsed, dict):
            raise APIError(
                f"Expected a JSON object, got {type(parsed).__name__}",
                retryable=True,
                phase="generate_json",
            )
        return parsed

    async def generate_embedding(
        self, texts: list[str], *, model: str | None = None
    ) -> list[list[float]]:
        """Embed *texts*, validating one non-empty vector per input."""
        if not texts:
            return []
        response = await self.generator.embed(EmbedRequest(texts=texts, model=model))
        embeddings = response.embeddings
        if not embeddings:
            raise APIError("No embeddings found in API response.", phase="embed")
        if len(embeddings) != len(texts):
            raise APIError(
                "API returned a mismatched number of embeddings. "
                f"Expected {len(texts)}, got {len(embeddings)}.",
                phase="embed",
            )
        for index, values in enumerate(embeddings):
            if not values:
                raise APIError(
                    "API returned an empty embedding for input text at index "
                    f"{index}: {texts[index]!r}",
                    phase="embed",
                )
        return embeddings
