"""LlmClient JSON generation and embedding validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from switchboard.client import LlmClient, clean_json_text
from switchboard.errors import APIError
from switchboard.types import (
    Candidate,
    Content,
    EmbedRequest,
    EmbedResponse,
    FinishReason,
    GenerateRequest,
    GenerateResponse,
)

pytestmark = pytest.mark.unit


@dataclass
class ScriptedGenerator:
    """Generator double returning fixed text and embeddings."""

    text: str = "{}"
    embeddings: list[list[float]] = field(default_factory=list)
    requests: list[Any] = field(default_factory=list)

    async def generate(self, request: GenerateRequest, prompt_id: str) -> GenerateResponse:
        self.requests.append((request, prompt_id))
        return GenerateResponse(
            candidates=[
                Candidate(
                    content=Content.from_text(self.text, role="model"),
                    finish_reason=FinishReason.STOP,
                )
            ]
        )

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        self.requests.append(request)
        return EmbedResponse(embeddings=self.embeddings)


_SCHEMA = {"type": "object", "properties": {"x": {"type": "integer"}}}


def test_clean_json_text_strips_fences() -> None:
    assert clean_json_text('```json\n{"x": 1}\n```') == '{"x": 1}'
    assert clean_json_text('  {"x": 1} ') == '{"x": 1}'


@pytest.mark.asyncio
async def test_generate_json_uses_deterministic_sampling_and_schema() -> None:
    generator = ScriptedGenerator(text='{"x": 5}')

    result = await LlmClient(generator).generate_json(
        ["give me x"], _SCHEMA, prompt_id="p1", system_instruction="Be exact."
    )

    assert result == {"x": 5}
    request, prompt_id = generator.requests[0]
    assert prompt_id == "p1"
    assert request.temperature == 0.0
    assert request.top_p == 1.0
    assert request.response_schema == _SCHEMA
    assert request.system_instruction == "Be exact."


@pytest.mark.asyncio
async def test_generate_json_accepts_fenced_output() -> None:
    generator = ScriptedGenerator(text='```json\n{"x": 1}\n```')
    assert await LlmClient(generator).generate_json(["x"], _SCHEMA, prompt_id="p") == {
        "x": 1
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "not json", "[1, 2]"])
async def test_generate_json_rejects_unusable_output(text: str) -> None:
    generator = ScriptedGenerator(text=text)

    with pytest.raises(APIError) as excinfo:
        await LlmClient(generator).generate_json(["x"], _SCHEMA, prompt_id="p")

    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_generate_embedding_returns_vectors_in_order() -> None:
    generator = ScriptedGenerator(embeddings=[[0.1], [0.2]])

    vectors = await LlmClient(generator).generate_embedding(["a", "b"])

    assert vectors == [[0.1], [0.2]]
    assert generator.requests[0] == EmbedRequest(texts=["a", "b"])


@pytest.mark.asyncio
async def test_generate_embedding_skips_call_for_no_texts() -> None:
    generator = ScriptedGenerator()
    assert await LlmClient(generator).generate_embedding([]) == []
    assert generator.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("embeddings", "match"),
    [
        ([], "No embeddings"),
        ([[0.1]], "mismatched number"),
        ([[0.1], []], "index 1"),
    ],
)
async def test_generate_embedding_validates_vectors(
    embeddings: list[list[float]], match: str
) -> None:
    generator = ScriptedGenerator(embeddings=embeddings)
    with pytest.raises(APIError, match=match):
        await LlmClient(generator).generate_embedding(["a", "b"])
