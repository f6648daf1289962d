"""Generator factory dispatch and the mock generator."""

from __future__ import annotations

import pytest

from switchboard import (
    AnthropicGenerator,
    BedrockGenerator,
    ContentGenerator,
    GeminiGenerator,
    LlmClient,
    LoggingTelemetrySink,
    MockGenerator,
    OpenAICompatibleGenerator,
    create_content_generator,
)
from switchboard.config import AuthType, GeneratorConfig
from switchboard.types import EmbedRequest, FinishReason, GenerateRequest
from tests.conftest import (
    ANTHROPIC_MODEL,
    BEDROCK_MODEL,
    GEMINI_MODEL,
    OPENAI_MODEL,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("config", "expected"),
    [
        (
            GeneratorConfig(
                auth_type=AuthType.USE_GEMINI, model=GEMINI_MODEL, api_key="k"
            ),
            GeminiGenerator,
        ),
        (
            GeneratorConfig(
                auth_type=AuthType.USE_VERTEX_AI,
                model=GEMINI_MODEL,
                vertex_project="proj",
                vertex_location="us-central1",
            ),
            GeminiGenerator,
        ),
        (
            GeneratorConfig(
                auth_type=AuthType.USE_OPENAI, model=OPENAI_MODEL, api_key="k"
            ),
            OpenAICompatibleGenerator,
        ),
        (
            GeneratorConfig(
                auth_type=AuthType.USE_ANTHROPIC, model=ANTHROPIC_MODEL, api_key="k"
            ),
            AnthropicGenerator,
        ),
        (
            GeneratorConfig(
                auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL, region="us-east-1"
            ),
            BedrockGenerator,
        ),
    ],
    ids=["gemini", "vertex", "openai", "anthropic", "bedrock"],
)
def test_factory_dispatches_on_auth_type(
    config: GeneratorConfig, expected: type
) -> None:
    generator = create_content_generator(config)

    assert type(generator) is expected
    assert isinstance(generator, ContentGenerator)
    assert isinstance(generator._telemetry, LoggingTelemetrySink)


def test_factory_uses_mock_when_requested(sink) -> None:
    config = GeneratorConfig(
        auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL, use_mock=True
    )

    generator = create_content_generator(config, telemetry=sink)

    assert isinstance(generator, MockGenerator)
    assert isinstance(generator, ContentGenerator)


# =============================================================================
# Mock generator
# =============================================================================


def _mock(sink=None) -> MockGenerator:
    config = GeneratorConfig(
        auth_type=AuthType.USE_OPENAI, model=OPENAI_MODEL, use_mock=True
    )
    return MockGenerator(config, telemetry=sink)


@pytest.mark.asyncio
async def test_mock_echoes_last_user_text(sink) -> None:
    response = await _mock(sink).generate(
        GenerateRequest(contents=["first", "second"]), "p-1"
    )

    assert response.text == "echo: second"
    assert response.finish_reason is FinishReason.STOP
    assert response.response_id == "mock-p-1"
    (event,) = sink.responses
    assert event.streamed is False
    assert event.usage == response.usage


@pytest.mark.asyncio
async def test_mock_stream_yields_content_then_usage(sink) -> None:
    chunks = [
        c
        async for c in _mock(sink).generate_stream(
            GenerateRequest(contents=["hi"]), "p"
        )
    ]

    content, usage = chunks
    assert content.text == "echo: hi"
    assert content.usage is None
    assert usage.candidates == []
    assert usage.usage is not None
    (event,) = sink.events
    assert event.streamed is True


@pytest.mark.asyncio
async def test_mock_embeddings_are_deterministic() -> None:
    generator = _mock()

    first = await generator.embed(EmbedRequest(texts=["a", "b"]))
    second = await generator.embed(EmbedRequest(texts=["a"]))

    assert len(first.embeddings[0]) == 8
    assert first.embeddings[0] == second.embeddings[0]
    assert first.embeddings[0] != first.embeddings[1]


@pytest.mark.asyncio
async def test_llm_client_over_mock_generator() -> None:
    client = LlmClient(_mock())

    assert await client.generate_json(["x"], {"type": "object"}, prompt_id="p") == {}
    vectors = await client.generate_embedding(["a", "b"])
    assert len(vectors) == 2
