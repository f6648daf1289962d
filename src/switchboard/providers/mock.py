"""Mock generator for testing."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from switchboard.providers._usage import approximate_tokens, dump_for_estimate
from switchboard.providers.base import ProviderCapabilities
from switchboard.telemetry import CallRecorder
from switchboard.types import (
    Candidate,
    Content,
    CountTokensResponse,
    EmbedResponse,
    FinishReason,
    GenerateResponse,
    TextPart,
    UsageMetadata,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.config import GeneratorConfig
    from switchboard.telemetry import TelemetrySink
    from switchboard.types import EmbedRequest, GenerateRequest

MOCK_EMBEDDING_DIMENSIONS = 8


class MockGenerator:
    """Generator for testing without API calls.

    Echoes the last user text; schema requests get ``{}`` so JSON callers
    always parse.
    """

    def __init__(
        self, config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
    ) -> None:
        """Initialize with the config whose provider is being mocked."""
        self.config = config
        self.model = config.model
        self._telemetry = telemetry

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(streaming=True, embeddings=True)

    def _reply(self, request: GenerateRequest) -> str:
        if request.response_schema is not None:
            return "{}"
        texts = [
            part.text
            for turn in request.normalized_contents()
            if turn.role == "user"
            for part in turn.parts
            if isinstance(part, TextPart) and part.text.strip()
        ]
        return f"echo: {texts[-1][:100] if texts else ''}"

    def _usage(self, request: GenerateRequest, reply: str) -> UsageMetadata:
        prompt = approximate_tokens(dump_for_estimate(request.normalized_contents()))
        completion = approximate_tokens(reply)
        return UsageMetadata(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )

    def _respond(
        self, request: GenerateRequest, prompt_id: str, *, streamed: bool
    ) -> GenerateResponse:
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
            streamed=streamed,
        )
        reply = self._reply(request)
        response = GenerateResponse(
            candidates=[
                Candidate(
                    content=Content.from_text(reply, role="model"),
                    finish_reason=FinishReason.STOP,
                )
            ],
            usage=self._usage(request, reply),
            response_id=f"mock-{prompt_id}",
            model_version=model,
        )
        recorder.success(response.usage, response_id=response.response_id)
        return response

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Return a deterministic mock response."""
        return self._respond(request, prompt_id, streamed=False)

    async def generate_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Yield the mock reply as one content chunk and one usage chunk."""
        response = self._respond(request, prompt_id, streamed=True)
        yield GenerateResponse(
            candidates=response.candidates,
            response_id=response.response_id,
            model_version=response.model_version,
        )
        yield GenerateResponse(
            usage=response.usage,
            response_id=response.response_id,
            model_version=response.model_version,
        )

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Approximate prompt tokens as characters / 4."""
        text = dump_for_estimate(request.normalized_contents())
        return CountTokensResponse(total_tokens=approximate_tokens(text))

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Return a deterministic vector per text derived from its hash."""
        vectors: list[list[float]] = []
        for text in request.texts:
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            vectors.append(
                [b / 255.0 for b in digest[:MOCK_EMBEDDING_DIMENSIONS]]
            )
        return EmbedResponse(embeddings=vectors)

    async def aclose(self) -> None:
        """Nothing to release."""
