"""Content generator protocol: the interface every adapter implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.types import (
        CountTokensResponse,
        EmbedRequest,
        EmbedResponse,
        GenerateRequest,
        GenerateResponse,
    )


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by adapters."""

    streaming: bool = True
    embeddings: bool = False
    #: Token counts come from a provider endpoint rather than a local tokenizer.
    count_tokens_native: bool = False
    #: Structured output without the synthetic schema tool.
    structured_outputs: bool = False
    reasoning: bool = False


@runtime_checkable
class ContentGenerator(Protocol):
    """Canonical content generation interface.

    Callers stay provider-agnostic: every adapter accepts the same canonical
    requests and returns the same canonical responses.
    """

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate a complete response."""
        ...

    def generate_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream incremental responses; tool calls arrive whole."""
        ...

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Estimate the prompt size of *request*."""
        ...

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Embed texts, or raise UnsupportedCapabilityError."""
        ...

    async def aclose(self) -> None:
        """Release the underlying SDK client."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for this adapter."""
        ...
