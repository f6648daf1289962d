"""Switchboard: one content-generation interface over many LLM providers.

Public API:
    - create_content_generator(): Build the adapter for a GeneratorConfig
    - GeneratorConfig / AuthType: Provider selection and credentials
    - GenerateRequest / GenerateResponse: The canonical request/response model
    - LlmClient: JSON generation and embedding helpers
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from switchboard.client import LlmClient
from switchboard.config import AuthType, GeneratorConfig, SamplingParams
from switchboard.errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    RequestTimeoutError,
    SwitchboardError,
    ToolCallParseError,
    UnsupportedCapabilityError,
    ValidationError,
)
from switchboard.providers import (
    AnthropicGenerator,
    BedrockGenerator,
    ContentGenerator,
    GeminiGenerator,
    MockGenerator,
    OpenAICompatibleGenerator,
)
from switchboard.telemetry import (
    ApiErrorEvent,
    ApiResponseEvent,
    LoggingTelemetrySink,
    RecordingTelemetrySink,
    TelemetrySink,
)
from switchboard.types import (
    Candidate,
    Content,
    CountTokensResponse,
    EmbedRequest,
    EmbedResponse,
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    TextPart,
    ToolCallPart,
    ToolDeclaration,
    ToolResultPart,
    UsageMetadata,
)

if TYPE_CHECKING:
    from collections.abc import Callable

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchboard-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchboard").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)

_GENERATORS: dict[AuthType, Callable[..., ContentGenerator]] = {
    AuthType.USE_GEMINI: GeminiGenerator,
    AuthType.USE_VERTEX_AI: GeminiGenerator,
    AuthType.USE_OPENAI: OpenAICompatibleGenerator,
    AuthType.USE_ANTHROPIC: AnthropicGenerator,
    AuthType.USE_BEDROCK: BedrockGenerator,
}


def create_content_generator(
    config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
) -> ContentGenerator:
    """Build the adapter for ``config.auth_type``.

    Args:
        config: Resolved generator configuration.
        telemetry: Sink receiving one event per generate call. Defaults to a
            ``LoggingTelemetrySink``.

    Example:
        config = GeneratorConfig(auth_type=AuthType.USE_GEMINI, model="gemini-2.5-pro")
        generator = create_content_generator(config)
        response = await generator.generate(GenerateRequest(["Hi"]), "prompt-1")
    """
    if telemetry is None:
        telemetry = LoggingTelemetrySink()
    if config.use_mock:
        logger.debug("Using mock generator for %s", config.provider_name)
        return MockGenerator(config, telemetry=telemetry)
    return _GENERATORS[config.auth_type](config, telemetry=telemetry)


__all__ = [
    "APIError",
    "AnthropicGenerator",
    "ApiErrorEvent",
    "ApiResponseEvent",
    "AuthType",
    "AuthenticationError",
    "BedrockGenerator",
    "Candidate",
    "ConfigurationError",
    "Content",
    "ContentGenerator",
    "CountTokensResponse",
    "EmbedRequest",
    "EmbedResponse",
    "FinishReason",
    "GeminiGenerator",
    "GenerateRequest",
    "GenerateResponse",
    "GeneratorConfig",
    "LlmClient",
    "LoggingTelemetrySink",
    "MockGenerator",
    "OpenAICompatibleGenerator",
    "RateLimitError",
    "RecordingTelemetrySink",
    "RequestTimeoutError",
    "SamplingParams",
    "SwitchboardError",
    "TelemetrySink",
    "TextPart",
    "ToolCallParseError",
    "ToolCallPart",
    "ToolDeclaration",
    "ToolResultPart",
    "UnsupportedCapabilityError",
    "UsageMetadata",
    "ValidationError",
    "__version__",
    "create_content_generator",
]
