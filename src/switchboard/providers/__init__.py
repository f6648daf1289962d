"""Provider adapters."""

from .anthropic import AnthropicGenerator
from .base import ContentGenerator, ProviderCapabilities
from .bedrock import BedrockGenerator
from .gemini import GeminiGenerator
from .mock import MockGenerator
from .openai import OpenAICompatibleGenerator

__all__ = [
    "AnthropicGenerator",
    "BedrockGenerator",
    "ContentGenerator",
    "GeminiGenerator",
    "MockGenerator",
    "OpenAICompatibleGenerator",
    "ProviderCapabilities",
]
