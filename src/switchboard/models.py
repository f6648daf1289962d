"""Static model metadata: context windows, defaults, Bedrock regional availability."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_GEMINI_MODEL = "gemini-2.5-pro"
DEFAULT_GEMINI_FLASH_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_EMBEDDING_MODEL = "gemini-embedding-001"
DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-ada-002"
DEFAULT_BEDROCK_MODEL = "anthropic.claude-sonnet-4-5-20250929-v1:0"

DEFAULT_TOKEN_LIMIT = 1_048_576

_TOKEN_LIMITS: dict[str, int] = {
    "gemini-1.5-pro": 2_097_152,
    "gemini-1.5-flash": 1_048_576,
    "gemini-2.5-pro": 1_048_576,
    "gemini-2.5-flash": 1_048_576,
    "gemini-2.5-flash-lite": 1_048_576,
    "gemini-2.0-flash": 1_048_576,
    "gemini-2.0-flash-preview-image-generation": 32_000,
    "gpt-4": 8_192,
    "gpt-4-0613": 8_192,
    "gpt-4-32k": 32_768,
    "gpt-4-turbo": 128_000,
    "gpt-4-turbo-preview": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-3.5-turbo": 16_385,
    "gpt-3.5-turbo-16k": 16_385,
    "o1-preview": 128_000,
    "o1-mini": 128_000,
    "gpt-oss-120b": 131_000,
    "gpt-oss-20b": 131_000,
    "claude-opus-4-1-20250805": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-3-7-sonnet-20250219": 200_000,
    "claude-3-5-haiku-20241022": 200_000,
    "qwen/qwen3-coder": 262_144,
    "qwen/qwen3-coder:free": 262_144,
    "qwen/qwen3-235b-a22b-2507": 262_144,
    "qwen/qwen3-235b-a22b-thinking-2507": 262_144,
    "openai/gpt-oss-20b": 131_000,
    "openai/gpt-oss-20b:free": 131_000,
    "openai/gpt-oss-120b:free": 131_000,
    "moonshotai/kimi-k2": 63_000,
    "moonshotai/kimi-k2:free": 32_768,
    "moonshotai/Kimi-K2-Instruct": 128_000,
    "Qwen3-Coder-480B-A35B-Instruct": 262_144,
}


def token_limit(model: str) -> int:
    """Return the context window for *model*, defaulting to 1M tokens."""
    return _TOKEN_LIMITS.get(model, DEFAULT_TOKEN_LIMIT)


_CLAUDE_45_REGIONS = (
    "us-east-1",
    "us-west-2",
    "eu-west-1",
    "eu-central-1",
    "ap-southeast-1",
    "ap-northeast-1",
)
_CLAUDE_CORE_REGIONS = ("us-east-1", "us-west-2", "eu-west-1", "ap-southeast-1")

BEDROCK_MODEL_REGIONS: dict[str, tuple[str, ...]] = {
    "anthropic.claude-opus-4-5-20251101-v1:0": _CLAUDE_45_REGIONS,
    "anthropic.claude-sonnet-4-5-20250929-v1:0": _CLAUDE_45_REGIONS,
    "anthropic.claude-haiku-4-5-20251001-v1:0": _CLAUDE_45_REGIONS,
    "anthropic.claude-sonnet-4-20250514-v1:0": _CLAUDE_CORE_REGIONS,
    "anthropic.claude-3-7-sonnet-20250219-v1:0": _CLAUDE_CORE_REGIONS,
    "anthropic.claude-3-5-sonnet-20241022-v2:0": _CLAUDE_45_REGIONS,
    "anthropic.claude-3-5-sonnet-20240620-v1:0": _CLAUDE_CORE_REGIONS,
    "anthropic.claude-3-opus-20240229-v1:0": ("us-east-1", "us-west-2"),
    "anthropic.claude-3-sonnet-20240229-v1:0": _CLAUDE_CORE_REGIONS,
    "anthropic.claude-3-haiku-20240307-v1:0": (
        "us-east-1",
        "us-west-2",
        "eu-west-1",
        "ap-southeast-1",
        "ap-northeast-1",
    ),
}

# Cross-region inference profiles prefix the base model id.
_INFERENCE_PROFILE_PREFIXES = ("us.", "eu.", "apac.", "global.")
_BEDROCK_MODEL_PREFIXES = ("anthropic.", "amazon.", "meta.", "mistral.", "cohere.")

BEDROCK_EMBEDDING_MODELS = (
    "amazon.titan-embed-text-v2:0",
    "amazon.titan-embed-text-v1",
    "cohere.embed-english-v3",
    "cohere.embed-multilingual-v3",
)


@dataclass(frozen=True)
class RegionCheck:
    """Outcome of a Bedrock model/region availability lookup."""

    valid: bool
    message: str | None = None
    suggestions: tuple[str, ...] = ()


def _base_bedrock_model(model: str) -> str:
    for prefix in _INFERENCE_PROFILE_PREFIXES:
        if model.startswith(prefix):
            return model[len(prefix) :]
    return model


def is_bedrock_model(model: str) -> bool:
    """Whether *model* looks like a Bedrock foundation model or inference profile id."""
    return _base_bedrock_model(model).startswith(_BEDROCK_MODEL_PREFIXES)


def check_bedrock_model_region(model: str, region: str) -> RegionCheck:
    """Check *model* against the static regional availability table.

    Cross-region inference profiles and models missing from the table pass;
    AWS routes the former and may have released the latter after this table
    was last updated.
    """
    if model.startswith(_INFERENCE_PROFILE_PREFIXES):
        return RegionCheck(valid=True)

    regions = BEDROCK_MODEL_REGIONS.get(model)
    if regions is None:
        return RegionCheck(
            valid=True,
            message=(
                f"Model {model} is not in the known model list; "
                "it may work if it is newly released."
            ),
        )

    if region not in regions:
        listed = "\n".join(f"  - {r}" for r in regions)
        return RegionCheck(
            valid=False,
            message=(
                f"Model {model} is not available in region {region}.\n\n"
                f"Available regions for this model:\n{listed}\n\n"
                f'Switch with: export AWS_REGION="{regions[0]}"\n'
                f"or list models in {region}: aws bedrock list-foundation-models "
                f"--region {region} --by-provider Anthropic"
            ),
            suggestions=regions,
        )
    return RegionCheck(valid=True)
