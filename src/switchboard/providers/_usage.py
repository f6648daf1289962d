"""Finish-reason and token-usage normalization.

Each provider's stop vocabulary maps onto ``FinishReason`` through a fixed
table; unknown values fall back to a per-provider default instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import TYPE_CHECKING, Any

import tiktoken

from switchboard.types import FinishReason, UsageMetadata

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from switchboard.telemetry import CallRecorder
    from switchboard.types import CountTokensResponse, GenerateRequest

logger = logging.getLogger(__name__)

#: Share of an unattributed total assumed to be prompt tokens. An approximation
#: inherited from observed chat workloads; override per call when known.
DEFAULT_PROMPT_SHARE = 0.7

OPENAI_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "content_filter": FinishReason.SAFETY,
    "tool_calls": FinishReason.STOP,
    "function_call": FinishReason.STOP,
}

ANTHROPIC_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "refusal": FinishReason.SAFETY,
}

BEDROCK_STOP_REASONS: dict[str, FinishReason] = {
    **ANTHROPIC_STOP_REASONS,
    "content_filtered": FinishReason.SAFETY,
    "guardrail_intervened": FinishReason.SAFETY,
}

GEMINI_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.MAX_TOKENS,
    "SAFETY": FinishReason.SAFETY,
    "RECITATION": FinishReason.SAFETY,
    "BLOCKLIST": FinishReason.SAFETY,
    "PROHIBITED_CONTENT": FinishReason.SAFETY,
    "SPII": FinishReason.SAFETY,
    "IMAGE_SAFETY": FinishReason.SAFETY,
}


def map_finish_reason(
    native: Any,
    table: dict[str, FinishReason],
    *,
    default: FinishReason = FinishReason.UNSPECIFIED,
) -> FinishReason:
    """Look *native* up in *table*, returning *default* for anything unmapped."""
    if native is None:
        return default
    # SDK enums expose the wire value via .value or .name.
    key = getattr(native, "value", None) or getattr(native, "name", None) or native
    if not isinstance(key, str):
        key = str(key)
    mapped = table.get(key)
    if mapped is None:
        mapped = table.get(key.lower()) or table.get(key.upper())
    if mapped is None:
        logger.debug("Unmapped finish reason %r; using %s", key, default.value)
        return default
    return mapped


def normalize_usage(
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None = None,
    *,
    cached_tokens: int | None = None,
    prompt_share: float = DEFAULT_PROMPT_SHARE,
) -> UsageMetadata:
    """Build a usage record, estimating the split when only a total is known."""
    prompt = int(prompt_tokens or 0)
    completion = int(completion_tokens or 0)
    total = int(total_tokens or 0) or prompt + completion

    if total > 0 and prompt == 0 and completion == 0:
        prompt = round(total * prompt_share)
        completion = round(total * (1 - prompt_share))

    return UsageMetadata(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        cached_tokens=int(cached_tokens) if cached_tokens else None,
    )


def approximate_tokens(text: str) -> int:
    """Character-count approximation: one token per four characters."""
    return math.ceil(len(text) / 4)


def estimate_tokens(text: str) -> int:
    """Count tokens with tiktoken's ``cl100k_base``, falling back to chars/4."""
    try:
        encoding = tiktoken.get_encoding("cl100k_base")
        return len(encoding.encode(text, disallowed_special=()))
    except Exception as e:
        logger.warning(
            "tiktoken unavailable, falling back to character approximation: %s", e
        )
        return approximate_tokens(text)


def dump_for_estimate(payload: Any) -> str:
    """Serialize arbitrary request content for token estimation."""
    return json.dumps(payload, default=_fallback_encode, ensure_ascii=False)


def _fallback_encode(value: Any) -> Any:
    if hasattr(value, "__dataclass_fields__"):
        return {k: getattr(value, k) for k in value.__dataclass_fields__}
    if hasattr(value, "value"):
        return value.value
    return str(value)


async def estimate_prompt_usage(
    request: GenerateRequest,
    count_tokens: Callable[[GenerateRequest], Awaitable[CountTokensResponse]],
) -> UsageMetadata:
    """Best-effort prompt size for a failed call.

    Uses the adapter's own ``count_tokens`` and falls back to chars/4 over the
    serialized contents when that fails too.
    """
    try:
        tokens = (await count_tokens(request)).total_tokens
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug("count_tokens failed while estimating usage: %s", e)
        tokens = approximate_tokens(dump_for_estimate(request.normalized_contents()))
    return UsageMetadata(prompt_tokens=tokens, total_tokens=tokens)


async def account_failure(
    recorder: CallRecorder,
    request: GenerateRequest,
    error: BaseException,
    count_tokens: Callable[[GenerateRequest], Awaitable[CountTokensResponse]],
) -> None:
    """Estimate usage, emit the error event and log a failed call.

    The caller re-raises *error* afterwards; nothing here swallows it.
    """
    usage = await estimate_prompt_usage(request, count_tokens)
    recorder.failure(error, usage)
    logger.error(
        "%s request failed for model %s (prompt_id=%s): %s",
        recorder.auth_type,
        recorder.model,
        recorder.prompt_id,
        error,
    )
