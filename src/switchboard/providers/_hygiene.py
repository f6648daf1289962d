"""Conversation hygiene: pair every tool call with exactly one result.

Upstream history can be truncated or edited between turns, leaving calls
without results or results repeated for the same call. Providers reject both
with hard errors, so every adapter runs this pass before each request.
"""

from __future__ import annotations

from dataclasses import replace
import logging

from switchboard.providers._messages import Message

logger = logging.getLogger(__name__)


def _filter_once(messages: list[Message]) -> list[Message]:
    call_ids: set[str] = set()
    result_ids: set[str] = set()
    for message in messages:
        if message.role == "assistant" and message.tool_calls:
            call_ids.update(tc.id for tc in message.tool_calls if tc.id)
        elif message.role == "tool" and message.tool_call_id:
            result_ids.add(message.tool_call_id)

    cleaned: list[Message] = []
    kept_results: set[str] = set()
    for message in messages:
        if message.role == "assistant" and message.tool_calls:
            valid = [tc for tc in message.tool_calls if tc.id in result_ids]
            if valid:
                cleaned.append(replace(message, tool_calls=valid))
            elif message.content.strip():
                cleaned.append(replace(message, tool_calls=None))
            else:
                logger.debug("Dropping assistant message with only orphaned calls")
        elif message.role == "tool":
            call_id = message.tool_call_id
            if call_id and call_id in call_ids and call_id not in kept_results:
                cleaned.append(message)
                kept_results.add(call_id)
            else:
                logger.debug("Dropping orphaned or duplicate tool result %r", call_id)
        else:
            cleaned.append(message)
    return cleaned


def clean_orphaned_tool_calls(messages: list[Message]) -> list[Message]:
    """Drop calls without results, results without calls, and duplicate results.

    An assistant message whose calls are all dropped survives only if it has
    non-blank text. The filter repeats until a pass removes nothing, since
    removing a call can orphan a result that passed the previous round.
    """
    current = list(messages)
    while True:
        cleaned = _filter_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def merge_consecutive_assistant_messages(messages: list[Message]) -> list[Message]:
    """Fold adjacent assistant messages into one, preserving order.

    Text is concatenated, tool-call lists are concatenated, and reasoning
    metadata comes from the first message that carries it.
    """
    merged: list[Message] = []
    for message in messages:
        if message.role == "assistant" and merged and merged[-1].role == "assistant":
            prev = merged[-1]
            calls = (prev.tool_calls or []) + (message.tool_calls or [])
            thoughts = (prev.thoughts or []) + (message.thoughts or [])
            merged[-1] = replace(
                prev,
                content=prev.content + message.content,
                tool_calls=calls or None,
                thoughts=thoughts or None,
                reasoning_details=(
                    prev.reasoning_details
                    if prev.reasoning_details is not None
                    else message.reasoning_details
                ),
            )
            continue
        merged.append(message)
    return merged


def apply_hygiene(messages: list[Message]) -> list[Message]:
    """Repair tool-call pairing, then merge adjacent assistant turns."""
    cleaned = clean_orphaned_tool_calls(messages)
    if len(cleaned) != len(messages):
        logger.debug(
            "Hygiene pass removed %d message(s)", len(messages) - len(cleaned)
        )
    return merge_consecutive_assistant_messages(cleaned)
