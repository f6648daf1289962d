"""Neutral message model and canonical-to-message conversion.

Every adapter lowers the canonical ``Content`` list into this role-tagged
message list first, runs the hygiene pass over it, then serializes the result
into its own wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any

from switchboard.providers._compat import (
    REASONING_DETAILS_MARKER,
    strip_reasoning_marker,
)
from switchboard.types import (
    Content,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCall:
    """A tool call carried by an assistant message."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    thought_signature: str | None = None

    @property
    def arguments(self) -> str:
        """Arguments serialized as a JSON string."""
        return json.dumps(self.args)


@dataclass(frozen=True)
class Message:
    """A standard conversational message turn.

    ``role`` is one of ``user``, ``assistant`` or ``tool``. Tool messages carry
    the originating call id, the tool name and the raw ``result`` alongside
    its serialized ``content``. ``thoughts`` keeps reasoning parts for
    adapters that can replay them; they are never rendered as text.
    """

    role: str
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None
    name: str | None = None
    result: Any = None
    thoughts: list[TextPart] | None = None
    #: OpenRouter ``reasoning_details`` recovered from marker-tagged thoughts.
    reasoning_details: Any = None


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, TextPart):
        return part.text or ""
    if isinstance(part, Content):
        return "\n".join(_part_text(p) for p in part.parts if _part_text(p))
    return ""


def extract_system_text(system_instruction: Any) -> str:
    """Join the textual parts of a system instruction with newlines.

    Accepts a string, a ``Content``, a single part, or a list of those.
    Non-text parts contribute nothing.
    """
    if system_instruction is None:
        return ""
    if isinstance(system_instruction, list):
        pieces = [_part_text(item) for item in system_instruction]
        return "\n".join(p for p in pieces if p)
    return _part_text(system_instruction)


def serialize_tool_result(response: Any) -> str:
    """Render a tool result payload as the string most providers expect."""
    if isinstance(response, str):
        return response
    if response is None:
        return ""
    try:
        return json.dumps(response)
    except (TypeError, ValueError):
        return str(response)


def _parse_reasoning_details(text: str) -> Any:
    payload = text[len(REASONING_DETAILS_MARKER) :]
    try:
        return json.loads(payload)
    except ValueError:
        logger.debug("Ignoring malformed reasoning_details payload")
        return None


class _CallIds:
    """Assign stable ids to calls and resolve id-less results by tool name."""

    def __init__(self) -> None:
        self._counter = 0
        self._pending: list[tuple[str, str]] = []

    def for_call(self, part: ToolCallPart) -> str:
        call_id = part.id or f"call_{self._counter}"
        self._counter += 1
        self._pending.append((call_id, part.name))
        return call_id

    def for_result(self, part: ToolResultPart) -> str | None:
        if part.id:
            self._pending = [p for p in self._pending if p[0] != part.id]
            return part.id
        for idx, (call_id, name) in enumerate(self._pending):
            if name == part.name:
                del self._pending[idx]
                return call_id
        return None


def contents_to_messages(contents: list[Content]) -> list[Message]:
    """Lower canonical turns into neutral messages.

    Each turn's parts are bucketed into text, thoughts, tool calls and tool
    results. Results become one ``tool`` message each; a model turn with
    calls becomes a single assistant message holding its text and every call;
    anything else becomes a plain text message, dropped when empty.
    """
    messages: list[Message] = []
    ids = _CallIds()

    for turn in contents:
        if not isinstance(turn, Content):
            continue
        texts: list[str] = []
        thoughts: list[TextPart] = []
        calls: list[ToolCallPart] = []
        results: list[ToolResultPart] = []
        reasoning_details: Any = None

        for part in turn.parts or []:
            if isinstance(part, str):
                part = TextPart(text=part)
            if isinstance(part, TextPart):
                text = part.text or ""
                if part.thought:
                    if text.startswith(REASONING_DETAILS_MARKER):
                        reasoning_details = _parse_reasoning_details(text)
                    else:
                        thoughts.append(part)
                    continue
                cleaned = strip_reasoning_marker(text)
                if cleaned:
                    texts.append(cleaned)
            elif isinstance(part, ToolCallPart):
                calls.append(part)
            elif isinstance(part, ToolResultPart):
                results.append(part)

        if results:
            for result in results:
                messages.append(
                    Message(
                        role="tool",
                        content=serialize_tool_result(result.response),
                        tool_call_id=ids.for_result(result),
                        name=result.name,
                        result=result.response,
                    )
                )
            if texts:
                role = "assistant" if turn.role == "model" else "user"
                messages.append(Message(role=role, content="\n".join(texts)))
            continue

        if turn.role == "model" and calls:
            messages.append(
                Message(
                    role="assistant",
                    content="\n".join(texts),
                    tool_calls=[
                        ToolCall(
                            id=ids.for_call(call),
                            name=call.name or "",
                            args=dict(call.args or {}),
                            thought_signature=call.thought_signature,
                        )
                        for call in calls
                    ],
                    thoughts=thoughts or None,
                    reasoning_details=reasoning_details,
                )
            )
            continue

        text = "\n".join(texts)
        if not text:
            continue
        role = "assistant" if turn.role == "model" else "user"
        messages.append(
            Message(
                role=role,
                content=text,
                thoughts=(thoughts or None) if role == "assistant" else None,
                reasoning_details=reasoning_details if role == "assistant" else None,
            )
        )

    return messages

