"""Canonical request/response model shared by every adapter.

The shapes mirror the Gemini content schema: a conversation is an ordered
list of role-tagged ``Content`` turns, each holding text, tool-call or
tool-result parts. Adapters translate to and from this form; callers never
see provider wire formats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel

from switchboard.errors import ConfigurationError

Role = Literal["user", "model"]
ResponseSchemaInput = Union[type[BaseModel], dict[str, Any]]


@dataclass(frozen=True)
class TextPart:
    """Plain text, or internal reasoning when ``thought`` is set."""

    text: str = ""
    thought: bool = False
    #: Opaque provider reasoning metadata carried alongside the text.
    thought_signature: str | None = None


@dataclass(frozen=True)
class ToolCallPart:
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    thought_signature: str | None = None


@dataclass(frozen=True)
class ToolResultPart:
    """The outcome of a tool invocation, referencing the originating call id."""

    id: str | None
    name: str
    response: Any = None


Part = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class Content:
    """One role-tagged conversation turn."""

    role: Role
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str, *, role: Role = "user") -> Content:
        """Build a single-text-part turn."""
        return cls(role=role, parts=[TextPart(text=text)])


ContentInput = Union[Content, str]
SystemInstructionInput = Union[str, Content, Part, list[Union[str, Content, Part]]]


@dataclass(frozen=True)
class ToolDeclaration:
    """A callable tool advertised to the model for one request."""

    name: str
    description: str = ""
    #: JSON-Schema-like parameter tree; sanitized per provider before sending.
    parameters: dict[str, Any] | None = None


@dataclass(frozen=True)
class GenerateRequest:
    """A canonical generation request.

    ``contents`` accepts plain strings as shorthand for single-text user turns.
    ``response_schema`` accepts a Pydantic ``BaseModel`` subclass or a JSON
    schema dict. ``model`` overrides the adapter's configured model.
    """

    contents: list[ContentInput]
    system_instruction: SystemInstructionInput | None = None
    tools: list[ToolDeclaration] | None = None
    response_schema: ResponseSchemaInput | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    model: str | None = None

    def __post_init__(self) -> None:
        """Validate shapes early for clear errors."""
        if isinstance(self.contents, (str, Content)):
            object.__setattr__(self, "contents", [self.contents])
        if self.response_schema is not None and not (
            isinstance(self.response_schema, dict)
            or (
                isinstance(self.response_schema, type)
                and issubclass(self.response_schema, BaseModel)
            )
        ):
            raise ConfigurationError(
                "response_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )
        if self.max_output_tokens is not None and (
            not isinstance(self.max_output_tokens, int) or self.max_output_tokens <= 0
        ):
            raise ConfigurationError(
                "max_output_tokens must be a positive integer",
                hint="Leave it unset to use the provider default.",
            )

    def normalized_contents(self) -> list[Content]:
        """Return contents with string shorthand expanded into user turns."""
        turns: list[Content] = []
        for item in self.contents:
            if isinstance(item, Content):
                turns.append(item)
            elif isinstance(item, str):
                turns.append(Content.from_text(item))
        return turns

    def response_schema_json(self) -> dict[str, Any] | None:
        """Return JSON Schema for provider APIs."""
        schema = self.response_schema
        if schema is None:
            return None
        if isinstance(schema, dict):
            return schema
        return schema.model_json_schema()


class FinishReason(str, Enum):
    """Why a candidate stopped generating."""

    STOP = "STOP"
    MAX_TOKENS = "MAX_TOKENS"
    SAFETY = "SAFETY"
    UNSPECIFIED = "UNSPECIFIED"


@dataclass(frozen=True)
class UsageMetadata:
    """Normalized token accounting for one response."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int | None = None


@dataclass(frozen=True)
class Candidate:
    """A single generated alternative."""

    content: Content
    finish_reason: FinishReason | None = None
    index: int = 0


@dataclass(frozen=True)
class GenerateResponse:
    """A canonical response or stream chunk.

    Usage-only stream chunks carry an empty candidate list.
    """

    candidates: list[Candidate] = field(default_factory=list)
    usage: UsageMetadata | None = None
    response_id: str | None = None
    model_version: str | None = None

    @property
    def parts(self) -> list[Part]:
        """Parts of the first candidate, or an empty list."""
        if not self.candidates:
            return []
        return list(self.candidates[0].content.parts)

    @property
    def text(self) -> str:
        """Concatenated non-thought text of the first candidate."""
        return "".join(
            p.text for p in self.parts if isinstance(p, TextPart) and not p.thought
        )

    @property
    def thoughts(self) -> str:
        """Concatenated reasoning text of the first candidate."""
        return "".join(
            p.text for p in self.parts if isinstance(p, TextPart) and p.thought
        )

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        """Tool calls requested by the first candidate."""
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def finish_reason(self) -> FinishReason | None:
        """Finish reason of the first candidate."""
        if not self.candidates:
            return None
        return self.candidates[0].finish_reason


@dataclass(frozen=True)
class CountTokensResponse:
    """Best-effort prompt size estimate."""

    total_tokens: int


@dataclass(frozen=True)
class EmbedRequest:
    """Texts to embed; ``model`` overrides the configured embedding model."""

    texts: list[str]
    model: str | None = None


@dataclass(frozen=True)
class EmbedResponse:
    """One vector per input text, in input order."""

    embeddings: list[list[float]]
