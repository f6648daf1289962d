"""Model-family and vendor compatibility tables.

Behaviors that only some models or hosts need are looked up here by model
name or base URL instead of being scattered through the adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from importlib.metadata import PackageNotFoundError, version
import json
import platform
from typing import Any
from urllib.parse import urlparse

#: Prefix under which OpenRouter reasoning details travel inside thought text.
REASONING_DETAILS_MARKER = "__OPENROUTER_REASONING_DETAILS__:"

#: Name of the synthetic tool used to simulate structured output.
SCHEMA_TOOL_NAME = "respond_in_schema"
SCHEMA_TOOL_DESCRIPTION = "Provide the response in the specified JSON schema format"

_METADATA_HOSTS = frozenset({"api.openai.com", "dashscope.aliyuncs.com"})
_OPENROUTER_HOST_FRAGMENT = "openrouter.ai"
_OPENROUTER_REFERER = "https://github.com/switchboard-llm/switchboard"
_OPENROUTER_TITLE = "Switchboard"


@dataclass(frozen=True)
class ModelQuirks:
    """Behavior flags for one model family."""

    #: Overrides any sampling temperature; some families reject other values.
    forced_temperature: float | None = None
    #: Send ``store=True`` so completions are retained for evals/distillation.
    store: bool = False
    #: Assistant messages need an empty ``reasoning_content`` on multi-turn calls.
    reasoning_content_placeholder: bool = False
    #: The endpoint errors when ``tool_choice`` names a specific function.
    rejects_forced_tool_choice: bool = False
    #: Reasoning effort requested when the model is reached through OpenRouter.
    openrouter_reasoning_effort: str | None = None


# (substrings matched against the lowercased model name, flags to apply)
_FAMILY_RULES: tuple[tuple[tuple[str, ...], dict[str, Any]], ...] = (
    (("gpt-5", "gpt5", "gpt-4o", "gpt4o"), {"forced_temperature": 1.0}),
    (("gpt-", "gpt5", "gpt4"), {"store": True}),
    (
        ("deepseek-reasoner", "deepseek-r1"),
        {"reasoning_content_placeholder": True, "rejects_forced_tool_choice": True},
    ),
    (
        ("gemini-3", "gemini-2.5", "gemini-exp", "gemini-2.0-flash-thinking"),
        {"openrouter_reasoning_effort": "high"},
    ),
)


def quirks_for(model: str) -> ModelQuirks:
    """Merge every family rule whose pattern occurs in *model*."""
    name = model.lower()
    quirks = ModelQuirks()
    for patterns, flags in _FAMILY_RULES:
        if any(p in name for p in patterns):
            quirks = replace(quirks, **flags)
    return quirks


def _package_version() -> str:
    try:
        return version("switchboard-llm")
    except PackageNotFoundError:
        return "0.0.0+unknown"


def _hostname(base_url: str | None) -> str | None:
    if not base_url:
        return None
    try:
        return urlparse(base_url).hostname
    except ValueError:
        return None


def is_openrouter(base_url: str | None) -> bool:
    """Whether requests go through OpenRouter."""
    return bool(base_url) and _OPENROUTER_HOST_FRAGMENT in str(base_url)


def accepts_request_metadata(base_url: str | None) -> bool:
    """Only first-party OpenAI and DashScope accept a ``metadata`` field."""
    host = _hostname(base_url or "https://api.openai.com/v1")
    return host in _METADATA_HOSTS


def default_headers(base_url: str | None) -> dict[str, str]:
    """Vendor headers for OpenAI-compatible clients."""
    headers = {
        "User-Agent": (
            f"Switchboard/{_package_version()} ({platform.system().lower()}; "
            f"{platform.machine().lower()})"
        ),
    }
    if is_openrouter(base_url):
        headers["HTTP-Referer"] = _OPENROUTER_REFERER
        headers["X-Title"] = _OPENROUTER_TITLE
    return headers


def strip_reasoning_marker(text: str) -> str:
    """Drop any line carrying the reasoning-details marker."""
    if REASONING_DETAILS_MARKER not in text:
        return text
    kept = [line for line in text.split("\n") if REASONING_DETAILS_MARKER not in line]
    return "\n".join(kept).strip()


_MIN_SIGNATURE_DATA_LENGTH = 64
_UUID_LIKE_MAX_LENGTH = 100
_VALID_SIGNATURE_PREFIXES = ("Ci", "Ev", "Ch", "Co")
_UUID_BASE64_PREFIXES = ("ZT", "ND", "MW", "Yz", "OD")


def _decode_signature(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def is_valid_thought_signature(value: Any) -> bool:
    """Tell genuine encrypted reasoning metadata from corrupted placeholders.

    *value* is a reasoning-details entry, a list of entries, or their JSON
    encoding. Every entry must carry a string ``data`` of at least 64
    characters; entries without a known prefix that look like a base64 UUID
    and stay under 100 characters are rejected. Non-dict list members are
    ignored.
    """
    decoded = _decode_signature(value)
    if not decoded:
        return False
    entries = decoded if isinstance(decoded, list) else [decoded]
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        data = entry.get("data")
        if not isinstance(data, str):
            return False
        if len(data) < _MIN_SIGNATURE_DATA_LENGTH:
            return False
        if not data.startswith(_VALID_SIGNATURE_PREFIXES):
            if (
                data.startswith(_UUID_BASE64_PREFIXES)
                and len(data) < _UUID_LIKE_MAX_LENGTH
            ):
                return False
    return True


def encode_signature(value: Any) -> str | None:
    """Encode provider reasoning metadata for the canonical signature field."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


def decode_signature(value: str | None) -> Any:
    """Inverse of ``encode_signature``: JSON-decoded when possible, else raw."""
    if value is None:
        return None
    decoded = _decode_signature(value)
    return value if decoded is None else decoded
