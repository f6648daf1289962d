"""Exception hierarchy for Switchboard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchboardError):
    """Configuration validation or resolution failed."""


class AuthenticationError(ConfigurationError):
    """Credentials for the selected provider are missing or unusable.

    Raised before any network call; the hint lists every credential source
    the provider accepts.
    """


class UnsupportedCapabilityError(SwitchboardError):
    """The provider or model cannot perform the requested operation."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
        capability: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.capability = capability


class ToolCallParseError(SwitchboardError):
    """A provider returned tool-call arguments that cannot be recovered."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        tool_name: str | None = None,
        raw_arguments: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class APIError(SwitchboardError):
    """API call failed.

    Adapters attach retry metadata so an external retry utility can make
    bounded decisions without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429 or provider throttling)."""


class RequestTimeoutError(APIError):
    """The provider did not answer within the configured timeout."""


class ValidationError(APIError):
    """The provider rejected the request shape (HTTP 400/422)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
