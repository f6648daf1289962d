"""Shared provider-side error helpers.

Adapters map SDK exceptions into the ``APIError`` family here so callers and
an external retry utility see one taxonomy with stable retry metadata instead
of five vendors' exception trees.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from switchboard.config import AuthType, credential_hint
from switchboard.errors import (
    APIError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
    _walk_exception_chain,
)

#: Status codes an external retry utility may safely retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})
VALIDATION_STATUS_CODES: frozenset[int] = frozenset({400, 422})

_THROTTLING_CODES = frozenset(
    {
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceQuotaExceededException",
        "RESOURCE_EXHAUSTED",
    }
)
_VALIDATION_CODES = frozenset({"ValidationException", "INVALID_ARGUMENT"})
_AUTH_CODES = frozenset(
    {
        "AccessDeniedException",
        "UnrecognizedClientException",
        "ExpiredTokenException",
        "InvalidSignatureException",
        "PERMISSION_DENIED",
        "UNAUTHENTICATED",
    }
)
_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "etimedout",
    "esockettimedout",
    "deadline exceeded",
)

_PROVIDER_AUTH_TYPES: dict[str, AuthType] = {
    "gemini": AuthType.USE_GEMINI,
    "vertex": AuthType.USE_VERTEX_AI,
    "openai": AuthType.USE_OPENAI,
    "anthropic": AuthType.USE_ANTHROPIC,
    "bedrock": AuthType.USE_BEDROCK,
}


def _valid_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def _boto_response(exc: BaseException) -> dict[str, Any] | None:
    response = getattr(exc, "response", None)
    return response if isinstance(response, dict) else None


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = _valid_status(getattr(e, attr, None))
            if value is not None:
                return value
        boto = _boto_response(e)
        if boto is not None:
            meta = boto.get("ResponseMetadata") or {}
            value = _valid_status(meta.get("HTTPStatusCode"))
            if value is not None:
                return value
            continue
        response = getattr(e, "response", None)
        value = _valid_status(getattr(response, "status_code", None))
        if value is not None:
            return value
    return None


def extract_error_code(exc: BaseException) -> str | None:
    """Find a symbolic error code (botocore ``Error.Code`` or a Google status)."""
    for e in _walk_exception_chain(exc):
        boto = _boto_response(e)
        if boto is not None:
            code = (boto.get("Error") or {}).get("Code")
            if isinstance(code, str) and code:
                return code
        status = getattr(e, "status", None)
        if isinstance(status, str) and status.isupper():
            return status
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    ``google.genai.errors.APIError`` exposes the parsed JSON body via a
    ``.details`` attribute shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def _header_retry_after(headers: Any) -> float | None:
    if headers is None:
        return None
    try:
        raw = headers.get("Retry-After") or headers.get("retry-after")
    except Exception:
        return None
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        boto = _boto_response(e)
        if boto is not None:
            meta = boto.get("ResponseMetadata") or {}
            seconds = _header_retry_after(meta.get("HTTPHeaders"))
        else:
            response = getattr(e, "response", None)
            seconds = _header_retry_after(getattr(response, "headers", None))
        if seconds is not None:
            return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def is_timeout_error(exc: BaseException) -> bool:
    """Whether *exc* (or anything in its chain) is a request timeout."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, TimeoutError)):
            return True
        if getattr(e, "code", None) == "ETIMEDOUT":
            return True
        if getattr(e, "type", None) == "timeout":
            return True
        text = str(e).lower()
        if any(marker in text for marker in _TIMEOUT_MARKERS):
            return True
    return False


def timeout_message(timeout_s: float | None, *, streaming: bool) -> str:
    """Human-readable timeout explanation with concrete remediation steps."""
    after = f" after {timeout_s:g}s" if timeout_s else ""
    mode_tip = (
        "Check network stability for streaming connections\n"
        "- Consider using non-streaming mode for very long inputs"
        if streaming
        else "Consider using streaming mode for long responses"
    )
    return (
        f"Request timeout{after}. Try reducing input length or increasing "
        "timeout in config.\n\n"
        "Troubleshooting tips:\n"
        "- Reduce input length or complexity\n"
        "- Increase timeout: GeneratorConfig(timeout_s=...)\n"
        "- Check network connectivity\n"
        f"- {mode_tip}"
    )


def _auth_hint(
    provider: str, status_code: int | None, error_code: str | None, cause: str
) -> str | None:
    """Name the provider's credential sources for authentication failures."""
    cause_lower = cause.lower()
    if not (
        status_code in {401, 403}
        or error_code in _AUTH_CODES
        or (
            status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
        )
    ):
        return None
    auth_type = _PROVIDER_AUTH_TYPES.get(provider)
    if auth_type is None:
        return "Check credentials/permissions for this provider."
    return f"Check credentials/permissions. {credential_hint(auth_type)}"


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool,
    message: str | None = None,
    hint: str | None = None,
    timeout_s: float | None = None,
    streaming: bool = False,
) -> APIError:
    """Map provider SDK exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped; fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    error_code = extract_error_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    cause = str(exc)

    if is_timeout_error(exc):
        return RequestTimeoutError(
            timeout_message(timeout_s, streaming=streaming),
            hint=hint,
            retryable=True,
            status_code=status_code,
            retry_after_s=retry_after_s,
            provider=provider,
            phase=phase,
        )

    retryable = retry_after_s is not None
    err_cls: type[APIError] = APIError
    if status_code == 429 or error_code in _THROTTLING_CODES:
        err_cls = RateLimitError
        retryable = True
    elif status_code in VALIDATION_STATUS_CODES or error_code in _VALIDATION_CODES:
        err_cls = ValidationError
        retryable = False
    elif isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif allow_network_errors:
        for e in _walk_exception_chain(exc):
            if isinstance(e, httpx.RequestError):
                retryable = True
                break

    derived_hint = (
        hint
        if hint is not None
        else _auth_hint(provider, status_code, error_code, cause)
    )

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=derived_hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
