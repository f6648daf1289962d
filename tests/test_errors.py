"""Error taxonomy and provider error mapping."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from switchboard.errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    RequestTimeoutError,
    SwitchboardError,
    ValidationError,
)
from switchboard.providers._errors import (
    extract_error_code,
    extract_retry_after_s,
    extract_status_code,
    is_timeout_error,
    wrap_provider_error,
)

pytestmark = pytest.mark.unit


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    def __init__(self, message: str, *, response: Any = None, **attrs: Any) -> None:
        super().__init__(message)
        self.response = response
        for key, value in attrs.items():
            setattr(self, key, value)


def _client_error(code: str, status: int, headers: dict[str, str] | None = None):
    """Shape of a botocore ClientError: a dict ``response`` attribute."""
    return _SdkError(
        f"An error occurred ({code})",
        response={
            "Error": {"Code": code, "Message": "nope"},
            "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": headers or {}},
        },
    )


def _wrap(exc: BaseException, provider: str = "openai", **kwargs: Any) -> APIError:
    return wrap_provider_error(
        exc, provider=provider, phase="generate", allow_network_errors=True, **kwargs
    )


# =============================================================================
# Hierarchy
# =============================================================================


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=429,
        retry_after_s=2.0,
        provider="gemini",
        phase="generate",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.provider == "gemini"
    assert err.phase == "generate"


def test_subclass_hierarchy() -> None:
    for cls in (RateLimitError, RequestTimeoutError, ValidationError):
        assert issubclass(cls, APIError)
    assert issubclass(AuthenticationError, ConfigurationError)
    assert issubclass(ConfigurationError, SwitchboardError)


# =============================================================================
# Extraction
# =============================================================================


def test_status_and_retry_after_from_http_response() -> None:
    exc = _SdkError("slow down", response=_Resp(429, {"Retry-After": "2"}))

    assert extract_status_code(exc) == 429
    assert extract_retry_after_s(exc) == 2.0


def test_status_code_is_found_along_the_cause_chain() -> None:
    try:
        try:
            raise _SdkError("inner", status_code=503)
        except _SdkError as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as outer:
        assert extract_status_code(outer) == 503


def test_botocore_client_error_fields() -> None:
    exc = _client_error("ThrottlingException", 400, {"retry-after": "3"})

    assert extract_status_code(exc) == 400
    assert extract_error_code(exc) == "ThrottlingException"
    assert extract_retry_after_s(exc) == 3.0


@pytest.mark.parametrize(
    ("retry_delay", "expected"),
    [("8.352104981s", 8.352104981), ("8s", 8.0), ("soon", None)],
)
def test_google_retry_info(retry_delay: str, expected: float | None) -> None:
    exc = _SdkError(
        "quota",
        details={
            "error": {
                "details": [
                    {
                        "@type": "type.googleapis.com/google.rpc.RetryInfo",
                        "retryDelay": retry_delay,
                    }
                ]
            }
        },
    )
    assert extract_retry_after_s(exc) == expected


def test_google_status_string_is_an_error_code() -> None:
    exc = _SdkError("quota", code=429, status="RESOURCE_EXHAUSTED")
    assert extract_error_code(exc) == "RESOURCE_EXHAUSTED"
    assert extract_status_code(exc) == 429


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ReadTimeout("read"),
        TimeoutError(),
        _SdkError("connect ETIMEDOUT 10.0.0.1:443"),
        _SdkError("Request timed out."),
    ],
)
def test_timeout_detection(exc: BaseException) -> None:
    assert is_timeout_error(exc)


def test_ordinary_errors_are_not_timeouts() -> None:
    assert not is_timeout_error(_SdkError("invalid model"))


# =============================================================================
# Mapping
# =============================================================================


def test_wrap_maps_429_to_rate_limit_error() -> None:
    err = _wrap(_SdkError("rate limited", response=_Resp(429, {"Retry-After": "2"})))

    assert isinstance(err, RateLimitError)
    assert err.retryable is True
    assert err.retry_after_s == 2.0
    assert err.provider == "openai"
    assert err.phase == "generate"
    assert "429" in str(err)


def test_wrap_maps_bedrock_throttling_to_rate_limit_error() -> None:
    err = _wrap(_client_error("ThrottlingException", 400), provider="bedrock")
    assert isinstance(err, RateLimitError)
    assert err.retryable is True


@pytest.mark.parametrize("status", [400, 422])
def test_wrap_maps_validation_statuses(status: int) -> None:
    err = _wrap(_SdkError("bad field", status_code=status))
    assert isinstance(err, ValidationError)
    assert err.retryable is False


@pytest.mark.parametrize("status", [500, 502, 503, 504, 408])
def test_wrap_marks_transient_statuses_retryable(status: int) -> None:
    err = _wrap(_SdkError("server", status_code=status))
    assert type(err) is APIError
    assert err.retryable is True


def test_wrap_marks_connection_errors_retryable() -> None:
    request = httpx.Request("POST", "https://api.example.com")
    err = _wrap(httpx.ConnectError("refused", request=request))
    assert err.retryable is True


def test_wrap_timeout_carries_troubleshooting_tips() -> None:
    err = _wrap(httpx.ReadTimeout("read"), timeout_s=30, streaming=True)

    assert isinstance(err, RequestTimeoutError)
    assert err.retryable is True
    assert "Request timeout after 30s" in str(err)
    assert "timeout_s" in str(err)
    assert "non-streaming" in str(err)


def test_wrap_auth_failure_names_credential_sources() -> None:
    err = _wrap(_SdkError("unauthorized", status_code=401), provider="anthropic")
    assert err.hint is not None
    assert "ANTHROPIC_API_KEY" in err.hint


def test_wrap_explicit_hint_wins() -> None:
    err = _wrap(_SdkError("unauthorized", status_code=401), hint="custom")
    assert err.hint == "custom"


def test_wrap_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)

    wrapped = _wrap(base, provider="gemini")

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.retryable is False
    assert wrapped.provider == "gemini"


def test_wrap_reraises_cancelled_error() -> None:
    with pytest.raises(asyncio.CancelledError):
        _wrap(asyncio.CancelledError("cancelled"))
