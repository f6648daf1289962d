"""Telemetry events, sinks and per-call recording."""

from __future__ import annotations

import logging

import pytest

from switchboard.errors import RateLimitError
from switchboard.telemetry import (
    ApiErrorEvent,
    ApiResponseEvent,
    CallRecorder,
    LoggingTelemetrySink,
    RecordingTelemetrySink,
    TelemetrySink,
    emit,
)
from switchboard.types import UsageMetadata

pytestmark = pytest.mark.unit


def _recorder(sink: TelemetrySink | None, **kwargs: object) -> CallRecorder:
    return CallRecorder(sink, model="m", prompt_id="p", auth_type="openai", **kwargs)


def test_sinks_satisfy_protocol() -> None:
    assert isinstance(RecordingTelemetrySink(), TelemetrySink)
    assert isinstance(LoggingTelemetrySink(), TelemetrySink)


def test_success_emits_one_response_event(sink: RecordingTelemetrySink) -> None:
    recorder = _recorder(sink, streamed=True)
    usage = UsageMetadata(prompt_tokens=3, completion_tokens=2, total_tokens=5)

    recorder.success(usage, response_id="r1")
    recorder.success(usage, response_id="r2")

    (event,) = sink.events
    assert isinstance(event, ApiResponseEvent)
    assert event.usage == usage
    assert event.response_id == "r1"
    assert event.streamed is True
    assert event.duration_ms >= 0


def test_failure_after_success_is_ignored(sink: RecordingTelemetrySink) -> None:
    recorder = _recorder(sink)
    recorder.success()
    recorder.failure(RuntimeError("late"))

    assert len(sink.responses) == 1
    assert sink.errors == []


def test_failure_records_error_type_and_status(sink: RecordingTelemetrySink) -> None:
    recorder = _recorder(sink)
    recorder.failure(RateLimitError("slow down", status_code=429))

    (event,) = sink.errors
    assert isinstance(event, ApiErrorEvent)
    assert event.error_type == "RateLimitError"
    assert event.status_code == 429
    assert event.error == "slow down"


def test_failing_sink_never_propagates(caplog: pytest.LogCaptureFixture) -> None:
    class ExplodingSink:
        def record(self, event: object) -> None:
            raise RuntimeError("sink down")

    with caplog.at_level(logging.ERROR, logger="switchboard.telemetry"):
        _recorder(ExplodingSink()).success()

    assert "ExplodingSink" in caplog.text


def test_emit_without_sink_is_a_no_op() -> None:
    emit(None, ApiResponseEvent(model="m", prompt_id="p", auth_type="a", duration_ms=1))


def test_logging_sink_logs_errors_at_warning(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingTelemetrySink()
    event = ApiErrorEvent(
        model="m",
        prompt_id="p",
        auth_type="bedrock",
        duration_ms=1.0,
        error="boom",
        error_type="APIError",
    )

    with caplog.at_level(logging.WARNING, logger="switchboard.telemetry"):
        sink.record(event)

    assert "api_error" in caplog.text
    assert "auth=bedrock" in caplog.text
