"""API call telemetry: one event per generator call, delivered to a sink.

Events are fire-and-forget. A failing sink is logged and never affects the
call that produced the event.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from switchboard.types import UsageMetadata

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponseEvent:
    """A provider call that completed successfully."""

    model: str
    prompt_id: str
    auth_type: str
    duration_ms: float
    usage: UsageMetadata | None = None
    response_id: str | None = None
    streamed: bool = False


@dataclass(frozen=True)
class ApiErrorEvent:
    """A provider call that failed.

    ``usage`` holds an estimated prompt size so cost accounting still sees
    failed calls.
    """

    model: str
    prompt_id: str
    auth_type: str
    duration_ms: float
    error: str
    error_type: str
    status_code: int | None = None
    usage: UsageMetadata | None = None
    streamed: bool = False


TelemetryEvent = Union[ApiResponseEvent, ApiErrorEvent]


@runtime_checkable
class TelemetrySink(Protocol):
    """Duck-typed protocol for telemetry sinks."""

    def record(self, event: TelemetryEvent) -> None: ...  # noqa: D102


class LoggingTelemetrySink:
    """Default sink: writes a one-line summary per event to the module logger."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        """Initialize with the level used for successful calls."""
        self.level = level

    def record(self, event: TelemetryEvent) -> None:
        """Log *event*; errors are logged at WARNING."""
        if isinstance(event, ApiErrorEvent):
            log.warning(
                "api_error model=%s prompt_id=%s auth=%s duration_ms=%.1f "
                "type=%s status=%s est_prompt_tokens=%s",
                event.model,
                event.prompt_id,
                event.auth_type,
                event.duration_ms,
                event.error_type,
                event.status_code,
                event.usage.prompt_tokens if event.usage else None,
            )
            return
        log.log(
            self.level,
            "api_response model=%s prompt_id=%s auth=%s duration_ms=%.1f "
            "prompt_tokens=%s completion_tokens=%s streamed=%s",
            event.model,
            event.prompt_id,
            event.auth_type,
            event.duration_ms,
            event.usage.prompt_tokens if event.usage else None,
            event.usage.completion_tokens if event.usage else None,
            event.streamed,
        )


class RecordingTelemetrySink:
    """In-memory sink for development and tests."""

    def __init__(self) -> None:
        """Initialize with an empty event list."""
        self.events: list[TelemetryEvent] = []

    def record(self, event: TelemetryEvent) -> None:
        """Append *event*."""
        self.events.append(event)

    @property
    def responses(self) -> list[ApiResponseEvent]:
        return [e for e in self.events if isinstance(e, ApiResponseEvent)]

    @property
    def errors(self) -> list[ApiErrorEvent]:
        return [e for e in self.events if isinstance(e, ApiErrorEvent)]


def emit(sink: TelemetrySink | None, event: TelemetryEvent) -> None:
    """Deliver *event* to *sink*, logging and discarding sink failures."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as e:
        log.error(
            "Telemetry sink '%s' failed: %s",
            type(sink).__name__,
            e,
            exc_info=True,
        )


class CallRecorder:
    """Time one generator call and emit exactly one event for it."""

    def __init__(
        self,
        sink: TelemetrySink | None,
        *,
        model: str,
        prompt_id: str,
        auth_type: str,
        streamed: bool = False,
    ) -> None:
        """Start the clock for a call."""
        self.sink = sink
        self.model = model
        self.prompt_id = prompt_id
        self.auth_type = auth_type
        self.streamed = streamed
        self.emitted = False
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0

    def success(
        self, usage: UsageMetadata | None = None, *, response_id: str | None = None
    ) -> None:
        """Emit the response event, unless one was already emitted."""
        if self.emitted:
            return
        self.emitted = True
        emit(
            self.sink,
            ApiResponseEvent(
                model=self.model,
                prompt_id=self.prompt_id,
                auth_type=self.auth_type,
                duration_ms=self.duration_ms,
                usage=usage,
                response_id=response_id,
                streamed=self.streamed,
            ),
        )

    def failure(
        self, error: BaseException, usage: UsageMetadata | None = None
    ) -> None:
        """Emit the error event, unless one was already emitted."""
        if self.emitted:
            return
        self.emitted = True
        status_code = getattr(error, "status_code", None)
        emit(
            self.sink,
            ApiErrorEvent(
                model=self.model,
                prompt_id=self.prompt_id,
                auth_type=self.auth_type,
                duration_ms=self.duration_ms,
                error=str(error),
                error_type=type(error).__name__,
                status_code=status_code if isinstance(status_code, int) else None,
                usage=usage,
                streamed=self.streamed,
            ),
        )
