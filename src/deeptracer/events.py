# src/deeptracer/events.py
"""Event records shipped to the DeepTracer ingestion API.

Four event kinds leave an emitter, one per ingestion channel:

- LogEntry: batched, sent on the logs channel
- ErrorReport: sent immediately on the errors channel
- SpanData: sent immediately on the traces channel
- LLMUsageReport: sent immediately on the llm channel

Together they form the closed union BeforeSendEvent that the before_send
hook receives. Hooks dispatch on the concrete type with ``match``:

    def before_send(event: BeforeSendEvent) -> BeforeSendEvent | None:
        match event:
            case LogEntry(message=m) if "/health" in m:
                return None
            case ErrorReport():
                return replace(event, context=scrub(event.context))
            case _:
                return event

All records are frozen; hooks return modified copies via dataclasses.replace.
Payload dicts omit fields whose value is None, matching the JSON shape the
ingestion API expects.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar, Literal


class LogLevel(StrEnum):
    """Log severity level, ordered DEBUG < INFO < WARN < ERROR."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK: dict[LogLevel, int] = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}


class Severity(StrEnum):
    """Error report severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SpanStatus(StrEnum):
    """Final status of a span."""

    OK = "ok"
    ERROR = "error"


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO 8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(tz=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True, slots=True)
class Breadcrumb:
    """A short note of something that happened before an error.

    Attributes:
        type: Activity category (http, db, function, user, error, log, ...)
        message: Human-readable description
        timestamp: ISO 8601 timestamp
    """

    type: str
    message: str
    timestamp: str = field(default_factory=utc_timestamp)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class User:
    """User context attached to outgoing events.

    Attributes:
        id: Unique user identifier
        email: Optional email address
        username: Optional display name
        extra: Any additional user attributes
    """

    id: str
    email: str | None = None
    username: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _compact({"id": self.id, "email": self.email, "username": self.username, **self.extra})


@dataclass(frozen=True, slots=True)
class LogEntry:
    """A single log entry. Created by the emitter, not by callers."""

    kind: ClassVar[Literal["log"]] = "log"

    timestamp: str
    level: LogLevel
    message: str
    metadata: Mapping[str, Any] | None = None
    trace_id: str | None = None
    span_id: str | None = None
    request_id: str | None = None
    vercel_id: str | None = None
    context: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return _compact(
            {
                "timestamp": self.timestamp,
                "level": self.level.value,
                "message": self.message,
                "metadata": dict(self.metadata) if self.metadata is not None else None,
                "trace_id": self.trace_id,
                "span_id": self.span_id,
                "request_id": self.request_id,
                "vercel_id": self.vercel_id,
                "context": self.context,
            }
        )


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """Error report sent for tracking and alerting.

    Attributes:
        error_message: The exception message
        stack_trace: Formatted traceback text (may be empty)
        severity: How bad it is
        context: Structured context (user, _tags, _contexts, caller data)
        trace_id: Trace the error happened in, if any
        user_id: Affected user, if known
        breadcrumbs: Breadcrumb trail captured at report time
    """

    kind: ClassVar[Literal["error"]] = "error"

    error_message: str
    stack_trace: str
    severity: Severity = Severity.MEDIUM
    context: Mapping[str, Any] | None = None
    trace_id: str | None = None
    user_id: str | None = None
    breadcrumbs: tuple[Breadcrumb, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return _compact(
            {
                "error_message": self.error_message,
                "stack_trace": self.stack_trace,
                "severity": self.severity.value,
                "context": dict(self.context) if self.context is not None else None,
                "trace_id": self.trace_id,
                "user_id": self.user_id,
                "breadcrumbs": [crumb.to_payload() for crumb in self.breadcrumbs],
            }
        )


@dataclass(frozen=True, slots=True)
class SpanData:
    """A finished span as sent to the traces channel."""

    kind: ClassVar[Literal["trace"]] = "trace"

    trace_id: str
    span_id: str
    parent_span_id: str
    operation: str
    start_time: str
    duration_ms: float
    status: SpanStatus = SpanStatus.OK
    metadata: Mapping[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return _compact(
            {
                "trace_id": self.trace_id,
                "span_id": self.span_id,
                "parent_span_id": self.parent_span_id,
                "operation": self.operation,
                "start_time": self.start_time,
                "duration_ms": self.duration_ms,
                "status": self.status.value,
                "metadata": dict(self.metadata) if self.metadata is not None else None,
            }
        )


@dataclass(frozen=True, slots=True)
class LLMUsageReport:
    """LLM usage for cost and latency tracking.

    Attributes:
        model: Model name as reported by the provider
        provider: Provider name (openai, anthropic, ...)
        operation: API operation (chat.completions.create, messages.create, ...)
        input_tokens: Prompt token count
        output_tokens: Completion token count
        latency_ms: Call duration in milliseconds
        cost_usd: Cost if known; sent as 0 otherwise
        metadata: Free-form extra data
    """

    kind: ClassVar[Literal["llm"]] = "llm"

    model: str
    provider: str
    operation: str
    input_tokens: int
    output_tokens: int
    latency_ms: float
    cost_usd: float | None = None
    metadata: Mapping[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return _compact(
            {
                "model": self.model,
                "provider": self.provider,
                "operation": self.operation,
                "input_tokens": self.input_tokens,
                "output_tokens": self.output_tokens,
                "cost_usd": self.cost_usd or 0,
                "latency_ms": self.latency_ms,
                "metadata": dict(self.metadata) if self.metadata is not None else None,
            }
        )


BeforeSendEvent = LogEntry | ErrorReport | SpanData | LLMUsageReport
