# src/deeptracer/tracing.py
"""Trace/span identifiers, W3C traceparent handling, and span objects.

Spans are flat records: a span knows its own id and its parent's id, never
the parent object. A child span is created by asking the owning emitter
for a derived emitter whose request context carries (trace_id, span_id),
so the child inherits the trace id and uses this span's id as its parent.

Span lifecycle:
    Started --end(status)--> Ended(status)

A second end() is ignored. Duration is measured with a monotonic clock
from construction to the first end() call.
"""

import inspect
import re
import secrets
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from deeptracer.events import SpanData, SpanStatus, utc_timestamp

if TYPE_CHECKING:
    from typing import Self

T = TypeVar("T")

TRACE_ID_HEADER = "x-trace-id"
SPAN_ID_HEADER = "x-span-id"
REQUEST_ID_HEADER = "x-request-id"
VERCEL_ID_HEADER = "x-vercel-id"
TRACEPARENT_HEADER = "traceparent"

_HEX32 = re.compile(r"[0-9a-f]{32}")
_HEX16 = re.compile(r"[0-9a-f]{16}")
_HEX2 = re.compile(r"[0-9a-fA-F]{2}")


def _random_hex(nbytes: int) -> str:
    while True:
        value = secrets.token_hex(nbytes)
        if value.strip("0"):
            return value


def generate_trace_id() -> str:
    """Random 128-bit trace id: 32 lowercase hex chars, never all zero."""
    return _random_hex(16)


def generate_span_id() -> str:
    """Random 64-bit span id: 16 lowercase hex chars, never all zero."""
    return _random_hex(8)


@dataclass(frozen=True, slots=True)
class TraceParent:
    """A validated W3C traceparent value."""

    trace_id: str
    parent_id: str
    flags: str


def parse_traceparent(value: str | None) -> TraceParent | None:
    """Parse a W3C traceparent header.

    Format: ``{version}-{trace-id}-{parent-id}-{flags}``. Only version
    ``00`` is accepted; ids must be lowercase hex of the exact length and
    not all zero; flags must be exactly two hex chars.

    Returns:
        TraceParent, or None if the value is missing or invalid in any way.

    Example:
        >>> parse_traceparent("00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01")
        TraceParent(trace_id='0af7651916cd43dd8448eb211c80319c', parent_id='b7ad6b7169203331', flags='01')
    """
    if not value:
        return None
    parts = value.strip().split("-")
    if len(parts) != 4:
        return None
    version, trace_id, parent_id, flags = parts
    if version != "00":
        return None
    if not _HEX32.fullmatch(trace_id) or not trace_id.strip("0"):
        return None
    if not _HEX16.fullmatch(parent_id) or not parent_id.strip("0"):
        return None
    if not _HEX2.fullmatch(flags):
        return None
    return TraceParent(trace_id=trace_id, parent_id=parent_id, flags=flags)


def format_traceparent(trace_id: str, span_id: str, flags: str = "01") -> str:
    return f"00-{trace_id}-{span_id}-{flags}"


def propagation_headers(trace_id: str, span_id: str) -> dict[str, str]:
    """Outbound headers for a span.

    The proprietary pair is always present. ``traceparent`` is added only
    when the trace id is a 32-char lowercase hex string, since custom trace
    ids received through x-trace-id may not be W3C compatible.
    """
    headers = {TRACE_ID_HEADER: trace_id, SPAN_ID_HEADER: span_id}
    if _HEX32.fullmatch(trace_id):
        headers[TRACEPARENT_HEADER] = format_traceparent(trace_id, span_id)
    return headers


class SpanOwner(Protocol):
    """What an InactiveSpan needs from the emitter that created it."""

    def _finish_span(self, data: SpanData) -> None: ...

    def _child_for_span(self, trace_id: str, span_id: str) -> "SpanFactory": ...


class SpanFactory(Protocol):
    def start_span(self, operation: str, fn: Callable[["Span"], T]) -> T: ...

    def start_inactive_span(self, operation: str) -> "InactiveSpan": ...


class Span:
    """A unit of work within a trace.

    This read-only view is what start_span() callbacks receive; its
    lifecycle is managed by the emitter.
    """

    __slots__ = ("operation", "parent_span_id", "span_id", "trace_id")

    def __init__(self, trace_id: str, span_id: str, parent_span_id: str, operation: str) -> None:
        self.trace_id = trace_id
        self.span_id = span_id
        self.parent_span_id = parent_span_id
        self.operation = operation

    def get_headers(self) -> dict[str, str]:
        """Headers for propagating this trace to downstream services."""
        return propagation_headers(self.trace_id, self.span_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(operation={self.operation!r}, trace_id={self.trace_id!r}, span_id={self.span_id!r}, parent_span_id={self.parent_span_id!r})"


class InactiveSpan(Span):
    """A span with manual lifecycle. Call end() when done.

    Can also be used as a context manager; leaving the block with an
    exception ends the span with status ERROR and lets the exception
    propagate.
    """

    __slots__ = ("_child", "_end_lock", "_ended", "_owner", "_start_monotonic", "_start_time")

    def __init__(self, owner: SpanOwner, trace_id: str, span_id: str, parent_span_id: str, operation: str) -> None:
        super().__init__(trace_id, span_id, parent_span_id, operation)
        self._owner = owner
        self._start_time = utc_timestamp()
        self._start_monotonic = time.monotonic()
        self._ended = False
        self._end_lock = threading.Lock()
        self._child: SpanFactory | None = None

    @property
    def ended(self) -> bool:
        return self._ended

    def end(self, status: SpanStatus | str = SpanStatus.OK, metadata: Mapping[str, Any] | None = None) -> None:
        """End the span and send its timing data. Later calls are ignored."""
        with self._end_lock:
            if self._ended:
                return
            self._ended = True
        duration_ms = (time.monotonic() - self._start_monotonic) * 1000.0
        self._owner._finish_span(
            SpanData(
                trace_id=self.trace_id,
                span_id=self.span_id,
                parent_span_id=self.parent_span_id,
                operation=self.operation,
                start_time=self._start_time,
                duration_ms=round(duration_ms, 3),
                status=SpanStatus(status),
                metadata=dict(metadata) if metadata is not None else None,
            )
        )

    def _child_factory(self) -> SpanFactory:
        if self._child is None:
            self._child = self._owner._child_for_span(self.trace_id, self.span_id)
        return self._child

    def start_span(self, operation: str, fn: Callable[[Span], T]) -> T:
        """Run fn inside a child span that ends automatically."""
        return self._child_factory().start_span(operation, fn)

    def start_inactive_span(self, operation: str) -> "InactiveSpan":
        """Create a child span with manual lifecycle."""
        return self._child_factory().start_inactive_span(operation)

    def as_span(self) -> Span:
        return Span(self.trace_id, self.span_id, self.parent_span_id, self.operation)

    def __enter__(self) -> "Self":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.end(SpanStatus.ERROR if exc_type is not None else SpanStatus.OK)


def run_in_span(span: InactiveSpan, fn: Callable[[Span], T]) -> T:
    """Call fn with a view of span and end the span with the outcome.

    Synchronous callables end the span before returning. When fn returns an
    awaitable (a coroutine function), the awaitable is wrapped so the span
    ends when it settles. Either way the original exception is re-raised
    after the span is closed with status ERROR.
    """
    try:
        result = fn(span.as_span())
    except BaseException:
        span.end(SpanStatus.ERROR)
        raise

    if inspect.isawaitable(result):
        return _end_when_settled(span, result)  # type: ignore[return-value]

    span.end(SpanStatus.OK)
    return result


async def _end_when_settled(span: InactiveSpan, awaitable: Awaitable[T]) -> T:
    try:
        value = await awaitable
    except BaseException:
        span.end(SpanStatus.ERROR)
        raise
    span.end(SpanStatus.OK)
    return value
