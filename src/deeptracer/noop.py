# src/deeptracer/noop.py
"""Inert emitter returned when DeepTracer is not configured.

NoopEmitter has the full Emitter surface so application code never has to
check whether observability is enabled. Nothing it does has side effects:
no timer thread, no transport, no network, no console output.

Tracing still runs the caller's code: start_span(op, fn) calls fn and
returns its result, and wrap() returns the function unchanged. Spans carry
all-zero ids and produce no propagation headers.
"""

from collections.abc import Callable, Mapping
from types import TracebackType
from typing import TYPE_CHECKING, Any, TypeVar, overload

from deeptracer.events import LLMUsageReport, Severity, SpanStatus

if TYPE_CHECKING:
    from typing import Self

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

NOOP_TRACE_ID = "0" * 32
NOOP_SPAN_ID = "0" * 16


class NoopSpan:
    """Span stand-in with all-zero ids. Every operation is a no-op."""

    __slots__ = ("operation",)

    trace_id = NOOP_TRACE_ID
    span_id = NOOP_SPAN_ID
    parent_span_id = ""

    def __init__(self, operation: str = "noop") -> None:
        self.operation = operation

    @property
    def ended(self) -> bool:
        return False

    def get_headers(self) -> dict[str, str]:
        return {}

    def end(self, status: SpanStatus | str = SpanStatus.OK, metadata: Mapping[str, Any] | None = None) -> None:
        pass

    def start_span(self, operation: str, fn: Callable[["NoopSpan"], T]) -> T:
        return fn(NoopSpan(operation))

    def start_inactive_span(self, operation: str) -> "NoopSpan":
        return NoopSpan(operation)

    def as_span(self) -> "NoopSpan":
        return self

    def __enter__(self) -> "Self":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass


class NoopEmitter:
    """Emitter-compatible object where every method silently does nothing."""

    is_root = True
    context_name = None

    def debug(self, message: str, data: Any = None, error: Any = None) -> None:
        pass

    def info(self, message: str, data: Any = None, error: Any = None) -> None:
        pass

    def warn(self, message: str, data: Any = None, error: Any = None) -> None:
        pass

    def error(self, message: str, data: Any = None, error: Any = None) -> None:
        pass

    def set_user(self, user: Mapping[str, Any]) -> None:
        pass

    def clear_user(self) -> None:
        pass

    def set_tags(self, tags: Mapping[str, str]) -> None:
        pass

    def clear_tags(self) -> None:
        pass

    def set_context(self, name: str, data: Mapping[str, Any]) -> None:
        pass

    def clear_context(self, name: str | None = None) -> None:
        pass

    def add_breadcrumb(self, type: str, message: str) -> None:  # noqa: A002 - wire field name
        pass

    def capture_error(
        self,
        error: Any,
        *,
        severity: Severity | str = Severity.MEDIUM,
        user_id: str | None = None,
        context: Mapping[str, Any] | None = None,
        breadcrumbs: Any = None,
    ) -> None:
        pass

    def llm_usage(self, report: LLMUsageReport) -> None:
        pass

    def start_span(self, operation: str, fn: Callable[[NoopSpan], T]) -> T:
        return fn(NoopSpan(operation))

    def start_inactive_span(self, operation: str) -> NoopSpan:
        return NoopSpan(operation)

    def span(self, operation: str) -> NoopSpan:
        return NoopSpan(operation)

    @overload
    def wrap(self, operation: str) -> Callable[[F], F]: ...

    @overload
    def wrap(self, operation: str, fn: F) -> F: ...

    def wrap(self, operation: str, fn: F | None = None) -> F | Callable[[F], F]:
        if fn is not None:
            return fn
        return lambda func: func

    def with_context(self, name: str) -> "NoopEmitter":
        return self

    def for_request(self, request_or_headers: Any) -> "NoopEmitter":
        return self

    def flush(self) -> None:
        pass

    def destroy(self, timeout: float = 0.0) -> None:
        pass

    def __repr__(self) -> str:
        return "NoopEmitter()"


noop_emitter = NoopEmitter()
