# src/deeptracer/emitter.py
"""Emitter: the application-facing orchestrator.

An Emitter turns application calls into events, enriches them with the
current user, tags, contexts and request trace context, runs them through
the before_send hook and hands them to the delivery pipeline:

- Log entries go to the shared Batcher (sent in batches on the logs channel)
- Error reports, spans and LLM usage go straight to the shared Transport

Lineage:
    The root emitter owns ONE Batcher and ONE Transport. Every emitter
    derived from it via with_context() or for_request() reuses those same
    two objects and gets a cloned EmitterState. Short-lived request
    emitters therefore never strand entries in a private buffer whose
    timer never fires.

    root ──┬── with_context("db")          same Batcher/Transport
           └── for_request(headers) ──┬──  cloned state
                                      └── span children (same Batcher/Transport)

Shutdown:
    Root destroy() stops the batch timer (final flush), drains the transport
    and closes it. Derived destroy() only flushes the shared buffer and
    drains; it never stops the root's timer.
"""

import functools
import inspect
import traceback
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any, TypeVar, overload

import structlog

from deeptracer.batcher import Batcher
from deeptracer.config import DeepTracerSettings, RuntimeProfile, load_settings
from deeptracer.events import (
    BeforeSendEvent,
    Breadcrumb,
    ErrorReport,
    LLMUsageReport,
    LogEntry,
    LogLevel,
    Severity,
    SpanData,
    User,
    utc_timestamp,
)
from deeptracer.logging import CONSOLE_LOGGER_NAME
from deeptracer.state import EmitterState
from deeptracer.tracing import (
    REQUEST_ID_HEADER,
    SPAN_ID_HEADER,
    TRACE_ID_HEADER,
    TRACEPARENT_HEADER,
    VERCEL_ID_HEADER,
    InactiveSpan,
    Span,
    generate_span_id,
    generate_trace_id,
    parse_traceparent,
    run_in_span,
)
from deeptracer.transport import DEFAULT_DRAIN_TIMEOUT, Transport

logger = structlog.get_logger(__name__)
console = structlog.get_logger(CONSOLE_LOGGER_NAME)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Trace context carried by an emitter and stamped onto its events."""

    trace_id: str | None = None
    span_id: str | None = None
    request_id: str | None = None
    vercel_id: str | None = None


@dataclass(frozen=True, slots=True)
class _Pipeline:
    """Delivery objects shared by every emitter in one lineage."""

    settings: DeepTracerSettings
    batcher: Batcher[LogEntry]
    transport: Transport


def describe_exception(error: BaseException) -> dict[str, str]:
    """Serialize an exception as ``{name, message, stack}``."""
    return {
        "name": type(error).__name__,
        "message": str(error),
        "stack": "".join(traceback.format_exception(error)),
    }


def _header_lookup(request_or_headers: Any) -> dict[str, str]:
    headers = getattr(request_or_headers, "headers", request_or_headers)
    if headers is None:
        return {}
    items = headers.items() if hasattr(headers, "items") else headers
    return {_header_text(name).lower(): _header_text(value) for name, value in items}


def _header_text(value: Any) -> str:
    # Raw ASGI scope headers are latin-1 byte pairs
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("latin-1")
    return str(value)


class Emitter:
    """Observability client for logs, errors, spans and LLM usage.

    Example:
        emitter = create_emitter(secret_key="dt_secret_...", endpoint="https://ingest.example.com")
        emitter.info("Server started", {"port": 8080})

        request_emitter = emitter.for_request(request.headers)
        with request_emitter.span("db.query") as span:
            rows = db.fetch(span.get_headers())

        emitter.destroy()
    """

    def __init__(
        self,
        settings: DeepTracerSettings | None = None,
        *,
        profile: RuntimeProfile | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Build a root emitter with its own Batcher and Transport.

        Args:
            settings: Validated settings (default: DeepTracerSettings())
            profile: Hosting platform facts (default: detected from os.environ)
            transport: Pre-built transport (default: one built from settings)
        """
        settings = settings or DeepTracerSettings()
        profile = profile or RuntimeProfile.detect()
        if transport is None:
            transport = Transport(
                endpoint=settings.endpoint,
                auth_key=settings.auth_key,
                service=settings.service,
                environment=settings.environment,
                wait_until=settings.wait_until,
            )
        batcher: Batcher[LogEntry] = Batcher(
            transport.send_logs,
            batch_size=settings.batch_size,
            flush_interval=settings.flush_interval or profile.default_flush_interval,
        )
        self._bind(
            _Pipeline(settings=settings, batcher=batcher, transport=transport),
            EmitterState.create(settings.max_breadcrumbs),
            context=None,
            request=RequestContext(),
            is_root=True,
        )
        logger.debug(
            "Emitter created",
            service=settings.service,
            environment=settings.environment,
            delivery_enabled=transport.enabled,
            serverless=profile.serverless,
        )

    def _bind(
        self,
        pipeline: _Pipeline,
        state: EmitterState,
        *,
        context: str | None,
        request: RequestContext,
        is_root: bool,
    ) -> None:
        self._pipeline = pipeline
        self._state = state
        self._context = context
        self._request = request
        self._is_root = is_root

    def _derive(self, *, context: str | None, request: RequestContext) -> "Emitter":
        child = type(self).__new__(type(self))
        child._bind(self._pipeline, self._state.clone(), context=context, request=request, is_root=False)
        return child

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def settings(self) -> DeepTracerSettings:
        return self._pipeline.settings

    @property
    def batcher(self) -> Batcher[LogEntry]:
        return self._pipeline.batcher

    @property
    def transport(self) -> Transport:
        return self._pipeline.transport

    @property
    def state(self) -> EmitterState:
        return self._state

    @property
    def context_name(self) -> str | None:
        return self._context

    @property
    def request(self) -> RequestContext:
        return self._request

    @property
    def is_root(self) -> bool:
        """True for the emitter that owns the batch timer and transport."""
        return self._is_root

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def debug(self, message: str, data: Mapping[str, Any] | BaseException | None = None, error: Any = None) -> None:
        self._log(LogLevel.DEBUG, message, data, error)

    def info(self, message: str, data: Mapping[str, Any] | BaseException | None = None, error: Any = None) -> None:
        self._log(LogLevel.INFO, message, data, error)

    def warn(self, message: str, data: Mapping[str, Any] | BaseException | None = None, error: Any = None) -> None:
        self._log(LogLevel.WARN, message, data, error)

    def error(self, message: str, data: Mapping[str, Any] | BaseException | None = None, error: Any = None) -> None:
        self._log(LogLevel.ERROR, message, data, error)

    def _log(self, level: LogLevel, message: str, data: Any, error: Any) -> None:
        metadata: dict[str, Any] = {}
        if isinstance(data, BaseException):
            error = data
        elif isinstance(data, Mapping):
            metadata.update(data)
        elif data is not None:
            error = data

        if isinstance(error, BaseException):
            metadata["error"] = describe_exception(error)
        elif error is not None:
            metadata["error"] = {"message": str(error)}

        # Filtered entries still leave a trail for later error reports
        self._state.add_breadcrumb(Breadcrumb(type="log", message=message))
        if level.rank < self.settings.min_level.rank:
            return

        metadata.update(self._state.enrichment())
        entry = LogEntry(
            timestamp=utc_timestamp(),
            level=level,
            message=message,
            metadata=metadata or None,
            trace_id=self._request.trace_id,
            span_id=self._request.span_id,
            request_id=self._request.request_id,
            vercel_id=self._request.vercel_id,
            context=self._context,
        )
        self._emit(entry)

    def _mirror(self, entry: LogEntry) -> None:
        prefix = f"[{entry.context}] " if entry.context else ""
        method = {
            LogLevel.DEBUG: console.debug,
            LogLevel.INFO: console.info,
            LogLevel.WARN: console.warning,
            LogLevel.ERROR: console.error,
        }[entry.level]
        if entry.metadata:
            method(f"{prefix}{entry.message}", metadata=dict(entry.metadata))
        else:
            method(f"{prefix}{entry.message}")

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def set_user(self, user: User | Mapping[str, Any]) -> None:
        """Attach a user (at least an ``id``) to subsequent events."""
        self._state.set_user(user.to_dict() if isinstance(user, User) else user)

    def clear_user(self) -> None:
        self._state.clear_user()

    def set_tags(self, tags: Mapping[str, str]) -> None:
        self._state.set_tags(tags)

    def clear_tags(self) -> None:
        self._state.clear_tags()

    def set_context(self, name: str, data: Mapping[str, Any]) -> None:
        self._state.set_context(name, data)

    def clear_context(self, name: str | None = None) -> None:
        self._state.clear_context(name)

    def add_breadcrumb(self, type: str, message: str) -> None:  # noqa: A002 - wire field name
        self._state.add_breadcrumb(Breadcrumb(type=type, message=message))

    # ------------------------------------------------------------------
    # Errors and LLM usage
    # ------------------------------------------------------------------

    def capture_error(
        self,
        error: BaseException | object,
        *,
        severity: Severity | str = Severity.MEDIUM,
        user_id: str | None = None,
        context: Mapping[str, Any] | None = None,
        breadcrumbs: list[Breadcrumb] | tuple[Breadcrumb, ...] | None = None,
    ) -> None:
        """Report an error immediately on the errors channel.

        The report context is enriched with ``user``, ``_tags`` and
        ``_contexts``; explicit ``context`` keys win. ``user_id`` falls back
        to the current user's id and ``breadcrumbs`` to the current trail.
        Non-exception values are reported by their string form.
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack_trace = "".join(traceback.format_exception(error))
        else:
            message = str(error)
            stack_trace = ""

        merged = {**self._state.enrichment(), **(context or {})}
        if user_id is None:
            user_id = self._state.user_id()

        report = ErrorReport(
            error_message=message,
            stack_trace=stack_trace,
            severity=Severity(severity),
            context=merged or None,
            trace_id=self._request.trace_id,
            user_id=user_id,
            breadcrumbs=tuple(breadcrumbs) if breadcrumbs is not None else self._state.breadcrumbs_snapshot(),
        )
        self._emit(report)
        self._state.add_breadcrumb(Breadcrumb(type="error", message=message))

    def llm_usage(self, report: LLMUsageReport) -> None:
        """Send LLM usage immediately and log an info line for it."""
        self._emit(report)
        self._log(
            LogLevel.INFO,
            f"LLM call: {report.model} ({report.operation})",
            {
                "llm_usage": {
                    "model": report.model,
                    "provider": report.provider,
                    "operation": report.operation,
                    "input_tokens": report.input_tokens,
                    "output_tokens": report.output_tokens,
                    "latency_ms": report.latency_ms,
                }
            },
            None,
        )

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    def start_inactive_span(self, operation: str) -> InactiveSpan:
        """Start a span with manual lifecycle. Call end() on it."""
        return InactiveSpan(
            self,
            trace_id=self._request.trace_id or generate_trace_id(),
            span_id=generate_span_id(),
            parent_span_id=self._request.span_id or "",
            operation=operation,
        )

    def start_span(self, operation: str, fn: Callable[[Span], T]) -> T:
        """Run fn inside a span that ends with the outcome.

        Coroutine functions are supported: the returned awaitable ends the
        span when it settles. Exceptions are re-raised unchanged after the
        span ends with status ``error``.
        """
        return run_in_span(self.start_inactive_span(operation), fn)

    def span(self, operation: str) -> InactiveSpan:
        """Start a span for use as a context manager."""
        return self.start_inactive_span(operation)

    @overload
    def wrap(self, operation: str) -> Callable[[F], F]: ...

    @overload
    def wrap(self, operation: str, fn: F) -> F: ...

    def wrap(self, operation: str, fn: F | None = None) -> F | Callable[[F], F]:
        """Wrap a function so every call runs inside a span.

        Usable as ``emitter.wrap("op", fn)`` or as a decorator
        ``@emitter.wrap("op")``. Coroutine functions get an async wrapper.
        """

        def decorate(func: F) -> F:
            if inspect.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    with self.span(operation):
                        return await func(*args, **kwargs)

                return async_wrapper  # type: ignore[return-value]

            @functools.wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                return self.start_span(operation, lambda _span: func(*args, **kwargs))

            return wrapper  # type: ignore[return-value]

        if fn is not None:
            return decorate(fn)
        return decorate

    def _finish_span(self, data: SpanData) -> None:
        self._emit(data)

    def _child_for_span(self, trace_id: str, span_id: str) -> "Emitter":
        return self._derive(
            context=self._context,
            request=replace(self._request, trace_id=trace_id, span_id=span_id),
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_context(self, name: str) -> "Emitter":
        """Derived emitter whose log entries carry ``context=name``."""
        return self._derive(context=name, request=self._request)

    def for_request(self, request_or_headers: Any) -> "Emitter":
        """Derived emitter carrying the trace context of an inbound request.

        Accepts a headers mapping (any object with ``items()``), an iterable
        of name/value pairs (raw ASGI byte pairs included) or an object with
        a ``headers`` attribute. Lookup is case-insensitive. A valid
        ``traceparent`` wins; otherwise the x-trace-id / x-span-id headers
        are used. The request id falls back to the last ``::`` segment of
        x-vercel-id.
        """
        headers = _header_lookup(request_or_headers)
        vercel_id = headers.get(VERCEL_ID_HEADER) or None
        request_id = headers.get(REQUEST_ID_HEADER) or None
        if request_id is None and vercel_id is not None:
            request_id = vercel_id.split("::")[-1] or None

        parent = parse_traceparent(headers.get(TRACEPARENT_HEADER))
        if parent is not None:
            trace_id: str | None = parent.trace_id
            span_id: str | None = parent.parent_id
        else:
            trace_id = headers.get(TRACE_ID_HEADER) or None
            span_id = headers.get(SPAN_ID_HEADER) or None

        return self._derive(
            context=self._context,
            request=RequestContext(
                trace_id=trace_id,
                span_id=span_id,
                request_id=request_id,
                vercel_id=vercel_id,
            ),
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _before_send(self, event: BeforeSendEvent) -> BeforeSendEvent | None:
        hook = self.settings.before_send
        if hook is None:
            return event
        try:
            return hook(event)
        except Exception as e:
            logger.debug("before_send hook raised, sending event unmodified", kind=event.kind, error=str(e))
            return event

    def _emit(self, event: BeforeSendEvent) -> None:
        result = self._before_send(event)
        if result is None:
            return
        match result:
            case LogEntry():
                if self.settings.debug:
                    self._mirror(result)
                self.batcher.add(result)
            case ErrorReport():
                self.transport.send_error(result)
            case SpanData():
                self.transport.send_trace(result)
            case LLMUsageReport():
                self.transport.send_llm_usage(result)
            case _:
                logger.debug("before_send returned an unknown event type, dropped", type=type(result).__name__)

    def flush(self) -> None:
        """Hand buffered log entries to the transport now."""
        self.batcher.flush()

    def destroy(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> None:
        """Flush and wait up to timeout seconds for in-flight sends.

        The root emitter also stops the batch timer and closes the
        transport. Derived emitters leave the shared pipeline running.
        """
        if self._is_root:
            self.batcher.destroy()
            self.transport.drain(timeout)
            self.transport.close()
        else:
            self.batcher.flush()
            self.transport.drain(timeout)

    def __repr__(self) -> str:
        return (
            f"Emitter(service={self.settings.service!r}, context={self._context!r}, "
            f"trace_id={self._request.trace_id!r}, is_root={self._is_root})"
        )


def create_emitter(
    settings: DeepTracerSettings | None = None,
    *,
    profile: RuntimeProfile | None = None,
    **overrides: Any,
) -> Emitter:
    """Create a root emitter.

    With no settings, configuration is read from DEEPTRACER_* environment
    variables and keyword overrides. With settings, overrides are applied
    on top of them.
    """
    if settings is None:
        settings = load_settings(**overrides)
    elif overrides:
        # model_dump() skips the excluded hook fields
        fields = {**settings.model_dump(), "before_send": settings.before_send, "wait_until": settings.wait_until}
        settings = DeepTracerSettings(**{**fields, **overrides})
    return Emitter(settings, profile=profile)

