# src/deeptracer/otel.py
"""OpenTelemetry bridge: forward finished OTel spans to DeepTracer.

Frameworks and libraries instrumented with OpenTelemetry produce spans the
emitter never sees. DeepTracerSpanProcessor plugs into an SDK
TracerProvider, converts every finished ReadableSpan into SpanData and
sends it on the traces channel through its own Transport.

Conversion:
    - trace_id / span_id: lowercase hex (32 / 16 chars)
    - parent_span_id: parent's span id, or "" for root spans
    - start_time: ISO 8601 UTC with milliseconds
    - duration_ms: (end_time - start_time) in milliseconds
    - status: "error" iff the OTel status code is ERROR, else "ok"
    - metadata: span attributes minus None values, plus
      ``otel.status_message`` and ``otel.scope.name`` when present

A bridging fault must never break request handling: every failure inside
on_end() is swallowed.

Registration guard:
    register_span_processor() adds the processor at most once per process.
    The flag lives on the ``sys`` module rather than in this module's
    globals, so re-importing or reloading the package does not reset it.
"""

import sys
from datetime import UTC, datetime
from typing import Any, Final

import structlog
from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor, TracerProvider
from opentelemetry.trace import StatusCode

from deeptracer.config import DeepTracerSettings
from deeptracer.events import SpanData, SpanStatus, utc_timestamp
from deeptracer.transport import Transport

logger = structlog.get_logger(__name__)

REGISTERED_ATTR: Final[str] = "_deeptracer_otel_registered"
PROCESSOR_DRAIN_TIMEOUT: Final[float] = 5.0


def is_already_registered() -> bool:
    """Whether a DeepTracer span processor was registered in this process."""
    return getattr(sys, REGISTERED_ATTR, False) is True


def mark_registered() -> None:
    setattr(sys, REGISTERED_ATTR, True)


def _ns_to_timestamp(nanoseconds: int) -> str:
    return utc_timestamp(datetime.fromtimestamp(nanoseconds / 1_000_000_000, tz=UTC))


def convert_span(span: ReadableSpan) -> SpanData | None:
    """Convert a finished OTel span to SpanData, or None if it has no context."""
    ctx = span.get_span_context()
    if ctx is None or span.start_time is None:
        return None

    end_time = span.end_time if span.end_time is not None else span.start_time
    parent = span.parent
    status = span.status

    metadata: dict[str, Any] = {}
    for key, value in (span.attributes or {}).items():
        if value is not None:
            # OTel attribute sequences are tuples; JSON wants lists
            metadata[key] = list(value) if isinstance(value, tuple) else value
    if status is not None and status.description:
        metadata["otel.status_message"] = status.description
    scope = span.instrumentation_scope
    if scope is not None and scope.name:
        metadata["otel.scope.name"] = scope.name

    return SpanData(
        trace_id=trace.format_trace_id(ctx.trace_id),
        span_id=trace.format_span_id(ctx.span_id),
        parent_span_id=trace.format_span_id(parent.span_id) if parent is not None else "",
        operation=span.name,
        start_time=_ns_to_timestamp(span.start_time),
        duration_ms=(end_time - span.start_time) / 1_000_000,
        status=SpanStatus.ERROR if status is not None and status.status_code is StatusCode.ERROR else SpanStatus.OK,
        metadata=metadata or None,
    )


class DeepTracerSpanProcessor(SpanProcessor):
    """SpanProcessor that ships finished OTel spans to the traces channel.

    The processor owns a Transport built from the same settings as the
    emitter; before_send from the settings applies to every converted span.
    """

    def __init__(self, settings: DeepTracerSettings, *, transport: Transport | None = None) -> None:
        self._settings = settings
        self._transport = transport or Transport(
            endpoint=settings.endpoint,
            auth_key=settings.auth_key,
            service=settings.service,
            environment=settings.environment,
            wait_until=settings.wait_until,
        )
        self._is_shutdown = False

    @property
    def transport(self) -> Transport:
        return self._transport

    def on_start(self, span: Any, parent_context: Context | None = None) -> None:
        """Only finished spans are processed."""

    def on_end(self, span: ReadableSpan) -> None:
        if self._is_shutdown:
            return
        try:
            data = convert_span(span)
            if data is None:
                return
            hook = self._settings.before_send
            if hook is not None:
                result = hook(data)
                if result is None:
                    return
                if not isinstance(result, SpanData):
                    logger.debug("before_send returned a non-span event for an OTel span, dropped")
                    return
                data = result
            self._transport.send_trace(data)
            if self._settings.debug:
                logger.debug("OTel span forwarded", operation=data.operation, duration_ms=round(data.duration_ms, 1))
        except Exception as e:
            logger.debug("OTel span conversion failed", error=str(e))

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        self._transport.drain(min(PROCESSOR_DRAIN_TIMEOUT, timeout_millis / 1000))
        return True

    def shutdown(self) -> None:
        self._is_shutdown = True
        self._transport.drain(PROCESSOR_DRAIN_TIMEOUT)
        self._transport.close()


def register_span_processor(
    settings: DeepTracerSettings,
    tracer_provider: Any | None = None,
) -> DeepTracerSpanProcessor | None:
    """Add a DeepTracerSpanProcessor to a tracer provider, once per process.

    Args:
        settings: Settings for the processor's transport and hooks
        tracer_provider: Provider to attach to (default: the global one; an
            SDK TracerProvider is installed globally if none is set)

    Returns:
        The new processor, or None if one was already registered.
    """
    if is_already_registered():
        logger.debug("DeepTracer span processor already registered, skipping")
        return None

    provider = tracer_provider if tracer_provider is not None else trace.get_tracer_provider()
    if not hasattr(provider, "add_span_processor"):
        # The API's default proxy provider cannot take processors
        provider = TracerProvider()
        trace.set_tracer_provider(provider)

    processor = DeepTracerSpanProcessor(settings)
    provider.add_span_processor(processor)
    mark_registered()
    logger.debug("DeepTracer span processor registered", service=settings.service)
    return processor
