"""
DeepTracer: in-process observability client for logs, errors, traces and LLM usage.

Application code emits events through an Emitter; a shared Batcher and a
retrying Transport ship them to the DeepTracer ingestion API without ever
blocking the caller.
"""

from deeptracer.batcher import Batcher
from deeptracer.bootstrap import capture_global_errors, init
from deeptracer.config import DeepTracerSettings, RuntimeProfile, load_settings
from deeptracer.emitter import Emitter, RequestContext, create_emitter
from deeptracer.errors import (
    ClientRejectionError,
    ConfigurationError,
    DeepTracerError,
    DeliveryError,
    TransientDeliveryError,
)
from deeptracer.events import (
    BeforeSendEvent,
    Breadcrumb,
    ErrorReport,
    LLMUsageReport,
    LogEntry,
    LogLevel,
    Severity,
    SpanData,
    SpanStatus,
    User,
)
from deeptracer.logging import DeepTracerHandler, capture_logging
from deeptracer.noop import NoopEmitter, NoopSpan, noop_emitter
from deeptracer.state import EmitterState
from deeptracer.tracing import InactiveSpan, Span, TraceParent, parse_traceparent
from deeptracer.transport import Channel, Transport
from deeptracer.version import __version__

__all__ = [
    "Batcher",
    "BeforeSendEvent",
    "Breadcrumb",
    "Channel",
    "ClientRejectionError",
    "ConfigurationError",
    "DeepTracerError",
    "DeepTracerHandler",
    "DeepTracerSettings",
    "DeliveryError",
    "Emitter",
    "EmitterState",
    "ErrorReport",
    "InactiveSpan",
    "LLMUsageReport",
    "LogEntry",
    "LogLevel",
    "NoopEmitter",
    "NoopSpan",
    "RequestContext",
    "RuntimeProfile",
    "Severity",
    "Span",
    "SpanData",
    "SpanStatus",
    "TraceParent",
    "Transport",
    "TransientDeliveryError",
    "User",
    "__version__",
    "capture_global_errors",
    "capture_logging",
    "create_emitter",
    "init",
    "load_settings",
    "noop_emitter",
    "parse_traceparent",
]
