# src/deeptracer/bootstrap.py
"""One-call setup for applications.

init() resolves settings from the environment, builds the root emitter and
installs global error capture. A missing credential or endpoint is not an
error for the host application: init() logs one warning and returns the
inert NoopEmitter, so instrumentation calls keep working as no-ops.
"""

import sys
import threading
from collections.abc import Callable
from types import TracebackType
from typing import Any

import structlog

from deeptracer.config import RuntimeProfile, load_settings
from deeptracer.emitter import Emitter
from deeptracer.errors import ConfigurationError
from deeptracer.events import Severity
from deeptracer.noop import NoopEmitter

logger = structlog.get_logger(__name__)


def init(
    *,
    profile: RuntimeProfile | None = None,
    capture_errors: bool = True,
    **overrides: Any,
) -> Emitter | NoopEmitter:
    """Create the root emitter from DEEPTRACER_* variables and overrides.

    Args:
        profile: Hosting platform facts (default: detected)
        capture_errors: Install sys/threading excepthooks on the new emitter
        **overrides: DeepTracerSettings fields that win over the environment

    Returns:
        A root Emitter, or NoopEmitter when delivery is not configured.
    """
    try:
        settings = load_settings(**overrides).require_delivery()
    except ConfigurationError as e:
        logger.warning(
            "DeepTracer is not configured, events will not be sent",
            setting=e.setting,
            hint=e.message,
        )
        return NoopEmitter()

    emitter = Emitter(settings, profile=profile)
    if capture_errors:
        capture_global_errors(emitter)
    return emitter


def capture_global_errors(emitter: Emitter) -> Callable[[], None]:
    """Report uncaught exceptions through the emitter.

    Exceptions escaping the main thread are reported with severity
    ``critical``; exceptions escaping other threads with ``high``. Each
    report is flushed right away and the previously installed hook still
    runs, so default tracebacks keep printing.

    Returns:
        A callable that restores the hooks that were installed before.
    """
    previous_excepthook = sys.excepthook
    previous_threading_hook = threading.excepthook

    def excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: TracebackType | None,
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            _report(emitter, exc_value, Severity.CRITICAL)
        previous_excepthook(exc_type, exc_value, exc_tb)

    def threading_excepthook(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is not None and args.exc_type is not SystemExit:
            _report(emitter, args.exc_value, Severity.HIGH)
        previous_threading_hook(args)

    sys.excepthook = excepthook
    threading.excepthook = threading_excepthook

    def restore() -> None:
        sys.excepthook = previous_excepthook
        threading.excepthook = previous_threading_hook

    return restore


def _report(emitter: Emitter, error: BaseException, severity: Severity) -> None:
    try:
        emitter.capture_error(error, severity=severity)
        emitter.flush()
    except Exception as e:
        logger.debug("Global error capture failed", error=str(e))
