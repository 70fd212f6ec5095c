# src/deeptracer/logging.py
"""Forward the application's own stdlib log records to DeepTracer.

capture_logging() attaches a DeepTracerHandler to a logger (the root logger
by default). Every record that reaches it becomes a DeepTracer log entry;
the application's existing handlers keep working unchanged.

Record mapping:
- Level: DEBUG -> debug, INFO -> info, WARNING -> warn, ERROR/CRITICAL -> error
- Message: record.getMessage(), so %-style args are interpolated
- Metadata: ``extra={...}`` fields and mapping args (``log.info("%(user)s", {...})``)
- exc_info: serialized into ``metadata["error"]``
- structlog event dicts (``ProcessorFormatter.wrap_for_formatter``): the
  ``event`` key is the message, the other keys become metadata

Recursion:
    Records from ``deeptracer.*`` loggers and from the SDK's own worker
    threads (httpx request logs emitted while delivering) are skipped, and
    a record logged while the handler is already forwarding on the same
    thread is ignored.
"""

import logging
import sys
import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from deeptracer.events import LogLevel

if TYPE_CHECKING:
    from deeptracer.emitter import Emitter
    from deeptracer.noop import NoopEmitter

# Logger that mirrors accepted log entries when settings.debug is set
CONSOLE_LOGGER_NAME = "deeptracer.console"

_INTERNAL_PREFIX = "deeptracer"
_INTERNAL_THREAD_PREFIX = "deeptracer-"

# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "taskName"}

# structlog keys the log entry already carries itself
_STRUCTLOG_SKIP_KEYS = frozenset({"event", "exc_info", "stack_info", "level", "timestamp"})


def level_for(levelno: int) -> LogLevel:
    """Map a stdlib level number onto the four DeepTracer levels."""
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    if levelno >= logging.INFO:
        return LogLevel.INFO
    return LogLevel.DEBUG


def _exception_of(exc_info: Any) -> BaseException | None:
    if isinstance(exc_info, BaseException):
        return exc_info
    if isinstance(exc_info, tuple) and len(exc_info) == 3:
        return exc_info[1]
    if exc_info is True:
        return sys.exc_info()[1]
    return None


def parse_log_record(record: logging.LogRecord) -> tuple[str, dict[str, Any], BaseException | None]:
    """Split a record into ``(message, metadata, exception)``."""
    metadata: dict[str, Any] = {}

    if isinstance(record.msg, Mapping):
        event_dict = dict(record.msg)
        message = str(event_dict.get("event", ""))
        error = _exception_of(event_dict.get("exc_info"))
        metadata.update({key: value for key, value in event_dict.items() if key not in _STRUCTLOG_SKIP_KEYS})
    else:
        message = record.getMessage()
        error = None
        if isinstance(record.args, Mapping):
            metadata.update(record.args)

    metadata.update(
        {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS and not key.startswith("_")}
    )
    if error is None and record.exc_info:
        error = _exception_of(record.exc_info)
    return message, metadata, error


def _is_internal(record: logging.LogRecord) -> bool:
    if record.name == _INTERNAL_PREFIX or record.name.startswith(f"{_INTERNAL_PREFIX}."):
        return True
    return (record.threadName or "").startswith(_INTERNAL_THREAD_PREFIX)


class DeepTracerHandler(logging.Handler):
    """logging.Handler that forwards records to an emitter.

    Example:
        handler = DeepTracerHandler(emitter, level=logging.INFO)
        logging.getLogger("myapp").addHandler(handler)
    """

    def __init__(self, emitter: "Emitter | NoopEmitter", level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._emitter = emitter
        self._local = threading.local()

    @property
    def emitter(self) -> "Emitter | NoopEmitter":
        return self._emitter

    def emit(self, record: logging.LogRecord) -> None:
        if _is_internal(record) or getattr(self._local, "forwarding", False):
            return
        self._local.forwarding = True
        try:
            message, metadata, error = parse_log_record(record)
            method = {
                LogLevel.DEBUG: self._emitter.debug,
                LogLevel.INFO: self._emitter.info,
                LogLevel.WARN: self._emitter.warn,
                LogLevel.ERROR: self._emitter.error,
            }[level_for(record.levelno)]
            method(message, metadata or None, error)
        except Exception:
            self.handleError(record)
        finally:
            self._local.forwarding = False


def capture_logging(
    emitter: "Emitter | NoopEmitter",
    *,
    level: int = logging.INFO,
    logger: logging.Logger | str | None = None,
) -> Callable[[], None]:
    """Forward records reaching a logger to the emitter.

    The logger's own level still applies: the root logger defaults to
    WARNING, so lower it (or configure logging) to forward INFO records.

    Args:
        emitter: Receives one log call per forwarded record
        level: Handler threshold; records below it are not forwarded
        logger: Logger or logger name (default: the root logger)

    Returns:
        Callable that detaches the handler again.
    """
    target = logger if isinstance(logger, logging.Logger) else logging.getLogger(logger)
    handler = DeepTracerHandler(emitter, level)
    target.addHandler(handler)

    def restore() -> None:
        target.removeHandler(handler)

    return restore
