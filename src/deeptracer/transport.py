# src/deeptracer/transport.py
"""HTTP transport for the DeepTracer ingestion API.

Features:
- Four write channels: logs (batched upstream), errors, traces, llm
- Fire-and-forget: send() submits work to a small thread pool and returns
  a Future immediately; callers are never blocked on the network
- Retry with exponential backoff (3 retries, 1s/2s/4s, +/-20% jitter) via
  tenacity, only for 5xx responses and network errors
- 4xx responses are dropped without retry
- Warn-once per channel: only the first failure after the last success
  is logged, so an unreachable endpoint does not flood the logs
- In-flight tracking for graceful shutdown via drain()

Disabled mode:
    With no credential or no endpoint every send() is a silent no-op. No
    request is attempted and nothing is logged. This keeps local
    development quiet.
"""

import json
import random
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from datetime import date, datetime
from enum import Enum, StrEnum
from typing import Any, Final

import httpx
import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from deeptracer.errors import ClientRejectionError, TransientDeliveryError
from deeptracer.events import ErrorReport, LLMUsageReport, LogEntry, SpanData
from deeptracer.version import SDK_HEADER, SDK_NAME, SDK_VERSION

logger = structlog.get_logger(__name__)

MAX_RETRIES: Final[int] = 3
BASE_DELAYS: Final[tuple[float, ...]] = (1.0, 2.0, 4.0)
JITTER: Final[float] = 0.2
DEFAULT_DRAIN_TIMEOUT: Final[float] = 2.0
REQUEST_TIMEOUT: Final[float] = 10.0


class Channel(StrEnum):
    """Ingestion channels, one per event kind."""

    LOGS = "logs"
    ERRORS = "errors"
    TRACES = "traces"
    LLM = "llm"

    @property
    def path(self) -> str:
        return f"/ingest/{self.value}"

    @property
    def label(self) -> str:
        """Human-readable name used in failure warnings."""
        return _CHANNEL_LABELS[self]


_CHANNEL_LABELS: dict[Channel, str] = {
    Channel.LOGS: "logs",
    Channel.ERRORS: "error",
    Channel.TRACES: "trace",
    Channel.LLM: "LLM usage",
}


class wait_jittered_schedule(wait_base):  # noqa: N801 - tenacity naming convention
    """Wait delays[attempt - 1] seconds, scaled by a random factor in [1-jitter, 1+jitter]."""

    def __init__(self, delays: Sequence[float], jitter: float = JITTER) -> None:
        self._delays = tuple(delays)
        self._jitter = jitter

    def __call__(self, retry_state: Any) -> float:
        index = min(retry_state.attempt_number, len(self._delays)) - 1
        factor = random.uniform(1.0 - self._jitter, 1.0 + self._jitter)
        return self._delays[index] * factor


def _json_default(value: Any) -> Any:
    """Best-effort encoding for values json cannot serialize."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": str(value)}
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    return str(value)


class Transport:
    """Delivers payloads to the ingestion API with retry and drain support.

    Thread Safety:
        send() and drain() may be called from any thread. The in-flight set
        and the warn-once flags are each guarded by a lock. Delivery runs on
        the transport's own worker threads.

    Example:
        transport = Transport(endpoint="https://ingest.example.com", auth_key="dt_secret_...",
                              service="api", environment="production")
        transport.send_error(report)
        transport.drain(timeout=2.0)
        transport.close()
    """

    def __init__(
        self,
        *,
        endpoint: str | None,
        auth_key: str | None,
        service: str,
        environment: str,
        wait_until: Callable[[Future[None]], Any] | None = None,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            endpoint: Ingestion base URL; None disables delivery
            auth_key: Bearer credential; None disables delivery
            service: Service name merged into every payload
            environment: Environment name merged into every payload
            wait_until: Platform hook given every send future, used to keep
                work alive after a serverless response returns
            max_workers: Delivery thread pool size
            sleep: Backoff sleep function (injectable for tests)
            client: Pre-built httpx client (default: one is created)
        """
        self._endpoint = endpoint.rstrip("/") if endpoint else None
        self._auth_key = auth_key
        self._service = service
        self._environment = environment
        self._wait_until = wait_until
        self._sleep = sleep
        self._enabled = bool(self._endpoint) and bool(auth_key)

        # Keyed by a per-send token; the worker removes its own entry before its future completes
        self._in_flight: dict[object, Future[None]] = {}
        self._in_flight_lock = threading.Lock()
        self._warned: set[str] = set()
        self._warned_lock = threading.Lock()
        self._closed = False

        self._executor: ThreadPoolExecutor | None = None
        self._client: httpx.Client | None = None
        if self._enabled:
            self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="deeptracer-transport")
            self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        """Number of sends that have not settled yet."""
        with self._in_flight_lock:
            return len(self._in_flight)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._auth_key}",
            SDK_HEADER: f"{SDK_NAME}/{SDK_VERSION}",
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send(self, channel: Channel, payload: Mapping[str, Any]) -> "Future[None]":
        """Submit one payload for delivery on a channel.

        The service and environment names are merged into the body. Never
        raises and never blocks on the network.

        Returns:
            Future that settles when delivery succeeds or is given up. In
            disabled mode (or after close()) it is already completed.
        """
        if not self._enabled or self._executor is None:
            return _completed()

        body = {**payload, "service": self._service, "environment": self._environment}
        with self._in_flight_lock:
            if self._closed:
                logger.debug("Transport closed, dropping payload", channel=channel.value)
                return _completed()
            # The worker cannot untrack before this insert: it needs the same lock
            token = object()
            future = self._executor.submit(self._run, token, channel, body)
            self._in_flight[token] = future

        if self._wait_until is not None:
            try:
                self._wait_until(future)
            except Exception as e:
                logger.debug("wait_until hook failed", error=str(e))
        return future

    def send_logs(self, entries: Sequence[LogEntry]) -> "Future[None]":
        return self.send(Channel.LOGS, {"logs": [entry.to_payload() for entry in entries]})

    def send_error(self, report: ErrorReport) -> "Future[None]":
        return self.send(Channel.ERRORS, report.to_payload())

    def send_trace(self, span: SpanData) -> "Future[None]":
        return self.send(Channel.TRACES, span.to_payload())

    def send_llm_usage(self, report: LLMUsageReport) -> "Future[None]":
        return self.send(Channel.LLM, report.to_payload())

    def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> None:
        """Wait for in-flight sends to settle, or for timeout seconds.

        Returns on whichever comes first. Never raises and never cancels
        the underlying work; it only stops waiting for it.
        """
        with self._in_flight_lock:
            pending = list(self._in_flight.values())
        if not pending:
            return
        done, not_done = wait_futures(pending, timeout=timeout)
        if not_done:
            logger.debug(
                "Transport drain timed out",
                completed=len(done),
                still_in_flight=len(not_done),
                timeout=timeout,
            )

    def close(self) -> None:
        """Stop accepting sends and release resources.

        In-flight sends keep running; the HTTP client is closed once the
        last of them settles. Idempotent.
        """
        with self._in_flight_lock:
            if self._closed:
                return
            self._closed = True
            idle = not self._in_flight
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        if idle:
            self._close_client()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _run(self, token: object, channel: Channel, body: dict[str, Any]) -> None:
        try:
            self._deliver(channel, body)
        finally:
            with self._in_flight_lock:
                self._in_flight.pop(token, None)
                idle = self._closed and not self._in_flight
            if idle:
                self._close_client()

    def _close_client(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug("HTTP client close failed", error=str(e))

    def _deliver(self, channel: Channel, body: dict[str, Any]) -> None:
        """Deliver one body, retrying transient failures. Never raises."""
        label = channel.label
        url = f"{self._endpoint}{channel.path}"
        try:
            content = json.dumps(body, default=_json_default)
            for attempt in Retrying(
                stop=stop_after_attempt(MAX_RETRIES + 1),
                wait=wait_jittered_schedule(BASE_DELAYS),
                retry=retry_if_exception_type(TransientDeliveryError),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    self._attempt(url, content, label)
        except ClientRejectionError as e:
            self._warn_once(label, str(e))
            return
        except TransientDeliveryError as e:
            self._warn_once(label, f"{e} (exhausted {MAX_RETRIES} retries)")
            return
        except Exception as e:
            # Serialization bugs and the like: drop, never crash the worker
            self._warn_once(label, f"Failed to send {label}: {e}")
            return

        with self._warned_lock:
            self._warned.discard(label)

    def _attempt(self, url: str, content: str, label: str) -> None:
        """One POST. Classifies the outcome into success or a DeliveryError."""
        assert self._client is not None
        try:
            response = self._client.post(url, content=content, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientDeliveryError(label, None, str(e) or type(e).__name__) from e

        if response.is_success:
            return
        if 400 <= response.status_code < 500:
            raise ClientRejectionError(label, response.status_code, response.reason_phrase)
        raise TransientDeliveryError(label, response.status_code, response.reason_phrase)

    def _warn_once(self, label: str, message: str) -> None:
        """Log a failure warning only if none is standing for this label."""
        with self._warned_lock:
            if label in self._warned:
                return
            self._warned.add(label)
        logger.warning(message, channel=label)


def _completed() -> "Future[None]":
    future: Future[None] = Future()
    future.set_result(None)
    return future
