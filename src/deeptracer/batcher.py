# src/deeptracer/batcher.py
"""Size- and time-triggered batching for log entries.

The Batcher knows nothing about the network. It accumulates entries and
hands complete batches to a sink callable, which the emitter wires to
Transport.send_logs().

Flush triggers:
- Size: add() flushes synchronously once the buffer reaches batch_size
- Time: a daemon timer thread flushes every flush_interval seconds
- Explicit: flush() / destroy()

Thread Safety:
    The buffer is swapped out under a lock, and the sink is called outside
    the lock with the snapshot. Concurrent add() calls during a slow sink
    land in the fresh buffer and never see a partially cleared one.
"""

import threading
from collections.abc import Callable, Sequence
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Batcher(Generic[T]):
    """Accumulates entries and flushes them by size or on an interval.

    Example:
        batcher = Batcher(transport.send_logs, batch_size=50, flush_interval=5.0)
        batcher.add(entry)
        ...
        batcher.destroy()  # stops the timer, flushes what is left
    """

    def __init__(
        self,
        sink: Callable[[Sequence[T]], object],
        *,
        batch_size: int = 50,
        flush_interval: float = 5.0,
    ) -> None:
        """Initialize the batcher and start its timer.

        Args:
            sink: Called with each non-empty batch, oldest entry first
            batch_size: Buffer length that triggers an immediate flush
            flush_interval: Seconds between timed flushes

        Raises:
            ValueError: If batch_size < 1 or flush_interval <= 0.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {flush_interval}")
        self._sink = sink
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._buffer: list[T] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._timer = threading.Thread(
            target=self._timer_loop,
            name="deeptracer-batcher",
            daemon=True,
        )
        self._timer.start()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def flush_interval(self) -> float:
        return self._flush_interval

    @property
    def pending(self) -> int:
        """Number of buffered entries not yet flushed."""
        with self._lock:
            return len(self._buffer)

    @property
    def running(self) -> bool:
        """Whether the interval timer is still active."""
        return not self._stopped.is_set()

    def add(self, entry: T) -> None:
        with self._lock:
            self._buffer.append(entry)
            full = len(self._buffer) >= self._batch_size
        if full:
            self.flush()

    def flush(self) -> None:
        """Hand the current buffer to the sink. No-op when empty."""
        with self._lock:
            if not self._buffer:
                return
            batch = self._buffer
            self._buffer = []
        try:
            self._sink(batch)
        except Exception as e:
            logger.warning(
                "Batch sink failed, entries dropped",
                entry_count=len(batch),
                error=str(e),
            )

    def destroy(self) -> None:
        """Stop the timer and flush once. Safe to call more than once."""
        self._stopped.set()
        if self._timer.is_alive() and self._timer is not threading.current_thread():
            self._timer.join(timeout=1.0)
        self.flush()

    def _timer_loop(self) -> None:
        # Event.wait returns True once destroy() sets it
        while not self._stopped.wait(self._flush_interval):
            self.flush()
