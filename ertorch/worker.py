"""
Run inversions off the caller's thread.

``InversionWorker`` runs one inversion on a background thread. Progress is
pushed to a bounded ``ProgressChannel`` that never blocks the iteration loop,
and cancellation is a ``CancellationToken`` the controller polls between
iterations.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from .inversion import InversionResult, invert

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ProgressUpdate:
    iteration: int
    rms: float
    convergence: float


class ProgressChannel:
    """
    Bounded buffer of progress updates.

    ``publish`` never blocks: when the buffer is full the oldest update is
    discarded to make room. ``close`` marks the end of the stream for
    iterating readers.

    Parameters
    ----------
    maxsize : int, optional
        Number of buffered updates (default: 64)
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 64):
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self._queue = queue.Queue(maxsize=maxsize + 1)  # one slot for the close marker
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    def publish(self, iteration: int, rms: float, convergence: float):
        """Progress callback: ``(iteration, rms, convergence_delta)``."""
        update = ProgressUpdate(iteration, rms, convergence)
        with self._lock:
            if self._closed:
                return
            while self._queue.qsize() >= self._maxsize:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    break
            self._queue.put_nowait(update)

    __call__ = publish

    def close(self):
        with self._lock:
            if not self._closed:
                self._closed = True
                self._queue.put_nowait(self._CLOSED)

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressUpdate]:
        """
        Next update, or None once the channel is closed and drained.

        Raises
        ------
        queue.Empty
            If no update arrives within ``timeout`` seconds
        """
        item = self._queue.get(timeout=timeout)
        if item is self._CLOSED:
            # keep the marker for other readers
            self._queue.put_nowait(item)
            return None
        return item

    def __iter__(self) -> Iterator[ProgressUpdate]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


class InversionWorker:
    """
    One inversion running on a daemon thread.

    Parameters
    ----------
    data_points : sequence of DataPoint or dict
        Imported readings
    parameters : InversionParameters or dict, optional
        Run configuration
    channel : ProgressChannel, optional
        Destination of progress updates (a new channel by default)

    Examples
    --------
    >>> worker = InversionWorker(points, {"maxIterations": 20}).start()
    >>> for update in worker.updates():
    ...     print(update.iteration, update.rms)
    >>> result = worker.result()
    """

    def __init__(self, data_points, parameters=None, channel: Optional[ProgressChannel] = None):
        self.data_points = data_points
        self.parameters = parameters
        self.channel = channel if channel is not None else ProgressChannel()
        self.token = CancellationToken()
        self._result: Optional[InversionResult] = None
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run, name="ertorch-inversion", daemon=True
        )

    def _run(self):
        try:
            self._result = invert(
                self.data_points,
                self.parameters,
                progress_callback=self.channel.publish,
                cancellation=self.token,
            )
        except Exception as exc:
            logger.debug("Worker inversion failed: %s", exc)
            self._error = exc
        finally:
            self.channel.close()

    def start(self) -> "InversionWorker":
        self._thread.start()
        return self

    def cancel(self):
        """Request cancellation; honoured at the next iteration boundary."""
        self.token.cancel()

    def done(self) -> bool:
        return self._thread.ident is not None and not self._thread.is_alive()

    def updates(self) -> Iterator[ProgressUpdate]:
        """Progress updates until the run ends."""
        return iter(self.channel)

    def result(self, timeout: Optional[float] = None) -> InversionResult:
        """
        Wait for the run and return its result.

        Raises
        ------
        TimeoutError
            If the run does not finish within ``timeout`` seconds
        InversionError
            The error that ended the run, re-raised in the caller's thread
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise TimeoutError(f"Inversion still running after {timeout} s")
        if self._error is not None:
            raise self._error
        return self._result
