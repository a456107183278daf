"""
Per-call execution context: deadline, cancellation, and interruptible waits.
One CallContext bounds one request; nothing in it is shared across calls.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

from resource_client.errors import CallTimeoutError, CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _close_quietly(value: Any) -> None:
    close = getattr(value, "close", None)
    if callable(close):
        try:
            close()
        except Exception as e:
            logger.debug("Failed to close abandoned result: %s", e)


class CallContext:
    """
    Cancellable, optionally time-bounded context for one call.
    Thread-safe: cancel() may be called from any thread, any number of times.
    """

    def __init__(
        self,
        timeout_sec: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            timeout_sec: Overall budget in seconds; 0 (or less) means no deadline
            clock: Monotonic clock, injectable for tests
        """
        self._clock = clock
        self._deadline = clock() + timeout_sec if timeout_sec > 0 else None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._waiters: set[threading.Event] = set()
        self._abort_callbacks: list[Callable[[], None]] = []
        self._reason: CancellationError | None = None

    def cancel(self) -> None:
        """Cancel the call. Idempotent; a no-op once already cancelled."""
        with self._lock:
            if self._reason is not None:
                return
            self._reason = CancellationError("Request cancelled")
            self._cancelled.set()
            waiters = list(self._waiters)
        for waiter in waiters:
            waiter.set()
        logger.debug("Call cancelled")

    def remaining(self) -> float | None:
        """Seconds left before the deadline (never negative), None if unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def error(self) -> CancellationError | None:
        """The error the call should end with now, or None if it may proceed."""
        with self._lock:
            if self._reason is not None:
                return self._reason
        if self._deadline is not None and self._clock() >= self._deadline:
            return CallTimeoutError("Request deadline exceeded")
        return None

    @property
    def done(self) -> bool:
        return self.error() is not None

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def wait(self, seconds: float) -> None:
        """
        Sleep for up to seconds, waking early on cancellation or deadline.

        Raises:
            CancellationError: If cancelled or past the deadline when the wait ends
        """
        end = time.monotonic() + max(0.0, seconds)
        while True:
            self.raise_if_done()
            left = end - time.monotonic()
            if left <= 0:
                return
            remaining = self.remaining()
            if remaining is not None:
                left = min(left, remaining)
            self._cancelled.wait(left)

    def on_abort(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register callback to run when an in-flight run() is abandoned on cancel or deadline.
        Used by transports to unblock a call that is stuck on the network.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            self._abort_callbacks.append(callback)

        def _remove() -> None:
            with self._lock:
                if callback in self._abort_callbacks:
                    self._abort_callbacks.remove(callback)

        return _remove

    def _abort_in_flight(self) -> None:
        with self._lock:
            callbacks = list(self._abort_callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug("Abort callback failed: %s", e)

    def run(self, func: Callable[[], T]) -> T:
        """
        Run a blocking function so that cancellation or the deadline can interrupt the wait.

        func runs on a short-lived daemon thread while the calling thread waits for
        either its outcome or the end of the context. If the context ends first, the
        eventual result is closed (when it has a close() method) and dropped, and the
        registered abort callbacks run so func can be unblocked.

        Returns:
            func's result

        Raises:
            CancellationError: If cancelled or past the deadline before func finished
            Exception: Whatever func raised
        """
        self.raise_if_done()
        finished = threading.Event()
        outcome: dict[str, Any] = {}
        state_lock = threading.Lock()

        def _target() -> None:
            try:
                result = func()
            except BaseException as e:
                outcome["error"] = e
            else:
                with state_lock:
                    if outcome.get("abandoned"):
                        _close_quietly(result)
                        return
                    outcome["result"] = result
            finally:
                finished.set()

        with self._lock:
            if self._reason is not None:
                raise self._reason
            self._waiters.add(finished)
        worker = threading.Thread(
            target=_target, name="resource-client-call", daemon=True
        )
        try:
            worker.start()
            while not finished.is_set() and self.error() is None:
                finished.wait(self.remaining())
            with state_lock:
                if "result" in outcome:
                    return outcome["result"]
                if "error" in outcome:
                    raise outcome["error"]
                outcome["abandoned"] = True
            err = self.error()
            logger.debug("Abandoning in-flight call: %s", err)
            self._abort_in_flight()
            raise err
        finally:
            with self._lock:
                self._waiters.discard(finished)

    def __enter__(self) -> CallContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
