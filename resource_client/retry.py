"""
Retry logic with exponential backoff and jitter for resource calls.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.utils import formatdate
from typing import Callable, Iterable

import requests

from resource_client.context import CallContext
from resource_client.errors import (
    CancellationError,
    TransportError,
    TransportTimeoutError,
)
from resource_client.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRIES = 3
DEFAULT_RETRYABLE_CODES = (429, 500, 503, 504)
DEFAULT_JITTER = True


@dataclass
class RetryResult:
    """Outcome of a retry loop: last response (if any), transport invocations made, last error."""

    response: requests.Response | None
    tries: int
    error: Exception | None = None


class RetryPolicy(ABC):
    """Interface for sending a request until it succeeds or a stop condition is met."""

    @abstractmethod
    def try_send(
        self,
        transport: Transport,
        request: requests.PreparedRequest,
        context: CallContext,
    ) -> RetryResult:
        """Send request through transport, retrying as the policy allows, within context."""
        ...


def _chain(error: Exception, cause: Exception) -> Exception:
    error.__cause__ = cause
    return error


class ExponentialRetryPolicy(RetryPolicy):
    """
    Retry policy with exponential backoff.
    Retries when an attempt times out or the response status is retryable.
    """

    def __init__(
        self,
        max_tries: int = DEFAULT_MAX_TRIES,
        retryable_codes: Iterable[int] = DEFAULT_RETRYABLE_CODES,
        jitter: bool = DEFAULT_JITTER,
        sleep: Callable[[float], None] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Args:
            max_tries: Maximum number of transport invocations (1 = no retry)
            retryable_codes: HTTP status codes that trigger a retry
            jitter: Randomize each delay by up to 25% of its growth
            sleep: Delay function (seconds); None waits on the call context so
                   cancellation interrupts the backoff
            rng: Random source for jitter
        """
        self._max_tries = max(1, int(max_tries))
        self._retryable_codes = frozenset(retryable_codes) or frozenset(
            DEFAULT_RETRYABLE_CODES
        )
        self._jitter = bool(jitter)
        self._sleep = sleep
        self._rng = rng if rng is not None else random.Random()

    @property
    def max_tries(self) -> int:
        return self._max_tries

    @property
    def retryable_codes(self) -> frozenset[int]:
        return self._retryable_codes

    @property
    def jitter(self) -> bool:
        return self._jitter

    def with_max_tries(self, max_tries: int) -> ExponentialRetryPolicy:
        """Set the maximum number of tries; values below 1 are ignored."""
        if max_tries is not None and max_tries > 0:
            self._max_tries = int(max_tries)
        return self

    def with_retryable_codes(
        self, retryable_codes: Iterable[int] | None
    ) -> ExponentialRetryPolicy:
        """Set the status codes that trigger a retry; None or empty is ignored."""
        codes = frozenset(retryable_codes or ())
        if codes:
            self._retryable_codes = codes
        return self

    def with_jitter(self, jitter: bool) -> ExponentialRetryPolicy:
        self._jitter = bool(jitter)
        return self

    @staticmethod
    def backoff_delay(attempt: int) -> int:
        """Base delay in seconds after attempt n (1-based): floor((2^n - 1) / 2) -> 0, 1, 3, 7, 15..."""
        if attempt < 1:
            return 0
        return (2**attempt - 1) // 2

    def jitter_for(self, delay: int, previous_delay: int) -> int:
        """Random offset in [-max_jitter, max_jitter) with max_jitter = 25% of the delay growth."""
        if not self._jitter:
            return 0
        max_jitter = int((delay - previous_delay) * 0.25)
        if max_jitter <= 0:
            return 0
        return self._rng.randrange(-max_jitter, max_jitter)

    def _is_retryable(
        self, response: requests.Response | None, error: Exception | None
    ) -> bool:
        if isinstance(error, TransportTimeoutError):
            return True
        return response is not None and response.status_code in self._retryable_codes

    def _pause(self, seconds: float, context: CallContext) -> None:
        if self._sleep is None:
            context.wait(seconds)
        else:
            self._sleep(seconds)
            context.raise_if_done()

    def try_send(
        self,
        transport: Transport,
        request: requests.PreparedRequest,
        context: CallContext,
    ) -> RetryResult:
        """
        Send request, retrying timed-out attempts and retryable statuses.

        Returns:
            RetryResult with the last response (None if the last attempt produced none),
            the number of transport invocations, and the last error (None on success
            or when the retryable statuses were exhausted)
        """
        response: requests.Response | None = None
        error: Exception | None = None
        previous_delay = 0
        tries = 0

        for attempt in range(1, self._max_tries + 1):
            tries = attempt
            response = None
            error = None
            request.headers["Date"] = formatdate(usegmt=True)

            try:
                response = context.run(
                    lambda: transport.send(
                        request, timeout=context.remaining(), context=context
                    )
                )
            except CancellationError as e:
                return RetryResult(None, tries, e)
            except TransportTimeoutError as e:
                error = e
            except requests.Timeout as e:
                error = _chain(TransportTimeoutError(f"Request timed out: {e}"), e)
            except TransportError as e:
                error = e
            except requests.RequestException as e:
                error = _chain(TransportError(f"Request failed: {e}"), e)

            if not self._is_retryable(response, error):
                break

            reason = error if error is not None else f"HTTP {response.status_code}"
            if attempt >= self._max_tries:
                logger.warning(
                    "Retry exhausted after %d attempts: %s", attempt, reason
                )
                break

            delay = self.backoff_delay(attempt)
            jitter = self.jitter_for(delay, previous_delay)
            previous_delay = delay
            wait = max(0, delay + jitter)
            logger.debug(
                "Retry attempt %d/%d after %ds: %s",
                attempt,
                self._max_tries,
                wait,
                reason,
            )
            if response is not None:
                response.close()
            try:
                self._pause(wait, context)
            except CancellationError as e:
                return RetryResult(None, tries, e)

        return RetryResult(response, tries, error)
