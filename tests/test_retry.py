"""Tests for resource_client.retry: ExponentialRetryPolicy try_send, backoff, jitter."""

from __future__ import annotations

import io
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from resource_client.context import CallContext
from resource_client.errors import (
    CancellationError,
    TransportError,
    TransportTimeoutError,
)
from resource_client.retry import ExponentialRetryPolicy, RetryPolicy
from resource_client.transport import Transport


class _TrackedResponse(requests.Response):
    def __init__(self) -> None:
        super().__init__()
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        super().close()


def _response(status: int, body: bytes = b"{}") -> _TrackedResponse:
    r = _TrackedResponse()
    r.status_code = status
    r.raw = io.BytesIO(body)
    return r


class _ScriptedTransport(Transport):
    """Plays outcomes in order (status codes or exceptions); the last one repeats."""

    def __init__(self, *outcomes: int | Exception) -> None:
        self._outcomes = list(outcomes)
        self.responses: list[_TrackedResponse] = []
        self.timeouts: list[float | None] = []
        self.dates: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.timeouts)

    def send(self, request, timeout=None, context=None):
        self.timeouts.append(timeout)
        self.dates.append(request.headers.get("Date"))
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        r = _response(outcome)
        self.responses.append(r)
        return r


def _request() -> requests.PreparedRequest:
    return requests.Request("GET", "http://nowhere/").prepare()


def test_exponential_policy_is_a_retry_policy() -> None:
    assert isinstance(ExponentialRetryPolicy(), RetryPolicy)


def test_defaults() -> None:
    policy = ExponentialRetryPolicy()
    assert policy.max_tries == 3
    assert policy.retryable_codes == frozenset({429, 500, 503, 504})
    assert policy.jitter is True


def test_customized_with_chaining() -> None:
    policy = ExponentialRetryPolicy()
    observed = policy.with_jitter(False).with_max_tries(10).with_retryable_codes([999, 998])
    assert observed is policy
    assert policy.jitter is False
    assert policy.max_tries == 10
    assert policy.retryable_codes == frozenset({999, 998})


def test_setters_ignore_invalid_values() -> None:
    policy = ExponentialRetryPolicy().with_max_tries(0).with_retryable_codes([])
    policy.with_retryable_codes(None)
    assert policy.max_tries == 3
    assert policy.retryable_codes == frozenset({429, 500, 503, 504})


def test_init_clamps_max_tries() -> None:
    assert ExponentialRetryPolicy(max_tries=0).max_tries == 1
    assert ExponentialRetryPolicy(max_tries=-3).max_tries == 1


@pytest.mark.parametrize(
    "attempt,expected", [(0, 0), (1, 0), (2, 1), (3, 3), (4, 7), (5, 15), (6, 31)]
)
def test_backoff_delay(attempt: int, expected: int) -> None:
    assert ExponentialRetryPolicy.backoff_delay(attempt) == expected


def test_success_first_try() -> None:
    sleeps: list[float] = []
    transport = _ScriptedTransport(200)
    result = ExponentialRetryPolicy(sleep=sleeps.append).try_send(
        transport, _request(), CallContext()
    )
    assert result.tries == 1
    assert result.error is None
    assert result.response.status_code == 200
    assert transport.calls == 1
    assert sleeps == []


def test_retryable_status_then_success() -> None:
    sleeps: list[float] = []
    transport = _ScriptedTransport(500, 500, 500, 200)
    policy = ExponentialRetryPolicy(max_tries=4, jitter=False, sleep=sleeps.append)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 4
    assert result.error is None
    assert result.response.status_code == 200
    assert sleeps == [0, 1, 3]


def test_discarded_responses_are_closed() -> None:
    transport = _ScriptedTransport(503, 200)
    policy = ExponentialRetryPolicy(jitter=False, sleep=lambda s: None)
    result = policy.try_send(transport, _request(), CallContext())
    assert transport.responses[0].close_calls == 1
    assert result.response is transport.responses[1]
    assert result.response.close_calls == 0


def test_retryable_status_exhausted_returns_last_response() -> None:
    sleeps: list[float] = []
    transport = _ScriptedTransport(503)
    policy = ExponentialRetryPolicy(jitter=False, sleep=sleeps.append)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 3
    assert result.error is None
    assert result.response.status_code == 503
    assert transport.calls == 3
    # No backoff after the last allowed attempt
    assert sleeps == [0, 1]


def test_timeouts_then_success() -> None:
    transport = _ScriptedTransport(requests.Timeout("slow"), requests.Timeout("slow"), 200)
    policy = ExponentialRetryPolicy(sleep=lambda s: None)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 3
    assert result.error is None
    assert result.response.status_code == 200


def test_perpetual_timeout_never_exceeds_max_tries() -> None:
    transport = _ScriptedTransport(requests.ReadTimeout("slow"))
    policy = ExponentialRetryPolicy(max_tries=5, sleep=lambda s: None)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 5
    assert transport.calls == 5
    assert result.response is None
    assert isinstance(result.error, TransportTimeoutError)
    assert isinstance(result.error.__cause__, requests.ReadTimeout)


def test_transport_timeout_error_is_retryable() -> None:
    transport = _ScriptedTransport(TransportTimeoutError("slow"), 200)
    result = ExponentialRetryPolicy(sleep=lambda s: None).try_send(
        transport, _request(), CallContext()
    )
    assert result.tries == 2
    assert result.error is None


@pytest.mark.parametrize("status", [200, 201, 400, 404, 502])
def test_non_retryable_status_stops_immediately(status: int) -> None:
    transport = _ScriptedTransport(status, 200)
    result = ExponentialRetryPolicy(sleep=lambda s: None).try_send(
        transport, _request(), CallContext()
    )
    assert result.tries == 1
    assert result.response.status_code == status
    assert result.error is None


def test_connection_error_is_not_retried() -> None:
    transport = _ScriptedTransport(requests.ConnectionError("refused"), 200)
    result = ExponentialRetryPolicy(sleep=lambda s: None).try_send(
        transport, _request(), CallContext()
    )
    assert result.tries == 1
    assert result.response is None
    assert isinstance(result.error, TransportError)
    assert not isinstance(result.error, TransportTimeoutError)
    assert isinstance(result.error.__cause__, requests.ConnectionError)


def test_custom_retryable_codes() -> None:
    transport = _ScriptedTransport(418, 200)
    policy = ExponentialRetryPolicy(retryable_codes=[418], sleep=lambda s: None)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 2
    assert result.response.status_code == 200


def test_jitter_applied_on_delay_growth() -> None:
    sleeps: list[float] = []
    rng = MagicMock()
    rng.randrange.return_value = -1
    transport = _ScriptedTransport(503)
    policy = ExponentialRetryPolicy(max_tries=6, sleep=sleeps.append, rng=rng)
    result = policy.try_send(transport, _request(), CallContext())
    assert result.tries == 6
    # Base delays 0, 1, 3, 7, 15; growth only reaches 4 from attempt 4 on
    assert sleeps == [0, 1, 3, 6, 14]
    assert [c.args for c in rng.randrange.call_args_list] == [(-1, 1), (-2, 2)]


def test_jitter_disabled_uses_exact_delays() -> None:
    sleeps: list[float] = []
    rng = MagicMock()
    transport = _ScriptedTransport(503)
    policy = ExponentialRetryPolicy(max_tries=6, jitter=False, sleep=sleeps.append, rng=rng)
    policy.try_send(transport, _request(), CallContext())
    assert sleeps == [0, 1, 3, 7, 15]
    rng.randrange.assert_not_called()


def test_jitter_for_bounds() -> None:
    policy = ExponentialRetryPolicy()
    for _ in range(100):
        offset = policy.jitter_for(15, 7)
        assert -2 <= offset < 2
    assert policy.jitter_for(3, 1) == 0
    assert policy.jitter_for(1, 3) == 0


def test_each_attempt_is_stamped_with_date() -> None:
    transport = _ScriptedTransport(500, 200)
    ExponentialRetryPolicy(sleep=lambda s: None).try_send(
        transport, _request(), CallContext()
    )
    assert len(transport.dates) == 2
    assert all(d and d.endswith("GMT") for d in transport.dates)


def test_transport_receives_remaining_budget() -> None:
    transport = _ScriptedTransport(200)
    ExponentialRetryPolicy().try_send(transport, _request(), CallContext())
    assert transport.timeouts == [None]
    transport = _ScriptedTransport(200)
    ExponentialRetryPolicy().try_send(transport, _request(), CallContext(timeout_sec=30))
    assert 0 < transport.timeouts[0] <= 30


def test_cancel_interrupts_backoff() -> None:
    transport = _ScriptedTransport(503)
    ctx = CallContext()
    policy = ExponentialRetryPolicy(max_tries=10, jitter=False)
    timer = threading.Timer(0.3, ctx.cancel)
    timer.start()
    start = time.monotonic()
    result = policy.try_send(transport, _request(), ctx)
    elapsed = time.monotonic() - start
    timer.join()
    assert isinstance(result.error, CancellationError)
    assert result.response is None
    assert 1 <= result.tries < 10
    assert elapsed < 1.0


def test_cancelled_context_stops_before_sending() -> None:
    transport = _ScriptedTransport(200)
    ctx = CallContext()
    ctx.cancel()
    result = ExponentialRetryPolicy().try_send(transport, _request(), ctx)
    assert isinstance(result.error, CancellationError)
    assert result.response is None
    assert transport.calls == 0


def test_injected_sleep_checks_cancellation_afterwards() -> None:
    ctx = CallContext()
    transport = _ScriptedTransport(503)
    policy = ExponentialRetryPolicy(max_tries=5, sleep=lambda s: ctx.cancel())
    result = policy.try_send(transport, _request(), ctx)
    assert isinstance(result.error, CancellationError)
    assert result.tries == 1
    assert transport.calls == 1
