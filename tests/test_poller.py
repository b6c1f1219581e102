"""Status polling cadence, bounds and cancellation."""

import asyncio

import pytest

from yappypay.common.errors import NetworkError
from yappypay.services.yappy.poller import (
    CancellationToken,
    PollState,
    RetryPolicy,
    StatusPoller,
)
from yappypay.services.yappy.schemas import TransactionStatus


class RecordingSleep:
    """Records requested waits without actually waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds, token):
        self.calls.append(seconds)
        return token.cancelled


def scripted(statuses):
    """Fetch function returning `statuses` in order; exceptions in the list are raised."""

    calls = []
    queue = list(statuses)

    async def fetch():
        calls.append(1)
        item = queue.pop(0) if queue else TransactionStatus.PENDING
        if isinstance(item, Exception):
            raise item
        return item

    return fetch, calls


def test_pending_forever_times_out_after_24_attempts():
    """Defaults: 24 reads spaced 5 s apart, about two minutes in total."""

    sleep = RecordingSleep()
    fetch, calls = scripted([])

    outcome = asyncio.run(StatusPoller(RetryPolicy(), sleep).run(fetch, CancellationToken()))

    assert outcome.state is PollState.TIMEOUT
    assert outcome.attempts == 24
    assert len(calls) == 24
    assert sleep.calls == [5.0] * 23
    assert RetryPolicy().ceiling_seconds == 120.0


def test_terminal_status_stops_immediately():
    updates = []
    fetch, calls = scripted([TransactionStatus.PENDING, TransactionStatus.UNKNOWN, TransactionStatus.COMPLETED])

    outcome = asyncio.run(
        StatusPoller(RetryPolicy(), RecordingSleep()).run(fetch, CancellationToken(), updates.append)
    )

    assert outcome.state is PollState.TERMINAL
    assert outcome.status is TransactionStatus.COMPLETED
    assert outcome.attempts == 3
    assert [u.status for u in updates] == [TransactionStatus.PENDING, TransactionStatus.UNKNOWN]


def test_errors_consume_attempts():
    updates = []
    fetch, calls = scripted([NetworkError("down")] * 3)

    outcome = asyncio.run(
        StatusPoller(RetryPolicy(max_attempts=3), RecordingSleep()).run(fetch, CancellationToken(), updates.append)
    )

    assert outcome.state is PollState.TIMEOUT
    assert outcome.attempts == 3
    assert all(u.error for u in updates)


def test_cancel_before_start_makes_no_reads():
    token = CancellationToken()
    token.cancel()
    fetch, calls = scripted([])

    outcome = asyncio.run(StatusPoller(RetryPolicy(), RecordingSleep()).run(fetch, token))

    assert outcome.state is PollState.CANCELLED
    assert calls == []


def test_cancel_during_wait_stops_polling():
    token = CancellationToken()
    fetch, calls = scripted([])

    def cancel_after_second(observation):
        if observation.attempt == 2:
            token.cancel()

    outcome = asyncio.run(StatusPoller(RetryPolicy(), RecordingSleep()).run(fetch, token, cancel_after_second))

    assert outcome.state is PollState.CANCELLED
    assert outcome.attempts == 2
    assert len(calls) == 2


def test_token_sleep_wakes_on_cancel():
    """A long wait ends as soon as the token is cancelled."""

    async def scenario():
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        return await asyncio.wait_for(token.sleep(30), timeout=2)

    assert asyncio.run(scenario()) is True


def test_token_sleep_times_out_normally():
    assert asyncio.run(CancellationToken().sleep(0.01)) is False


def test_custom_stop_condition():
    policy = RetryPolicy(max_attempts=5, stop_when=lambda status: status is TransactionStatus.UNKNOWN)
    fetch, calls = scripted([TransactionStatus.PENDING, TransactionStatus.UNKNOWN])

    outcome = asyncio.run(StatusPoller(policy, RecordingSleep()).run(fetch, CancellationToken()))

    assert outcome.state is PollState.TERMINAL
    assert outcome.status is TransactionStatus.UNKNOWN


def test_policy_rejects_nonsense():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(interval_seconds=-1)
