"""Bounded status polling: POLLING -> {TERMINAL, TIMEOUT, CANCELLED}."""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from yappypay.common.config import settings
from yappypay.common.errors import YappyError
from yappypay.common.logging import logger
from yappypay.common.metrics import poll_attempts_total
from yappypay.services.yappy.schemas import TransactionStatus


class CancellationToken:
    """Cooperative cancel flag shared by a flow, its poller and its host."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to `seconds`; return True if cancelled before or during the wait."""

        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


def _stop_on_terminal(status: TransactionStatus) -> bool:
    return status.is_terminal


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to poll, and which status ends it."""

    interval_seconds: float = 5.0
    max_attempts: int = 24
    stop_when: Callable[[TransactionStatus], bool] = field(default=_stop_on_terminal)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(interval_seconds=settings.poll_interval_seconds, max_attempts=settings.poll_max_attempts)

    @property
    def ceiling_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts


class PollState(str, enum.Enum):
    TERMINAL = "TERMINAL"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


@dataclass
class PollObservation:
    """One non-final tick: a status read, or the error that replaced it."""

    attempt: int
    status: TransactionStatus | None = None
    error: str | None = None


@dataclass
class PollOutcome:
    state: PollState
    attempts: int
    status: TransactionStatus | None = None


FetchStatus = Callable[[], Awaitable[TransactionStatus]]
Sleeper = Callable[[float, CancellationToken], Awaitable[bool]]


async def token_sleep(seconds: float, token: CancellationToken) -> bool:
    return await token.sleep(seconds)


class StatusPoller:
    """Runs `fetch_status` under a `RetryPolicy` until it stops.

    Cancellation is checked before every tick and ends the wait between ticks;
    a request already in flight is allowed to finish. Every tick consumes one
    attempt whether it produced a status or an error.
    """

    def __init__(self, policy: RetryPolicy | None = None, sleep: Sleeper = token_sleep) -> None:
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def run(
        self,
        fetch_status: FetchStatus,
        cancel_token: CancellationToken,
        on_update: Callable[[PollObservation], None] | None = None,
    ) -> PollOutcome:
        attempts = 0
        last_status: TransactionStatus | None = None
        while attempts < self.policy.max_attempts:
            if cancel_token.cancelled:
                logger.info("poll_cancelled attempts=%s", attempts)
                return PollOutcome(PollState.CANCELLED, attempts, last_status)

            attempts += 1
            observation = PollObservation(attempt=attempts)
            try:
                status = await fetch_status()
            except YappyError as exc:
                poll_attempts_total.labels(result="error").inc()
                logger.warning("poll_error attempt=%s error=%s", attempts, exc)
                observation.error = str(exc)
            else:
                last_status = status
                observation.status = status
                if self.policy.stop_when(status):
                    poll_attempts_total.labels(result="terminal").inc()
                    logger.info("poll_terminal attempt=%s status=%s", attempts, status.value)
                    return PollOutcome(PollState.TERMINAL, attempts, status)
                poll_attempts_total.labels(result="pending").inc()
                logger.info("poll_status attempt=%s status=%s", attempts, status.value)

            if on_update is not None:
                on_update(observation)

            if attempts >= self.policy.max_attempts:
                break
            if await self._sleep(self.policy.interval_seconds, cancel_token):
                logger.info("poll_cancelled attempts=%s", attempts)
                return PollOutcome(PollState.CANCELLED, attempts, last_status)

        logger.warning("poll_timeout attempts=%s ceiling_s=%s", attempts, self.policy.ceiling_seconds)
        return PollOutcome(PollState.TIMEOUT, attempts, last_status)
