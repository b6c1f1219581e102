"""Terminal-side coordination of payment flows.

One terminal drives at most one active flow at a time; finished flows stay
queryable by order id.
"""

import asyncio
from typing import Callable

from yappypay.common.errors import YappyError
from yappypay.common.logging import logger
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.credentials import CredentialsProvider
from yappypay.services.yappy.flow import PaymentFlow
from yappypay.services.yappy.poller import RetryPolicy
from yappypay.services.yappy.schemas import Credentials, PaymentRequest


class FlowConflictError(YappyError):
    """A flow is already running on this terminal."""


class TerminalService:
    def __init__(
        self,
        storage,
        credentials: CredentialsProvider,
        client_factory: Callable[[Credentials], YappyClient] = YappyClient,
        policy: RetryPolicy | None = None,
        max_finished_flows: int = 100,
    ) -> None:
        self.storage = storage
        self.credentials = credentials
        self.client_factory = client_factory
        self.policy = policy
        self.max_finished_flows = max_finished_flows
        self.flows: dict[str, PaymentFlow] = {}
        self.current: PaymentFlow | None = None
        self._tasks: set[asyncio.Task] = set()

    def start_payment(self, request: PaymentRequest) -> PaymentFlow:
        """Start a flow in the background; raises before anything is sent when it cannot run."""

        if self.current is not None and (self.current.active or self.current.phase == "IDLE"):
            raise FlowConflictError("a payment is already in progress on this terminal")
        if request.order_id in self.flows:
            raise FlowConflictError(f"order {request.order_id} was already charged on this terminal")

        credentials = self.credentials.load()
        client = self.client_factory(credentials)
        flow = PaymentFlow(client, token_store=self.storage, policy=self.policy)
        self.flows[request.order_id] = flow
        self.current = flow
        self._evict_finished()

        task = flow.start(request)
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_flow_done(done, client))
        logger.info("terminal_payment_started order_id=%s", request.order_id)
        return flow

    def _evict_finished(self) -> None:
        """Drop the oldest finished flows beyond `max_finished_flows`."""

        finished = [order_id for order_id, flow in self.flows.items() if flow.result is not None]
        for order_id in finished[: max(0, len(finished) - self.max_finished_flows)]:
            del self.flows[order_id]
            logger.info("terminal_flow_evicted order_id=%s", order_id)

    def _on_flow_done(self, task: asyncio.Task, client: YappyClient) -> None:
        self._tasks.discard(task)
        close_task = asyncio.ensure_future(client.aclose())
        self._tasks.add(close_task)
        close_task.add_done_callback(self._tasks.discard)
        if not task.cancelled() and task.exception() is not None:
            logger.error("terminal_flow_crashed error=%s", task.exception())

    def get(self, order_id: str) -> PaymentFlow | None:
        return self.flows.get(order_id)

    def cancel(self, order_id: str) -> bool:
        flow = self.flows.get(order_id)
        return flow.cancel() if flow is not None else False

    async def shutdown(self) -> None:
        """Cancel whatever is running and wait for cleanup to finish."""

        for flow in self.flows.values():
            flow.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
