"""Payment flow orchestration.

Drives one charge end to end: open session -> generate QR -> poll status ->
close session -> final event. Session close is attempted exactly once for
every flow that opened a session, whichever way the flow ends.
"""

import asyncio
import enum
from time import perf_counter
from typing import Any, Protocol

from pydantic import BaseModel

from yappypay.common.errors import SessionAlreadyOpenError, ValidationError, YappyError
from yappypay.common.events import EventChannel, FlowEvent, FlowEventType
from yappypay.common.logging import logger, order_id_ctx, transaction_id_ctx
from yappypay.common.metrics import payment_flow_seconds, payment_flows_total
from yappypay.common.state_machine import is_terminal, validate_transition
from yappypay.common.tracing import flow_span
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.poller import (
    CancellationToken,
    PollObservation,
    PollState,
    RetryPolicy,
    Sleeper,
    StatusPoller,
    token_sleep,
)
from yappypay.services.yappy.qr import QrGenerator
from yappypay.services.yappy.schemas import (
    PaymentRequest,
    Session,
    Transaction,
    TransactionStatus,
)
from yappypay.services.yappy.session import SessionManager


class FlowOutcome(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


class FlowResult(BaseModel):
    outcome: FlowOutcome
    order_id: str
    transaction_id: str | None = None
    status: TransactionStatus | None = None
    message: str = ""


class TokenStore(Protocol):
    """Where the current session token is persisted between flows."""

    def save_session_token(self, token: str) -> None: ...

    def get_session_token(self) -> str | None: ...


_PHASE_BY_OUTCOME = {
    FlowOutcome.SUCCEEDED: "COMPLETED",
    FlowOutcome.FAILED: "FAILED",
    FlowOutcome.TIMED_OUT: "TIMED_OUT",
    FlowOutcome.CANCELLED: "CANCELLED",
}


class PaymentFlow:
    """Owns one payment attempt and the vendor session it runs in.

    A flow instance runs once. Progress is published on `events`; the final
    `FlowResult` is returned by `run` and kept on `result`.
    """

    def __init__(
        self,
        client: YappyClient,
        token_store: TokenStore | None = None,
        policy: RetryPolicy | None = None,
        sleep: Sleeper = token_sleep,
        events: EventChannel | None = None,
    ) -> None:
        self.client = client
        self.sessions = SessionManager(client)
        self.qr = QrGenerator(client)
        self.poller = StatusPoller(policy, sleep)
        self.events = events or EventChannel()
        self.token_store = token_store
        self.phase = "IDLE"
        self.request: PaymentRequest | None = None
        self.session: Session | None = None
        self.transaction: Transaction | None = None
        self.result: FlowResult | None = None
        self._cancel_token: CancellationToken | None = None
        self._close_attempted = False
        self._task: asyncio.Task | None = None

    # -- public surface -------------------------------------------------

    def start(self, request: PaymentRequest) -> asyncio.Task:
        """Run the flow as a background task on the current loop."""

        self._cancel_token = self._cancel_token or CancellationToken()
        self._task = asyncio.create_task(self.run(request, self._cancel_token))
        return self._task

    def cancel(self) -> bool:
        """Request cancellation; False when there is no running flow to cancel."""

        not_started = self.phase == "IDLE" and self._task is None
        if self._cancel_token is None or not_started or is_terminal(self.phase):
            logger.info("cancel_ignored phase=%s", self.phase)
            return False
        logger.info("cancel_requested phase=%s", self.phase)
        self._cancel_token.cancel()
        return True

    @property
    def active(self) -> bool:
        return self.phase != "IDLE" and not is_terminal(self.phase)

    async def run(self, request: PaymentRequest, cancel_token: CancellationToken | None = None) -> FlowResult:
        if self.phase != "IDLE":
            raise RuntimeError("a PaymentFlow instance runs only once")
        self._cancel_token = cancel_token or self._cancel_token or CancellationToken()
        self.request = request
        order_token = order_id_ctx.set(request.order_id)
        started = perf_counter()
        logger.info("flow_started order_id=%s amount=%s", request.order_id, request.amount)
        self._publish(FlowEventType.LOADING_CHANGED, {"is_loading": True})
        try:
            with flow_span("yappy.payment_flow", order_id=request.order_id):
                self.result = await self._drive(request, self._cancel_token)
        except Exception as exc:
            logger.exception("flow_error order_id=%s error=%s", request.order_id, exc)
            self.result = await self._finish(FlowOutcome.FAILED, f"Payment flow error: {exc}")
        finally:
            # Covers task cancellation by the host as well.
            await self._close_session_once()
            self._publish(FlowEventType.LOADING_CHANGED, {"is_loading": False})
            order_id_ctx.reset(order_token)

        elapsed = max(0.0, perf_counter() - started)
        payment_flow_seconds.labels(outcome=self.result.outcome.value).observe(elapsed)
        logger.info(
            "flow_finished order_id=%s outcome=%s elapsed_s=%.2f",
            request.order_id,
            self.result.outcome.value,
            elapsed,
        )
        return self.result

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the flow for hosts."""

        return {
            "phase": self.phase,
            "order_id": self.request.order_id if self.request else None,
            "transaction": self.transaction.model_dump(mode="json") if self.transaction else None,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "events": [event.model_dump(mode="json") for event in self.events.history],
        }

    # -- steps ----------------------------------------------------------

    async def _drive(self, request: PaymentRequest, cancel_token: CancellationToken) -> FlowResult:
        try:
            request.charge_amount().validate_totals()
        except ValidationError as exc:
            return await self._finish(FlowOutcome.FAILED, str(exc))
        if cancel_token.cancelled:
            return await self._finish(FlowOutcome.CANCELLED, "Payment cancelled before it started")

        self._transition("OPENING_SESSION")
        try:
            with flow_span("yappy.open_session"):
                self.session = await self._open_session()
        except YappyError as exc:
            return await self._finish(FlowOutcome.FAILED, f"Could not open Yappy session: {exc}")
        self._save_token(self.session.token)

        if cancel_token.cancelled:
            return await self._finish(FlowOutcome.CANCELLED, "Payment cancelled before the QR was issued")

        self._transition("GENERATING_QR")
        try:
            with flow_span("yappy.generate_qr", order_id=request.order_id):
                qr = await self.qr.generate(self.session.token, request)
        except YappyError as exc:
            return await self._finish(FlowOutcome.FAILED, f"QR generation failed: {exc}")

        self.transaction = Transaction(
            yappy_transaction_id=qr.transaction_id,
            local_order_id=qr.order_id,
            hash=qr.hash,
            amount=request.charge_amount().total,
        )
        transaction_id_ctx.set(qr.transaction_id)
        self._publish(FlowEventType.QR_READY, {"hash": qr.hash, "amount": str(self.transaction.amount)})

        if cancel_token.cancelled:
            return await self._void_and_finish()

        self._transition("POLLING")
        with flow_span("yappy.poll_status", transaction_id=qr.transaction_id):
            outcome = await self.poller.run(self._fetch_status, cancel_token, self._on_poll_update)

        if outcome.state is PollState.TERMINAL:
            self.transaction.status = outcome.status
            if outcome.status.is_success:
                return await self._finish(FlowOutcome.SUCCEEDED, "Payment completed")
            return await self._finish(FlowOutcome.FAILED, f"Transaction {outcome.status.value.lower()}")
        if outcome.state is PollState.TIMEOUT:
            return await self._finish(FlowOutcome.TIMED_OUT, "Timed out waiting for payment")
        return await self._void_and_finish()

    async def _open_session(self) -> Session:
        try:
            return await self.sessions.open()
        except SessionAlreadyOpenError:
            stale = self.token_store.get_session_token() if self.token_store else None
            if not stale:
                raise
            logger.warning("closing stale session before retrying open")
            await self.sessions.close(stale)
            self._save_token("")
            return await self.sessions.open()

    async def _fetch_status(self) -> TransactionStatus:
        resp = await self.client.get_transaction(self.session.token, self.transaction.yappy_transaction_id)
        return TransactionStatus.from_vendor(resp.field("status"))

    def _on_poll_update(self, observation: PollObservation) -> None:
        if observation.error is not None:
            payload = {"status": "ERROR", "message": f"Error querying status: {observation.error}"}
        else:
            self.transaction.status = observation.status
            payload = {
                "status": observation.status.value,
                "message": f"Status: {observation.status.value.lower()}",
            }
        payload.update(is_final=False, attempt=observation.attempt)
        self._publish(FlowEventType.STATUS_UPDATE, payload)

    async def _void_and_finish(self) -> FlowResult:
        """Best-effort void of the pending charge, then the usual close."""

        transaction_id = self.transaction.yappy_transaction_id
        try:
            with flow_span("yappy.void_transaction", transaction_id=transaction_id):
                await self.client.void_transaction(self.session.token, transaction_id)
        except YappyError as exc:
            logger.error("void_failed transaction_id=%s error=%s", transaction_id, exc)
            return await self._finish(FlowOutcome.CANCELLED, f"Cancelled, but voiding failed: {exc}")

        logger.info("void_ok transaction_id=%s", transaction_id)
        try:
            status = await self._fetch_status()
        except YappyError as exc:
            logger.warning("void_status_unknown transaction_id=%s error=%s", transaction_id, exc)
        else:
            if status is not TransactionStatus.VOIDED:
                logger.warning("void_status_unexpected transaction_id=%s status=%s", transaction_id, status.value)
            self.transaction.status = status
        return await self._finish(FlowOutcome.CANCELLED, "Transaction cancelled by the user")

    async def _finish(self, outcome: FlowOutcome, message: str) -> FlowResult:
        await self._close_session_once()
        if not is_terminal(self.phase):
            self._transition(_PHASE_BY_OUTCOME[outcome])

        transaction_id = self.transaction.yappy_transaction_id if self.transaction else None
        status = self.transaction.status if self.transaction else None
        event_type = (
            FlowEventType.TRANSACTION_SUCCEEDED
            if outcome is FlowOutcome.SUCCEEDED
            else FlowEventType.TRANSACTION_FAILED
        )
        self._publish(
            event_type,
            {"outcome": outcome.value, "status": status.value if status else None, "message": message},
        )
        payment_flows_total.labels(outcome=outcome.value).inc()
        return FlowResult(
            outcome=outcome,
            order_id=self.request.order_id,
            transaction_id=transaction_id,
            status=status,
            message=message,
        )

    async def _close_session_once(self) -> None:
        if self._close_attempted or self.session is None:
            return
        self._close_attempted = True
        token = self.session.token
        # Never reuse a token once close was attempted.
        self.session = None
        confirmed = False
        try:
            with flow_span("yappy.close_session"):
                confirmed = await self.sessions.close(token)
        finally:
            self._save_token("")
            self._publish(FlowEventType.SESSION_CLOSED, {"confirmed": confirmed})

    # -- helpers --------------------------------------------------------

    def _transition(self, new_phase: str) -> None:
        validate_transition(self.phase, new_phase)
        logger.info("flow_transition from=%s to=%s", self.phase, new_phase)
        self.phase = new_phase

    def _save_token(self, token: str) -> None:
        if self.token_store is not None:
            self.token_store.save_session_token(token)

    def _publish(self, event_type: FlowEventType, payload: dict[str, Any]) -> None:
        self.events.publish(
            FlowEvent(
                event_type=event_type,
                order_id=self.request.order_id if self.request else None,
                transaction_id=self.transaction.yappy_transaction_id if self.transaction else None,
                payload=payload,
            )
        )
