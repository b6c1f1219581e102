"""Flow event envelope and the in-process channel that carries it.

The orchestrator publishes one `FlowEvent` per lifecycle step; hosts read them
from the channel queue or inspect the recorded history.
"""

import asyncio
import enum
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from yappypay.common.logging import logger


class FlowEventType(str, enum.Enum):
    LOADING_CHANGED = "LOADING_CHANGED"
    QR_READY = "QR_READY"
    STATUS_UPDATE = "STATUS_UPDATE"
    TRANSACTION_SUCCEEDED = "TRANSACTION_SUCCEEDED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    SESSION_CLOSED = "SESSION_CLOSED"


FINAL_EVENT_TYPES = frozenset({FlowEventType.TRANSACTION_SUCCEEDED, FlowEventType.TRANSACTION_FAILED})


class FlowEvent(BaseModel):
    """Canonical event shape emitted by a payment flow."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: FlowEventType
    order_id: str | None = None
    transaction_id: str | None = None
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return self.event_type in FINAL_EVENT_TYPES


class EventChannel:
    """Unbounded queue of flow events plus an append-only history."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[FlowEvent] = asyncio.Queue()
        self._history: list[FlowEvent] = []

    def publish(self, event: FlowEvent) -> None:
        self._history.append(event)
        self._queue.put_nowait(event)
        logger.debug(
            "flow_event event_type=%s order_id=%s transaction_id=%s",
            event.event_type.value,
            event.order_id,
            event.transaction_id,
        )

    async def get(self) -> FlowEvent:
        return await self._queue.get()

    def drain(self) -> list[FlowEvent]:
        """Return and remove every event currently queued."""

        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    @property
    def history(self) -> list[FlowEvent]:
        return list(self._history)

    def of_type(self, event_type: FlowEventType) -> list[FlowEvent]:
        return [event for event in self._history if event.event_type == event_type]
