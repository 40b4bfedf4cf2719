"""
Queue client contract and an in-process queue implementation.

The in-memory queue follows broker semantics closely enough to run the worker
end to end without a real broker:
- peek() leases the earliest visible message
- reschedule() hides a message until a given time
- abandon() redelivers immediately and dead-letters past max_delivery_count
- every redelivery increments processing_count
"""
import heapq
import itertools
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

import structlog

from event_receiver.core.errors import InvalidQueueOperation

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EventMessage:
    """
    A message as delivered by the queue.

    Attributes:
        id: Message identifier
        body: Opaque payload
        processing_count: Redeliveries so far; starts at 0 and is only
            incremented by the queue
        available_at: When the message becomes visible
    """

    id: uuid.UUID
    body: bytes | str
    processing_count: int = 0
    available_at: Optional[datetime] = None


class QueueClient(Protocol):
    """Queue operations required by the message processor and host loop."""

    async def peek(self) -> Optional[EventMessage]: ...

    async def complete(self, message: EventMessage) -> None: ...

    async def reschedule(self, message: EventMessage, available_at: datetime) -> None: ...

    async def dead_letter(self, message: EventMessage) -> None: ...

    async def abandon(self, message: EventMessage) -> None: ...


@dataclass
class QueueDepth:
    """Snapshot of message counts per state."""

    ready: int = 0
    scheduled: int = 0
    in_flight: int = 0
    dead_lettered: int = 0


class InMemoryQueue:
    """
    In-process queue with scheduled delivery and a dead-letter list.

    Not shared across processes; intended for the demo worker and tests.
    """

    def __init__(
        self,
        max_delivery_count: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize in-memory queue.

        Args:
            max_delivery_count: Abandons tolerated before a message is dead-lettered
            clock: Source of the current UTC time
        """
        self.max_delivery_count = max_delivery_count
        self._clock = clock
        self._sequence = itertools.count()
        # (available_at, sequence, message); sequence keeps FIFO order on ties
        self._pending: List[Tuple[datetime, int, EventMessage]] = []
        self._in_flight: Dict[uuid.UUID, EventMessage] = {}
        self.dead_letters: List[EventMessage] = []
        self.completed: List[EventMessage] = []

    def _push(self, message: EventMessage) -> None:
        available_at = message.available_at or self._clock()
        heapq.heappush(self._pending, (available_at, next(self._sequence), message))

    def _release(self, message: EventMessage) -> EventMessage:
        leased = self._in_flight.pop(message.id, None)
        if leased is None:
            raise InvalidQueueOperation(f"Message {message.id} is not leased")
        return leased

    async def send(
        self, body: bytes | str, message_id: Optional[uuid.UUID] = None
    ) -> EventMessage:
        """
        Enqueue a new message.

        Args:
            body: Message payload
            message_id: Optional message id, generated when omitted

        Returns:
            EventMessage: The enqueued message
        """
        message = EventMessage(
            id=message_id or uuid.uuid4(),
            body=body,
            processing_count=0,
            available_at=self._clock(),
        )
        self._push(message)
        logger.debug("message_enqueued", message_id=str(message.id))
        return message

    async def peek(self) -> Optional[EventMessage]:
        """Lease the earliest visible message, or return None."""
        if not self._pending:
            return None
        available_at, _, message = self._pending[0]
        if available_at > self._clock():
            return None
        heapq.heappop(self._pending)
        self._in_flight[message.id] = message
        return message

    async def complete(self, message: EventMessage) -> None:
        self.completed.append(self._release(message))

    async def reschedule(self, message: EventMessage, available_at: datetime) -> None:
        """
        Hide a leased message until available_at, then redeliver it.

        Args:
            message: Leased message
            available_at: When the message becomes visible again
        """
        leased = self._release(message)
        self._push(
            replace(
                leased,
                processing_count=leased.processing_count + 1,
                available_at=available_at,
            )
        )
        logger.info(
            "message_redelivery_scheduled",
            message_id=str(message.id),
            available_at=available_at.isoformat(),
        )

    async def dead_letter(self, message: EventMessage) -> None:
        self.dead_letters.append(self._release(message))

    async def abandon(self, message: EventMessage) -> None:
        """
        Give a leased message back for immediate redelivery.

        Messages abandoned more than max_delivery_count times are dead-lettered.
        """
        leased = self._release(message)
        redelivered = replace(
            leased,
            processing_count=leased.processing_count + 1,
            available_at=self._clock(),
        )
        if redelivered.processing_count > self.max_delivery_count:
            logger.warning(
                "message_delivery_limit_reached",
                message_id=str(message.id),
                processing_count=redelivered.processing_count,
            )
            self.dead_letters.append(redelivered)
            return
        self._push(redelivered)

    def depth(self) -> QueueDepth:
        now = self._clock()
        ready = sum(1 for available_at, _, _ in self._pending if available_at <= now)
        return QueueDepth(
            ready=ready,
            scheduled=len(self._pending) - ready,
            in_flight=len(self._in_flight),
            dead_lettered=len(self.dead_letters),
        )
