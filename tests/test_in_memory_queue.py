"""
Unit tests for the in-memory queue.
"""
import uuid
from datetime import timedelta

import pytest

from event_receiver.core.errors import InvalidQueueOperation
from event_receiver.integrations.queue import EventMessage, InMemoryQueue
from tests.helpers import FakeClock


class TestInMemoryQueue:
    """Test suite for InMemoryQueue."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_peek_empty(self, queue: InMemoryQueue) -> None:
        assert await queue.peek() is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fifo_delivery(self, queue: InMemoryQueue) -> None:
        first = await queue.send("a")
        second = await queue.send("b")

        assert (await queue.peek()).id == first.id
        assert (await queue.peek()).id == second.id
        assert await queue.peek() is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete(self, queue: InMemoryQueue) -> None:
        await queue.send("a")
        message = await queue.peek()

        await queue.complete(message)

        assert queue.completed == [message]
        assert queue.depth().in_flight == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reschedule_hides_message_until_due(
        self, queue: InMemoryQueue, clock: FakeClock
    ) -> None:
        await queue.send("a")
        message = await queue.peek()

        await queue.reschedule(message, clock() + timedelta(seconds=25))

        assert await queue.peek() is None
        assert queue.depth().scheduled == 1
        clock.advance(24)
        assert await queue.peek() is None
        clock.advance(1)
        redelivered = await queue.peek()
        assert redelivered.id == message.id
        assert redelivered.processing_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dead_letter(self, queue: InMemoryQueue) -> None:
        await queue.send("a")
        message = await queue.peek()

        await queue.dead_letter(message)

        assert queue.dead_letters == [message]
        assert await queue.peek() is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_abandon_redelivers_then_dead_letters(self, clock: FakeClock) -> None:
        """Abandoned past the delivery limit, the queue dead-letters on its own."""
        queue = InMemoryQueue(max_delivery_count=2, clock=clock)
        await queue.send("a")

        counts = []
        for _ in range(3):
            message = await queue.peek()
            counts.append(message.processing_count)
            await queue.abandon(message)

        assert counts == [0, 1, 2]
        assert await queue.peek() is None
        assert len(queue.dead_letters) == 1
        assert queue.dead_letters[0].processing_count == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settling_unleased_message_fails(self, queue: InMemoryQueue) -> None:
        """A message can be settled once per lease."""
        await queue.send("a")
        message = await queue.peek()
        await queue.complete(message)

        with pytest.raises(InvalidQueueOperation):
            await queue.complete(message)
        with pytest.raises(InvalidQueueOperation):
            await queue.dead_letter(EventMessage(id=uuid.uuid4(), body="never sent"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_depth(self, queue: InMemoryQueue, clock: FakeClock) -> None:
        for body in ("a", "b", "c"):
            await queue.send(body)
        leased = await queue.peek()
        await queue.reschedule(leased, clock() + timedelta(seconds=5))
        await queue.peek()

        depth = queue.depth()

        assert (depth.ready, depth.scheduled, depth.in_flight, depth.dead_lettered) == (1, 1, 1, 0)
