"""
Tests for the message worker consume loop.
"""
import asyncio
import logging
import signal
from decimal import Decimal
from typing import Any, Dict, Iterator
from unittest.mock import AsyncMock

import pytest
import structlog
from sqlalchemy.ext.asyncio import create_async_engine

from event_receiver.config import get_settings
from event_receiver.core.processor import MessageProcessor, Outcome
from event_receiver.database import connection
from event_receiver.database.connection import create_session_factory
from event_receiver.database.store import SqlAccountStore
from event_receiver.integrations.queue import InMemoryQueue
from event_receiver.monitoring.health import HealthCheck, HealthCheckError
from event_receiver.workers.message_worker import DEMO_ACCOUNTS, MessageWorker, start_message_worker
from tests.helpers import transaction_body


class TestMessageWorker:
    """Test suite for MessageWorker."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_once_on_empty_queue(self, queue: InMemoryQueue) -> None:
        processor = AsyncMock(spec=MessageProcessor)
        worker = MessageWorker(queue=queue, processor=processor)

        assert await worker.run_once() is None
        processor.process.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_once_processes_one_message(self, queue: InMemoryQueue) -> None:
        processor = AsyncMock(spec=MessageProcessor)
        processor.process.return_value = Outcome.COMPLETED
        sent = await queue.send("payload")
        await queue.send("another")
        worker = MessageWorker(queue=queue, processor=processor)

        outcome = await worker.run_once()

        assert outcome is Outcome.COMPLETED
        processor.process.assert_awaited_once()
        assert processor.process.await_args.args[0].id == sent.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_loop_survives_errors(self) -> None:
        """An unexpected error pauses the loop instead of ending it."""
        queue = AsyncMock(spec=InMemoryQueue)
        processor = AsyncMock(spec=MessageProcessor)
        worker = MessageWorker(queue=queue, processor=processor, idle_delay=0, error_delay=0)
        calls = 0

        async def flaky_peek() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("broker unreachable")
            worker.stop()
            return None

        queue.peek.side_effect = flaky_peek

        await asyncio.wait_for(worker.start(), timeout=1)

        assert calls == 2
        assert not worker.running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_stops_loop(self, queue: InMemoryQueue) -> None:
        processor = AsyncMock(spec=MessageProcessor)
        worker = MessageWorker(queue=queue, processor=processor, idle_delay=10)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.01)
        assert worker.running
        task.cancel()
        await task

        assert not worker.running

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_end_to_end(
        self,
        queue: InMemoryQueue,
        store: SqlAccountStore,
        create_account: Any,
        processor_factory: Any,
    ) -> None:
        """Valid messages are applied, invalid ones dead-lettered, then the loop idles."""
        account_id = await create_account(1000)
        await queue.send(transaction_body(account_id, 250, "Credit"))
        await queue.send(transaction_body(account_id, 100, "Debit"))
        await queue.send("not json")
        processor: MessageProcessor = processor_factory(queue)
        worker = MessageWorker(queue=queue, processor=processor, idle_delay=0.01)

        task = asyncio.create_task(worker.start())
        for _ in range(200):
            if len(queue.completed) + len(queue.dead_letters) == 3:
                break
            await asyncio.sleep(0.01)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert (await store.find_account(account_id)).balance == Decimal("1150")
        assert len(queue.completed) == 2
        assert len(queue.dead_letters) == 1
        assert queue.depth().ready == 0


@pytest.fixture
def worker_environment(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> Iterator[Dict[int, Any]]:
    """Points the entrypoint at a scratch database and captures its signal handlers."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}")
    monkeypatch.setenv("IDLE_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.delenv("METRICS_PORT", raising=False)
    handlers: Dict[int, Any] = {}
    monkeypatch.setattr(signal, "signal", lambda sig, handler: handlers.__setitem__(sig, handler))
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    get_settings.cache_clear()

    yield handlers

    get_settings.cache_clear()
    structlog.reset_defaults()
    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(saved_level)


class TestStartMessageWorker:
    """Test suite for the worker entrypoint."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_applies_queued_credit_until_signalled(
        self, worker_environment: Dict[int, Any]
    ) -> None:
        account_id, opening_balance = DEMO_ACCOUNTS[0]
        queue = InMemoryQueue()
        await queue.send(transaction_body(account_id, 250, "Credit"))

        task = asyncio.create_task(start_message_worker(queue))
        for _ in range(200):
            if queue.completed or task.done():
                break
            await asyncio.sleep(0.01)
        worker_environment[signal.SIGTERM](signal.SIGTERM, None)
        await asyncio.wait_for(task, timeout=1)

        engine = create_async_engine(get_settings().database_url)
        try:
            account = await SqlAccountStore(create_session_factory(engine)).find_account(account_id)
        finally:
            await engine.dispose()
        assert len(queue.completed) == 1
        assert account.balance == opening_balance + Decimal("250")
        assert connection._engine is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unhealthy_database_stops_startup(
        self, worker_environment: Dict[int, Any], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Nothing is consumed and the engine is released when the startup check fails."""
        check = AsyncMock(side_effect=HealthCheckError("Database health check failed: locked"))
        monkeypatch.setattr(HealthCheck, "check_database", check)
        queue = InMemoryQueue()
        await queue.send(transaction_body(DEMO_ACCOUNTS[0][0], 250, "Credit"))

        with pytest.raises(HealthCheckError):
            await start_message_worker(queue)

        check.assert_awaited_once()
        assert worker_environment == {}
        assert queue.depth().ready == 1
        assert connection._engine is None
