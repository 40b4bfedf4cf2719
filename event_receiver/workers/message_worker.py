"""
Message worker.

Continuously peeks the queue and hands each message to the processor.
"""
import asyncio
import signal
import uuid
from decimal import Decimal
from typing import Any, List, Optional, Tuple

import structlog

from event_receiver.config import get_settings
from event_receiver.core.processor import MessageProcessor, Outcome, ProcessingPolicy
from event_receiver.database.connection import close_db, init_db, seed_accounts
from event_receiver.database.store import SqlAccountStore
from event_receiver.integrations.queue import InMemoryQueue, QueueClient
from event_receiver.monitoring.health import HealthCheck
from event_receiver.monitoring.logging import setup_logging
from event_receiver.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEMO_ACCOUNTS: List[Tuple[uuid.UUID, Decimal]] = [
    (uuid.UUID("7d445724-24ec-4d52-aa7a-ff2bac9f191d"), Decimal("1000")),
    (uuid.UUID("3bbaf4ca-5bfa-4922-a395-d755beac475f"), Decimal("500")),
]


class MessageWorker:
    """
    Consume loop around a message processor.

    Sleeps idle_delay when the queue is empty and error_delay after an
    unexpected error, then keeps going until stopped.
    """

    def __init__(
        self,
        queue: QueueClient,
        processor: MessageProcessor,
        idle_delay: float = 10.0,
        error_delay: float = 5.0,
        name: str = "worker-0",
    ):
        """
        Initialize message worker.

        Args:
            queue: Queue to consume from
            processor: Processor that settles each message
            idle_delay: Seconds to wait when no message is available
            error_delay: Seconds to wait after an unexpected error
            name: Worker name used in logs
        """
        self.queue = queue
        self.processor = processor
        self.idle_delay = idle_delay
        self.error_delay = error_delay
        self.name = name
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> Optional[Outcome]:
        """
        Process at most one message.

        Returns:
            Optional[Outcome]: Outcome of the processed message, None if the queue was empty
        """
        message = await self.queue.peek()
        if message is None:
            return None
        return await self.processor.process(message)

    async def start(self) -> None:
        """
        Start consuming.

        Runs until stop() is called or the task is cancelled.
        """
        self._running = True
        with structlog.contextvars.bound_contextvars(worker=self.name):
            logger.info("message_worker_started")

            try:
                while self._running:
                    try:
                        outcome = await self.run_once()
                        if outcome is None:
                            await asyncio.sleep(self.idle_delay)
                        if isinstance(self.queue, InMemoryQueue):
                            depth = self.queue.depth()
                            metrics.set_queue_depth(
                                depth.ready, depth.scheduled, depth.in_flight, depth.dead_lettered
                            )

                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error("message_worker_error", error=str(e))
                        await asyncio.sleep(self.error_delay)

            except asyncio.CancelledError:
                logger.info("message_worker_cancelled")
            finally:
                self._running = False
                logger.info("message_worker_stopped")

    def stop(self) -> None:
        """Stop the worker after the current message."""
        self._running = False
        logger.info("message_worker_stop_requested", worker=self.name)


async def start_message_worker(queue: Optional[InMemoryQueue] = None) -> None:
    """
    Start the message workers.

    Runs settings.worker_concurrency consumers against one queue until stopped.

    Args:
        queue: Optional queue, defaults to a new in-memory queue
    """
    setup_logging()
    settings = get_settings()

    logger.info(
        "message_worker_starting",
        concurrency=settings.worker_concurrency,
        policy=settings.processing_policy,
    )

    if settings.metrics_port is not None:
        metrics.serve(settings.metrics_port)

    await init_db()
    try:
        # Fails fast with HealthCheckError if the database is unreachable
        await HealthCheck().check_database()
    except Exception:
        await close_db()
        raise
    await seed_accounts(DEMO_ACCOUNTS)

    queue = queue or InMemoryQueue(max_delivery_count=settings.max_delivery_count)
    processor = MessageProcessor(
        queue=queue,
        store=SqlAccountStore(),
        policy=ProcessingPolicy.from_name(settings.processing_policy),
    )
    workers = [
        MessageWorker(
            queue=queue,
            processor=processor,
            idle_delay=settings.idle_poll_interval_seconds,
            error_delay=settings.error_backoff_seconds,
            name=f"worker-{i}",
        )
        for i in range(settings.worker_concurrency)
    ]

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("message_worker_shutdown_signal_received", signal=sig)
        for worker in workers:
            worker.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await asyncio.gather(*(worker.start() for worker in workers))
    except Exception as e:
        logger.error("message_worker_fatal_error", error=str(e))
        raise
    finally:
        await close_db()
        logger.info("message_workers_stopped")


def main() -> None:
    asyncio.run(start_message_worker())


if __name__ == "__main__":
    main()
