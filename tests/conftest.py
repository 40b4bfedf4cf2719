"""
Pytest configuration and fixtures.
"""
import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from event_receiver.core.processor import MessageProcessor
from event_receiver.database.connection import create_session_factory, init_db, seed_accounts
from event_receiver.database.store import SqlAccountStore
from event_receiver.integrations.queue import InMemoryQueue
from tests.helpers import FakeClock


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without shared state")
    config.addinivalue_line("markers", "integration: tests running several components together")
    config.addinivalue_line("markers", "race: concurrent processing scenarios")


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite engine; every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'receiver.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAccountStore:
    return SqlAccountStore(session_factory, timeout_seconds=5.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> InMemoryQueue:
    return InMemoryQueue(max_delivery_count=3, clock=clock)


@pytest.fixture
def create_account(session_factory: async_sessionmaker[AsyncSession]) -> Any:
    """Factory inserting an account and returning its id."""

    async def _create(balance: str | int = "1000", account_id: Optional[uuid.UUID] = None) -> uuid.UUID:
        account_id = account_id or uuid.uuid4()
        await seed_accounts([(account_id, Decimal(str(balance)))], session_factory)
        return account_id

    return _create


@pytest.fixture
def processor_factory(store: SqlAccountStore, clock: FakeClock) -> Any:
    """Factory building a processor around the shared store and clock."""

    def _build(queue: Any, **kwargs: Any) -> MessageProcessor:
        kwargs.setdefault("store", store)
        kwargs.setdefault("clock", clock)
        return MessageProcessor(queue=queue, **kwargs)

    return _build
