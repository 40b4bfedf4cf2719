"""Database connection and session management."""
import uuid
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from event_receiver.config import get_settings
from event_receiver.database.models import BankAccount, Base

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the database engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        engine_kwargs: dict[str, Any] = {
            "echo": settings.database_echo,
            "pool_pre_ping": True,  # Verify connections before using
        }
        if not settings.is_sqlite:
            engine_kwargs["pool_recycle"] = 3600
            if settings.database_pool_size is not None:
                engine_kwargs["pool_size"] = settings.database_pool_size
            if settings.database_max_overflow is not None:
                engine_kwargs["max_overflow"] = settings.database_max_overflow
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory with the receiver's session options."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the session factory.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = create_session_factory(get_engine())
    return _async_session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize database tables.

    Creates all tables defined in models if they don't exist.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_accounts(
    accounts: Iterable[tuple[uuid.UUID, Decimal]],
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> int:
    """
    Insert accounts that don't exist yet.

    Args:
        accounts: (account id, opening balance) pairs
        session_factory: Optional session factory, defaults to the global one

    Returns:
        int: Number of accounts inserted
    """
    session_factory = session_factory or get_session_factory()
    inserted = 0
    async with session_factory() as session:
        for account_id, balance in accounts:
            existing = await session.execute(
                select(BankAccount.id).where(BankAccount.id == account_id)
            )
            if existing.scalar_one_or_none() is not None:
                continue
            session.add(BankAccount(id=account_id, balance=balance, version=1))
            inserted += 1
        await session.commit()

    logger.info("accounts_seeded", inserted=inserted)
    return inserted


async def close_db() -> None:
    """Close database connections and dispose of the engine."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
