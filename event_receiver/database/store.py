"""
Account store with optimistic concurrency control.

Every read captures the account version; a write only succeeds if the row
still carries that version. Library exceptions are translated into the
receiver's error taxonomy here so nothing above this module sees SQLAlchemy
exception types.
"""
import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Optional, TypeVar

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    InvalidRequestError,
    OperationalError,
    StatementError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from event_receiver.config import get_settings
from event_receiver.core.accounts import Account
from event_receiver.core.errors import (
    AccountNotFound,
    BalanceOutOfRange,
    ConcurrencyConflict,
    InvalidStoreOperation,
    ReceiverError,
    StoreTimeout,
    StoreUnavailable,
)
from event_receiver.database.connection import get_session_factory
from event_receiver.database.models import BankAccount

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SqlAccountStore:
    """
    SQLAlchemy-backed account store.

    Each call runs in its own short-lived session, so concurrent callers
    never share a transaction.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize account store.

        Args:
            session_factory: Optional session factory, defaults to the global one
            timeout_seconds: Upper bound per call, defaults to settings
        """
        self._session_factory = session_factory or get_session_factory()
        self._timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().store_timeout_seconds
        )

    async def find_account(self, account_id: uuid.UUID) -> Optional[Account]:
        """
        Load an account by id.

        Args:
            account_id: Account identifier

        Returns:
            Optional[Account]: Account snapshot or None if not found
        """

        async def _find() -> Optional[Account]:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BankAccount).where(BankAccount.id == account_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                return Account(id=row.id, balance=row.balance, version=row.version)

        return await self._call("find_account", _find)

    async def save_account(self, account: Account) -> Account:
        """
        Persist an account balance if its version is unchanged.

        Args:
            account: Account snapshot carrying the version it was read at

        Returns:
            Account: The saved account with its new version

        Raises:
            ConcurrencyConflict: If another writer bumped the version first
            AccountNotFound: If the account no longer exists
            BalanceOutOfRange: If the balance does not fit the balance column
        """
        committing = asyncio.Event()

        async def _save() -> Account:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(BankAccount)
                    .where(
                        BankAccount.id == account.id,
                        BankAccount.version == account.version,
                    )
                    .values(balance=account.balance, version=BankAccount.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    current = await session.execute(
                        select(BankAccount.version).where(BankAccount.id == account.id)
                    )
                    current_version = current.scalar_one_or_none()
                    await session.rollback()
                    if current_version is None:
                        raise AccountNotFound(f"Account {account.id} not found")
                    raise ConcurrencyConflict(
                        f"Account {account.id} changed: expected version "
                        f"{account.version}, found {current_version}"
                    )
                committing.set()
                await session.commit()
            return replace(account, version=account.version + 1)

        return await self._call("save_account", _save, committing)

    async def _call(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
        committing: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Run a store operation under the configured timeout.

        Once `committing` is set the write may already be durable, so the
        timeout no longer cancels it; the call waits for the commit to finish
        and reports its real result instead of a timeout.
        """
        task = asyncio.ensure_future(func())
        try:
            try:
                return await asyncio.wait_for(
                    asyncio.shield(task), timeout=self._timeout_seconds
                )
            except asyncio.TimeoutError:
                if committing is not None and committing.is_set():
                    logger.warning("account_store_commit_outlived_timeout", operation=operation)
                    return await task
                task.cancel()
                await asyncio.wait([task])
                raise
        except ReceiverError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("account_store_timeout", operation=operation)
            raise StoreTimeout(
                f"{operation} exceeded {self._timeout_seconds}s", original_error=e
            )
        except StaleDataError as e:
            raise ConcurrencyConflict(str(e), original_error=e)
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            logger.warning("account_store_unavailable", operation=operation, error=str(e))
            raise StoreUnavailable(str(e), original_error=e)
        except InvalidRequestError as e:
            raise InvalidStoreOperation(str(e), original_error=e)
        except StatementError as e:
            # Only a value the balance column refused to bind; DBAPI errors propagate
            if not isinstance(e.orig, ValueError):
                raise
            raise BalanceOutOfRange(str(e), original_error=e)
