"""Test data builders and store/clock doubles."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from event_receiver.core.accounts import Account
from event_receiver.database.store import SqlAccountStore
from event_receiver.integrations.queue import EventMessage


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class GatedStore:
    """
    Holds every reader until `parties` reads have happened.

    Forces concurrent processors to read the same account version before
    either of them writes. Only the first round of reads is gated.
    """

    def __init__(self, inner: SqlAccountStore, parties: int) -> None:
        self._inner = inner
        self._parties = parties
        self._arrived = 0
        self._all_read = asyncio.Event()

    async def find_account(self, account_id: uuid.UUID) -> Optional[Account]:
        account = await self._inner.find_account(account_id)
        if not self._all_read.is_set():
            self._arrived += 1
            if self._arrived >= self._parties:
                self._all_read.set()
            else:
                await self._all_read.wait()
        return account

    async def save_account(self, account: Account) -> Account:
        return await self._inner.save_account(account)


def transaction_body(
    account_id: uuid.UUID | str,
    amount: Any,
    message_type: str = "Credit",
    transaction_id: Optional[uuid.UUID] = None,
) -> str:
    return (
        "{"
        f'"id": "{transaction_id or uuid.uuid4()}", '
        f'"messageType": "{message_type}", '
        f'"bankAccountId": "{account_id}", '
        f'"amount": {amount}'
        "}"
    )


def credit_message(account_id: uuid.UUID, amount: Any, processing_count: int = 0) -> EventMessage:
    return EventMessage(
        id=uuid.uuid4(),
        body=transaction_body(account_id, amount, "Credit"),
        processing_count=processing_count,
    )


def debit_message(account_id: uuid.UUID, amount: Any, processing_count: int = 0) -> EventMessage:
    return EventMessage(
        id=uuid.uuid4(),
        body=transaction_body(account_id, amount, "Debit"),
        processing_count=processing_count,
    )


def invalid_message() -> EventMessage:
    return EventMessage(
        id=uuid.uuid4(),
        body=(
            '{"id": "invalid-guid", "messageType": "Invalid", '
            '"bankAccountId": "invalid-guid", "amount": "not-a-number"}'
        ),
    )

