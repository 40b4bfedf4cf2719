"""Account snapshot and the store contract the processor works against."""
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Protocol


@dataclass(frozen=True)
class Account:
    """Detached snapshot of an account, tagged with the version it was read at."""

    id: uuid.UUID
    balance: Decimal
    version: int

    def with_balance(self, balance: Decimal) -> "Account":
        return replace(self, balance=balance)


class AccountStore(Protocol):
    """
    Account persistence with optimistic version checks.

    save_account raises ConcurrencyConflict when the stored version no longer
    matches account.version, and returns the account with its new version.
    """

    async def find_account(self, account_id: uuid.UUID) -> Optional[Account]: ...

    async def save_account(self, account: Account) -> Account: ...
