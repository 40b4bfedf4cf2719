"""
Message processor: drives one queue message to a terminal outcome.

Flow:
1. Decode the payload
2. Resolve the target account
3. Snapshot the balance
4. Apply the credit/debit
5. Commit the account (optimistic version check)
6. Signal completion

Any failure after decoding is classified by its error kind. Transient
failures (conflicts, timeouts, unavailability) are retried through the queue
with a fixed delay table; permanent ones are dead-lettered. A balance change
that already reached the store is undone before the message is retried or
dead-lettered; if it stays in place the message is dead-lettered, never retried.
"""
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from event_receiver.core.accounts import Account, AccountStore
from event_receiver.core.errors import (
    AccountNotFound,
    ConcurrencyConflict,
    FailureClass,
    UnrecognizedTransactionKind,
    classify,
    error_kind_of,
)
from event_receiver.core.retry import RetryPolicy
from event_receiver.core.transaction import Transaction, TransactionKind, decode_transaction
from event_receiver.integrations.queue import EventMessage, QueueClient
from event_receiver.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class Outcome(Enum):
    """Terminal outcome of one processing call."""

    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    ABANDONED = "abandoned"
    DEAD_LETTERED = "dead_lettered"


class TransientAction(Enum):
    """What to do with a message after a transient failure."""

    RESCHEDULE = "reschedule"  # Retry later using the delay table
    ABANDON = "abandon"  # Let the queue redeliver and dead-letter on its own count
    DEAD_LETTER = "dead_letter"  # No retries


@dataclass(frozen=True)
class ProcessingPolicy:
    """
    Failure handling flags for the processor.

    Attributes:
        transient_action: Handling of transient failures
        rollback: Undo a persisted balance change before settling a failed message
    """

    transient_action: TransientAction = TransientAction.RESCHEDULE
    rollback: bool = True

    @classmethod
    def no_retry(cls) -> "ProcessingPolicy":
        return cls(transient_action=TransientAction.DEAD_LETTER, rollback=False)

    @classmethod
    def with_retry(cls) -> "ProcessingPolicy":
        return cls(transient_action=TransientAction.RESCHEDULE, rollback=False)

    @classmethod
    def with_rollback(cls) -> "ProcessingPolicy":
        return cls(transient_action=TransientAction.RESCHEDULE, rollback=True)

    @classmethod
    def abandon_transient(cls) -> "ProcessingPolicy":
        return cls(transient_action=TransientAction.ABANDON, rollback=False)

    @classmethod
    def from_name(cls, name: str) -> "ProcessingPolicy":
        """
        Build a policy from its configuration name.

        Args:
            name: One of no_retry, retry, rollback, abandon

        Raises:
            ValueError: If the name is unknown
        """
        factories = {
            "no_retry": cls.no_retry,
            "retry": cls.with_retry,
            "rollback": cls.with_rollback,
            "abandon": cls.abandon_transient,
        }
        if name not in factories:
            raise ValueError(f"Unknown processing policy: {name}")
        return factories[name]()


@dataclass
class _Attempt:
    """What one processing call has done to the account so far."""

    account_id: Optional[uuid.UUID] = None
    snapshot: Optional[Decimal] = None
    saved: Optional[Account] = None

    @property
    def delta(self) -> Decimal:
        return self.saved.balance - self.snapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageProcessor:
    """
    Applies transaction messages to account balances.

    The processor holds no lock across read-modify-write: concurrent updates
    to the same account are detected by the store's version check and the
    losing message is retried through the queue.
    """

    def __init__(
        self,
        queue: QueueClient,
        store: AccountStore,
        policy: Optional[ProcessingPolicy] = None,
        decoder: Callable[[bytes | str], Transaction] = decode_transaction,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize message processor.

        Args:
            queue: Queue client used to settle messages
            store: Account store
            policy: Failure handling policy, defaults to retry with rollback
            decoder: Payload decoder
            retry_policy: Retry delay table and attempt limit
            clock: Source of the current UTC time
        """
        self._queue = queue
        self._store = store
        self._policy = policy or ProcessingPolicy()
        self._decoder = decoder
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock

    @property
    def policy(self) -> ProcessingPolicy:
        return self._policy

    async def process(self, message: EventMessage) -> Outcome:
        """
        Process one message and settle it with exactly one queue signal.

        Args:
            message: Leased queue message

        Returns:
            Outcome: How the message was settled
        """
        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(
            message_id=str(message.id),
            processing_count=message.processing_count,
        ):
            outcome = await self._process(message)
        metrics.record_outcome(outcome.value, time.perf_counter() - started)
        return outcome

    async def _process(self, message: EventMessage) -> Outcome:
        try:
            transaction = self._decoder(message.body)
        except Exception as e:
            metrics.record_failure(error_kind_of(e).value, FailureClass.PERMANENT.value)
            return await self._dead_letter(message, e)

        attempt = _Attempt(account_id=transaction.account_id)
        try:
            account = await self._store.find_account(transaction.account_id)
            if account is None:
                raise AccountNotFound(f"Account {transaction.account_id} not found")

            attempt.snapshot = account.balance
            staged = account.with_balance(self._apply(transaction, account.balance))

            attempt.saved = await self._store.save_account(staged)
            await self._queue.complete(message)
        except Exception as e:
            return await self._handle_failure(message, attempt, e)

        logger.info(
            "message_completed",
            transaction_id=str(transaction.id),
            account_id=str(transaction.account_id),
            kind=getattr(transaction.kind, "value", transaction.kind),
            amount=str(transaction.amount),
            balance=str(attempt.saved.balance),
        )
        return Outcome.COMPLETED

    @staticmethod
    def _apply(transaction: Transaction, balance: Decimal) -> Decimal:
        if transaction.kind == TransactionKind.CREDIT:
            return balance + transaction.amount
        if transaction.kind == TransactionKind.DEBIT:
            return balance - transaction.amount
        raise UnrecognizedTransactionKind(
            f"Unrecognized transaction kind: {transaction.kind!r}"
        )

    async def _handle_failure(
        self, message: EventMessage, attempt: _Attempt, error: Exception
    ) -> Outcome:
        kind = error_kind_of(error)
        failure_class = classify(kind)
        metrics.record_failure(kind.value, failure_class.value)

        logger.warning(
            "message_processing_failed",
            error=str(error),
            error_kind=kind.value,
            failure_class=failure_class.value,
        )

        still_applied = attempt.saved is not None
        if self._policy.rollback:
            still_applied = not await self._restore_balance(attempt)

        if still_applied:
            # A redelivery would apply the same change a second time
            logger.error(
                "message_settled_after_persisted_change",
                account_id=str(attempt.account_id),
                balance=str(attempt.saved.balance),
            )
            return await self._dead_letter(message, error)

        if failure_class is FailureClass.TRANSIENT:
            return await self._retry_or_dead_letter(message, error)
        return await self._dead_letter(message, error)

    async def _retry_or_dead_letter(self, message: EventMessage, error: Exception) -> Outcome:
        action = self._policy.transient_action

        if action is TransientAction.DEAD_LETTER:
            return await self._dead_letter(message, error)

        if action is TransientAction.ABANDON:
            await self._queue.abandon(message)
            logger.info("message_abandoned")
            return Outcome.ABANDONED

        if self._retry_policy.exhausted(message.processing_count):
            logger.warning(
                "message_retries_exhausted",
                max_attempts=self._retry_policy.max_attempts,
            )
            return await self._dead_letter(message, error)

        available_at = self._retry_policy.next_available_at(
            message.processing_count, self._clock()
        )
        await self._queue.reschedule(message, available_at)
        logger.info("message_rescheduled", available_at=available_at.isoformat())
        return Outcome.RESCHEDULED

    async def _dead_letter(self, message: EventMessage, error: Exception) -> Outcome:
        await self._queue.dead_letter(message)
        logger.warning(
            "message_dead_lettered",
            error=str(error),
            error_kind=error_kind_of(error).value,
        )
        return Outcome.DEAD_LETTERED

    async def _restore_balance(self, attempt: _Attempt) -> bool:
        """
        Undo this attempt's balance change, best effort.

        A write that never landed was discarded with its transaction, so only
        a persisted change needs a corrective write. The correction removes
        this attempt's delta from the current balance, which is the snapshot
        unless another writer committed in between.

        Returns:
            bool: False only when a persisted change could not be undone
        """
        if attempt.saved is None:
            if attempt.snapshot is not None:
                metrics.record_rollback("not_needed")
            return True

        try:
            restored = await self._compensate(attempt.account_id, attempt.delta)
        except Exception as e:
            metrics.record_rollback("failed")
            logger.error(
                "balance_restore_failed",
                account_id=str(attempt.account_id),
                error=str(e),
                error_kind=error_kind_of(e).value,
            )
            return False

        if restored is None:
            metrics.record_rollback("skipped")
            logger.warning("balance_restore_skipped", account_id=str(attempt.account_id))
            return True

        metrics.record_rollback("restored")
        logger.info(
            "balance_restored",
            account_id=str(attempt.account_id),
            balance=str(restored.balance),
        )
        return True

    @retry(
        retry=retry_if_exception_type(ConcurrencyConflict),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    )
    async def _compensate(self, account_id: uuid.UUID, delta: Decimal) -> Optional[Account]:
        current = await self._store.find_account(account_id)
        if current is None:
            return None
        return await self._store.save_account(current.with_balance(current.balance - delta))
