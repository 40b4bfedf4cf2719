"""SQLAlchemy database models for the event receiver."""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, Uuid, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator, TypeEngine

from event_receiver.core.transaction import AMOUNT_DECIMAL_PLACES, AMOUNT_MAX_DIGITS


class Money(TypeDecorator):
    """
    Fixed-point amount with AMOUNT_MAX_DIGITS digits, AMOUNT_DECIMAL_PLACES after the point.

    NUMERIC where the backend has it. SQLite only has binary floats, so there
    the value is kept as its decimal text. Values that don't fit are
    rejected instead of rounded.
    """

    impl = Numeric
    cache_ok = True

    _quantum = Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES)

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(AMOUNT_MAX_DIGITS + 2))
        return dialect.type_descriptor(Numeric(AMOUNT_MAX_DIGITS, AMOUNT_DECIMAL_PLACES))

    def process_bind_param(self, value: Optional[Decimal], dialect: Dialect) -> Any:
        if value is None:
            return None
        value = Decimal(value)
        try:
            quantized = value.quantize(self._quantum)
        except InvalidOperation:
            quantized = None
        if (
            quantized is None
            or quantized != value
            or len(quantized.as_tuple().digits) > AMOUNT_MAX_DIGITS
        ):
            raise ValueError(
                f"{value} does not fit NUMERIC({AMOUNT_MAX_DIGITS}, {AMOUNT_DECIMAL_PLACES})"
            )
        if dialect.name == "sqlite":
            return str(quantized)
        return quantized

    def process_result_value(self, value: Any, dialect: Dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class BankAccount(Base):
    """
    Bank account balances.

    The version column is bumped on every write; a write only succeeds
    against the version it read (optimistic concurrency).
    """

    __tablename__ = "bank_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (CheckConstraint("version >= 1", name="positive_version"),)

    def __repr__(self) -> str:
        """String representation of BankAccount."""
        return (
            f"<BankAccount(id={self.id}, balance={self.balance}, "
            f"version={self.version})>"
        )
