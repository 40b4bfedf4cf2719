"""
Transaction records carried in queue message payloads.

Wire format:
    {"id": "<uuid>", "messageType": "Credit", "bankAccountId": "<uuid>", "amount": 50.25}
"""
import json
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import DecodeError

# Precision of a stored balance; amounts that need more would be rounded on save
AMOUNT_MAX_DIGITS = 18
AMOUNT_DECIMAL_PLACES = 2


class TransactionKind(str, Enum):
    """Recognized transaction kinds."""

    CREDIT = "Credit"
    DEBIT = "Debit"


@dataclass(frozen=True)
class Transaction:
    """A decoded balance change for a single account."""

    id: uuid.UUID
    kind: TransactionKind
    account_id: uuid.UUID
    amount: Decimal

    @property
    def delta(self) -> Decimal:
        """Signed amount: positive for credits, negative for debits."""
        if self.kind == TransactionKind.DEBIT:
            return -self.amount
        return self.amount


class TransactionPayload(BaseModel):
    """Schema of the JSON payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: uuid.UUID
    message_type: TransactionKind = Field(alias="messageType")
    bank_account_id: uuid.UUID = Field(alias="bankAccountId")
    amount: Decimal = Field(
        ge=0,
        allow_inf_nan=False,
        max_digits=AMOUNT_MAX_DIGITS,
        decimal_places=AMOUNT_DECIMAL_PLACES,
    )

    @field_validator("id", "bank_account_id", mode="before")
    @classmethod
    def validate_identifier(cls, v: Any) -> Any:
        """Identifiers travel as UUID strings."""
        if not isinstance(v, (str, uuid.UUID)):
            raise ValueError("identifier must be a UUID string")
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        """Amount must be a JSON number, not a string or boolean."""
        if isinstance(v, bool) or not isinstance(v, (int, float, Decimal)):
            raise ValueError("amount must be a number")
        return v

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            kind=self.message_type,
            account_id=self.bank_account_id,
            amount=self.amount,
        )


def decode_transaction(payload: bytes | str) -> Transaction:
    """
    Decode a message payload into a transaction.

    Args:
        payload: Raw message body

    Returns:
        Transaction: Decoded transaction

    Raises:
        DecodeError: If the payload is not a well-formed transaction record
    """
    try:
        data = json.loads(payload, parse_float=Decimal)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}", original_error=e)

    if not isinstance(data, dict):
        raise DecodeError("Payload must be a JSON object")

    try:
        return TransactionPayload.model_validate(data).to_transaction()
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise DecodeError(f"Invalid transaction fields: {', '.join(fields)}", original_error=e)


def _json_number(amount: Decimal) -> str:
    """Plain-notation JSON number literal carrying every digit of the amount."""
    if not amount.is_finite():
        raise ValueError(f"Amount is not a finite number: {amount}")
    return format(amount, "f")


def encode_transaction(transaction: Transaction) -> bytes:
    """
    Encode a transaction in the payload wire format.

    Args:
        transaction: Transaction to encode

    Returns:
        bytes: UTF-8 JSON payload

    Raises:
        ValueError: If the amount is NaN or infinite
    """
    kind = transaction.kind
    fields = {
        "id": str(transaction.id),
        "messageType": kind.value if isinstance(kind, TransactionKind) else str(kind),
        "bankAccountId": str(transaction.account_id),
    }
    members = [f"{json.dumps(name)}: {json.dumps(value)}" for name, value in fields.items()]
    # json.dumps would route a Decimal through float; the literal is written as is
    members.append(f'"amount": {_json_number(transaction.amount)}')
    return ("{" + ", ".join(members) + "}").encode("utf-8")
