"""Core message processing logic."""
from .accounts import Account, AccountStore
from .errors import ErrorKind, FailureClass, classify
from .retry import RetryPolicy
from .transaction import Transaction, TransactionKind, decode_transaction, encode_transaction

__all__ = [
    "Account",
    "AccountStore",
    "ErrorKind",
    "FailureClass",
    "RetryPolicy",
    "Transaction",
    "TransactionKind",
    "classify",
    "decode_transaction",
    "encode_transaction",
]
