"""Database package for the event receiver."""
from .connection import close_db, get_session_factory, init_db, seed_accounts
from .models import Base, BankAccount
from .store import SqlAccountStore

__all__ = [
    "Base",
    "BankAccount",
    "SqlAccountStore",
    "close_db",
    "get_session_factory",
    "init_db",
    "seed_accounts",
]
