"""Banking event receiver: applies queued credit/debit events to account balances."""

__version__ = "0.1.0"
