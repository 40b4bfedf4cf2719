"""Queue integrations."""
from .queue import EventMessage, InMemoryQueue, QueueClient

__all__ = ["EventMessage", "InMemoryQueue", "QueueClient"]
