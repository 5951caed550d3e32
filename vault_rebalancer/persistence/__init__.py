"""Rebalance event stores."""
from .json_store import JsonFileEventStore
from .memory_store import InMemoryEventStore

__all__ = ["JsonFileEventStore", "InMemoryEventStore"]
