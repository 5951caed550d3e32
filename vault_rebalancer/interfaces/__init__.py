"""Protocol interfaces for the vault rebalancer."""
from .event_store import EventStore
from .notifier import Notifier
from .random_source import RandomSource

__all__ = ["EventStore", "Notifier", "RandomSource"]
