"""Event store protocol — append-only rebalance event log."""
from typing import Protocol

from ..models import RebalanceEvent


class EventStore(Protocol):
    """Abstract interface for persisting rebalance events.

    ``append`` raises ``PersistenceError`` when the event could not be
    durably recorded; ``list_all`` returns events in insertion order.
    """

    async def append(self, event: RebalanceEvent) -> None: ...

    async def list_all(self) -> list[RebalanceEvent]: ...
