"""In-process event store, used by tests and one-off CLI runs."""
from __future__ import annotations

from ..models import RebalanceEvent


class InMemoryEventStore:
    """Append-only list of events."""

    def __init__(self) -> None:
        self._events: list[RebalanceEvent] = []

    async def append(self, event: RebalanceEvent) -> None:
        self._events.append(event)

    async def list_all(self) -> list[RebalanceEvent]:
        return list(self._events)
