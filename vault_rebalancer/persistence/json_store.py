"""JSON-file event store — one array of events, rewritten atomically on append."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from ..errors import PersistenceError
from ..models import RebalanceEvent

logger = logging.getLogger(__name__)


class JsonFileEventStore:
    """Persist rebalance events to a JSON file.

    Appends are serialized with an ``asyncio.Lock`` and written through a
    temporary file plus ``os.replace`` so readers never see a half-written
    array. File I/O runs in a worker thread so the event loop keeps ticking.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_raw(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        text = self.path.read_text(encoding="utf-8")
        data = json.loads(text or "[]")
        if not isinstance(data, list):
            raise PersistenceError(f"Event log {self.path} is not a JSON array")
        return data

    def _write_raw(self, data: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _append_raw(self, record: dict[str, Any]) -> None:
        data = self._read_raw()
        data.append(record)
        self._write_raw(data)

    async def append(self, event: RebalanceEvent) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._append_raw, event.to_dict())
            except (OSError, ValueError) as e:
                raise PersistenceError(
                    f"Failed to append rebalance event for {event.vault_id}: {e}"
                ) from e
        logger.debug("Appended rebalance event for %s to %s", event.vault_id, self.path)

    async def list_all(self) -> list[RebalanceEvent]:
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._read_raw)
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to read event log {self.path}: {e}") from e
        try:
            return [RebalanceEvent.from_dict(item) for item in data]
        except (KeyError, TypeError) as e:
            raise PersistenceError(f"Malformed event in {self.path}: {e}") from e

    async def clear(self) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_raw, [])
            except OSError as e:
                raise PersistenceError(f"Failed to clear event log {self.path}: {e}") from e
