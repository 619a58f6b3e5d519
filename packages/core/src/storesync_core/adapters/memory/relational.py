"""InMemoryRelationalStore — dict-backed IRelationalStore."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.relational import IRelationalStore

if TYPE_CHECKING:
    from datetime import datetime

    from ...domain.snapshot import Snapshot


class InMemoryRelationalStore(IRelationalStore):
    def __init__(self) -> None:
        self._snapshots: dict[str, Snapshot] = {}
        self._synced_at: dict[str, datetime] = {}
        self.write_count = 0

    async def upsert(self, resource_id: str, snapshot: Snapshot) -> Snapshot | None:
        previous = self._snapshots.get(resource_id)
        self._snapshots[resource_id] = snapshot
        self.write_count += 1
        return previous

    async def read_current(self, resource_id: str) -> Snapshot | None:
        return self._snapshots.get(resource_id)

    async def delete(self, resource_id: str) -> bool:
        return self._snapshots.pop(resource_id, None) is not None

    async def mark_synced(self, resource_id: str, at: datetime) -> None:
        self._synced_at[resource_id] = at

    async def get_last_synced_at(self, resource_id: str) -> datetime | None:
        return self._synced_at.get(resource_id)
