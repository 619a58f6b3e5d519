"""IRelationalStore — the application's queryable copy of synced data."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..domain.snapshot import Snapshot


@runtime_checkable
class IRelationalStore(Protocol):
    async def upsert(self, resource_id: str, snapshot: Snapshot) -> Snapshot | None:
        """Replace the stored snapshot and return the previous one, if any."""
        ...

    async def read_current(self, resource_id: str) -> Snapshot | None: ...

    async def delete(self, resource_id: str) -> bool: ...

    async def mark_synced(self, resource_id: str, at: datetime) -> None:
        """Update the durable "last successful sync" marker."""
        ...

    async def get_last_synced_at(self, resource_id: str) -> datetime | None: ...
