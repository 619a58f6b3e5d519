"""ITransactionLog — durable audit trail and idempotency source."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..domain.transaction import SyncKind, SyncTransaction


@runtime_checkable
class ITransactionLog(Protocol):
    """
    Persistent store of ``SyncTransaction`` records.

    The coordinator inserts a record at the end of prepare and updates it as
    phases change. The record's phase is the recovery anchor after a crash.
    """

    async def insert(self, transaction: SyncTransaction) -> None: ...

    async def update(self, transaction: SyncTransaction) -> None: ...

    async def get(self, sync_id: str) -> SyncTransaction | None: ...

    async def query_recent(
        self,
        resource_id: str,
        kind: SyncKind,
        since: datetime,
    ) -> list[SyncTransaction]:
        """Transactions for *resource_id* and *kind* started at or after *since*."""
        ...

    async def find_stuck(
        self,
        started_before: datetime,
        limit: int = 50,
    ) -> list[SyncTransaction]:
        """Transactions still in an active phase that started before the cutoff."""
        ...
