"""InMemoryTransactionLog — ITransactionLog for tests and single-process use."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...domain.transaction import ACTIVE_PHASES
from ...ports.transaction_log import ITransactionLog
from ...primitives.exceptions import TransactionLogError

if TYPE_CHECKING:
    from datetime import datetime

    from ...domain.transaction import SyncKind, SyncTransaction


class InMemoryTransactionLog(ITransactionLog):
    """Stores deep copies so callers cannot mutate logged records in place."""

    def __init__(self) -> None:
        self._records: dict[str, SyncTransaction] = {}

    async def insert(self, transaction: SyncTransaction) -> None:
        if transaction.id in self._records:
            raise TransactionLogError(f"Transaction {transaction.id} already logged")
        self._records[transaction.id] = transaction.model_copy(deep=True)

    async def update(self, transaction: SyncTransaction) -> None:
        if transaction.id not in self._records:
            raise TransactionLogError(f"Transaction {transaction.id} not logged")
        self._records[transaction.id] = transaction.model_copy(deep=True)

    async def get(self, sync_id: str) -> SyncTransaction | None:
        record = self._records.get(sync_id)
        return record.model_copy(deep=True) if record is not None else None

    async def query_recent(
        self,
        resource_id: str,
        kind: SyncKind,
        since: datetime,
    ) -> list[SyncTransaction]:
        matches = [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.resource_id == resource_id
            and record.kind == kind
            and record.started_at >= since
        ]
        return sorted(matches, key=lambda r: r.started_at, reverse=True)

    async def find_stuck(
        self,
        started_before: datetime,
        limit: int = 50,
    ) -> list[SyncTransaction]:
        stuck = [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.phase in ACTIVE_PHASES and record.started_at < started_before
        ]
        stuck.sort(key=lambda r: r.started_at)
        return stuck[:limit]

    def all(self) -> list[SyncTransaction]:
        return [record.model_copy(deep=True) for record in self._records.values()]
