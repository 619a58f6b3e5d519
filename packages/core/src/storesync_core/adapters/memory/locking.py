"""InMemoryLockStore — single-process implementation of ILockStore."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ...ports.locking import ILockStore

if TYPE_CHECKING:
    from ...domain.lock import LockRecord


class InMemoryLockStore(ILockStore):
    """
    Dict of lock records guarded by an ``asyncio.Lock``.

    Exclusion only holds for callers sharing this instance.
    """

    def __init__(self) -> None:
        self._records: dict[str, LockRecord] = {}
        self._mutex = asyncio.Lock()

    async def get(self, resource_id: str) -> LockRecord | None:
        return self._records.get(resource_id)

    async def compare_and_set(
        self,
        resource_id: str,
        expected_token: str | None,
        record: LockRecord,
    ) -> bool:
        async with self._mutex:
            current = self._records.get(resource_id)
            current_token = current.token if current is not None else None
            if current_token != expected_token:
                return False
            self._records[resource_id] = record
            return True

    async def delete_if_token(self, resource_id: str, token: str) -> bool:
        async with self._mutex:
            current = self._records.get(resource_id)
            if current is None or current.token != token:
                return False
            del self._records[resource_id]
            return True

    async def delete(self, resource_id: str) -> LockRecord | None:
        async with self._mutex:
            return self._records.pop(resource_id, None)

    async def list_all(self) -> list[LockRecord]:
        return list(self._records.values())
