"""InMemoryJobHistory — bounded most-recent-N job results."""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING

from ...ports.job_history import IJobHistoryStore

if TYPE_CHECKING:
    from ...domain.job import JobResult


class InMemoryJobHistory(IJobHistoryStore):
    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, JobResult] = OrderedDict()

    async def record(self, result: JobResult) -> None:
        self._entries.pop(result.job_id, None)
        self._entries[result.job_id] = result
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    async def get(self, job_id: str) -> JobResult | None:
        return self._entries.get(job_id)

    async def recent(self, limit: int | None = None) -> list[JobResult]:
        items = list(reversed(self._entries.values()))
        return items if limit is None else items[:limit]

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
