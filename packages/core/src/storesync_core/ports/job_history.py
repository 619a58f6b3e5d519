"""IJobHistoryStore — bounded record of finished jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.job import JobResult


@runtime_checkable
class IJobHistoryStore(Protocol):
    """Most-recent-N job results; older entries are evicted on write."""

    async def record(self, result: JobResult) -> None: ...

    async def get(self, job_id: str) -> JobResult | None: ...

    async def recent(self, limit: int | None = None) -> list[JobResult]:
        """Newest first."""
        ...

    async def clear(self) -> int:
        """Drop all entries and return how many were removed."""
        ...
