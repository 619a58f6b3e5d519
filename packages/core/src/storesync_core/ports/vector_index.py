"""IVectorIndex — semantic retrieval copy, partitioned into namespaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..domain.snapshot import Snapshot


@dataclass(frozen=True)
class ReindexResult:
    documents_written: int
    namespaces: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    namespaces_deleted: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class VectorIndexStats:
    """Per-namespace document counts for one resource."""

    resource_id: str
    namespaces: dict[str, int] = field(default_factory=dict)

    @property
    def total_documents(self) -> int:
        return sum(self.namespaces.values())


@runtime_checkable
class IVectorIndex(Protocol):
    """
    Vector index adapter.

    ``reindex`` replaces every namespace of the resource with documents
    derived from the given snapshot (see ``domain.documents``); it must be
    idempotent so rollback can replay it.
    """

    async def reindex(self, resource_id: str, snapshot: Snapshot) -> ReindexResult: ...

    async def delete_all(self, resource_id: str) -> DeleteResult: ...

    async def stats(self, resource_id: str) -> VectorIndexStats: ...

    async def read_fields(
        self,
        resource_id: str,
        fields: Sequence[str],
    ) -> dict[str, Any]:
        """Read a sample of field paths (``store.name``, ``products.count`` ...)."""
        ...
