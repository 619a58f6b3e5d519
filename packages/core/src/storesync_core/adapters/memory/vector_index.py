"""InMemoryVectorIndex — namespace-partitioned document store without embeddings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...domain.documents import build_documents, resolve_indexed_field
from ...ports.vector_index import (
    DeleteResult,
    IVectorIndex,
    ReindexResult,
    VectorIndexStats,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ...domain.documents import VectorDocument
    from ...domain.snapshot import Snapshot


class InMemoryVectorIndex(IVectorIndex):
    def __init__(self) -> None:
        # resource id -> namespace -> documents
        self._namespaces: dict[str, dict[str, list[VectorDocument]]] = {}

    async def reindex(self, resource_id: str, snapshot: Snapshot) -> ReindexResult:
        documents = build_documents(snapshot)
        self._namespaces[resource_id] = {ns: list(docs) for ns, docs in documents.items()}
        return ReindexResult(
            documents_written=sum(len(docs) for docs in documents.values()),
            namespaces=sorted(documents),
        )

    async def delete_all(self, resource_id: str) -> DeleteResult:
        removed = self._namespaces.pop(resource_id, {})
        return DeleteResult(success=True, namespaces_deleted=sorted(removed))

    async def stats(self, resource_id: str) -> VectorIndexStats:
        namespaces = self._namespaces.get(resource_id, {})
        return VectorIndexStats(
            resource_id=resource_id,
            namespaces={ns: len(docs) for ns, docs in namespaces.items()},
        )

    async def read_fields(
        self,
        resource_id: str,
        fields: Sequence[str],
    ) -> dict[str, Any]:
        namespaces = self._namespaces.get(resource_id, {})
        return {
            path: resolve_indexed_field(resource_id, namespaces, path) for path in fields
        }

    def documents(self, resource_id: str) -> dict[str, list[VectorDocument]]:
        return {
            ns: list(docs) for ns, docs in self._namespaces.get(resource_id, {}).items()
        }
