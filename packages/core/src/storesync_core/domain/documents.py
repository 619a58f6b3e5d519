"""Vector document derivation from a relational snapshot."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .snapshot import Snapshot

STORE_CATEGORY = "store"
CATEGORIES: tuple[str, ...] = (STORE_CATEGORY, "products", "orders", "customers")

_TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    STORE_CATEGORY: ("name", "domain", "currency", "language", "description"),
    "products": ("title", "name", "description", "product_type", "vendor", "price"),
    "orders": ("name", "status", "total", "currency", "created_at"),
    "customers": ("first_name", "last_name", "email", "orders_count"),
}


class VectorDocument(BaseModel):
    """A single document in one namespace of the vector index."""

    model_config = ConfigDict(frozen=True)

    id: str
    namespace: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def namespace_for(resource_id: str, category: str) -> str:
    """Namespace holding *category* documents of *resource_id*."""
    return f"{resource_id}:{category}"


def _render(category: str, record: Mapping[str, Any]) -> str:
    parts = [
        f"{field}: {record[field]}"
        for field in _TEXT_FIELDS[category]
        if record.get(field) not in (None, "")
    ]
    return "\n".join(parts) or f"{category} {record.get('id', '')}".strip()


def build_documents(snapshot: Snapshot) -> dict[str, list[VectorDocument]]:
    """Derive vector documents for every non-empty category of *snapshot*.

    Returns a mapping of namespace to documents. The store profile becomes
    a single document whose metadata mirrors the profile, so indexed fields
    can be compared against the relational copy.
    """
    resource_id = snapshot.resource_id
    documents: dict[str, list[VectorDocument]] = {}

    if snapshot.store:
        ns = namespace_for(resource_id, STORE_CATEGORY)
        documents[ns] = [
            VectorDocument(
                id=f"{resource_id}:store",
                namespace=ns,
                text=_render(STORE_CATEGORY, snapshot.store),
                metadata={"category": STORE_CATEGORY, **snapshot.store},
            )
        ]

    for category in snapshot.COLLECTIONS:
        items = snapshot.collection(category)
        if not items:
            continue
        ns = namespace_for(resource_id, category)
        documents[ns] = [
            VectorDocument(
                id=f"{resource_id}:{category}:{item.get('id')}",
                namespace=ns,
                text=_render(category, item),
                metadata={"category": category, "entity_id": str(item.get("id"))},
            )
            for item in items
        ]
    return documents


def resolve_indexed_field(
    resource_id: str,
    documents: Mapping[str, Sequence[VectorDocument]],
    path: str,
) -> Any:
    """Read *path* (same syntax as ``Snapshot.resolve``) from indexed documents."""
    head, _, attr = path.partition(".")
    if head == STORE_CATEGORY:
        docs = documents.get(namespace_for(resource_id, STORE_CATEGORY), ())
        if not docs:
            return None
        return docs[0].metadata.get(attr)
    if head in CATEGORIES:
        docs = documents.get(namespace_for(resource_id, head), ())
        if attr == "count":
            return len(docs)
        if attr == "ids":
            return sorted(str(doc.metadata.get("entity_id")) for doc in docs)
    raise KeyError(path)
