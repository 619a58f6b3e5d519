"""Snapshot — one point-in-time copy of a store's business data."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Snapshot(BaseModel):
    """Store profile plus the catalog, orders and customers of one resource.

    Collections are lists of plain dicts keyed by ``"id"``. The same shape is
    written to the relational store and used to derive vector documents.

    Field paths understood by :meth:`resolve`:

    * ``store.<attr>`` — an attribute of the store profile.
    * ``<collection>.count`` — number of entities in a collection.
    * ``<collection>.ids`` — sorted entity ids of a collection.
    """

    model_config = ConfigDict(frozen=True)

    COLLECTIONS: ClassVar[tuple[str, ...]] = ("products", "orders", "customers")

    resource_id: str
    store: dict[str, Any] = Field(default_factory=dict)
    products: list[dict[str, Any]] = Field(default_factory=list)
    orders: list[dict[str, Any]] = Field(default_factory=list)
    customers: list[dict[str, Any]] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def content_hash(self) -> str:
        """Stable digest of the business content (ignores ``fetched_at``)."""
        payload = self.model_dump(mode="json", exclude={"fetched_at"})
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def collection(self, name: str) -> list[dict[str, Any]]:
        if name not in self.COLLECTIONS:
            raise KeyError(name)
        items: list[dict[str, Any]] = getattr(self, name)
        return items

    def entity_ids(self, name: str) -> set[str]:
        return {str(item.get("id")) for item in self.collection(name)}

    @classmethod
    def is_resolvable(cls, path: str) -> bool:
        """Whether :meth:`resolve` understands *path*."""
        head, _, attr = path.partition(".")
        if head == "store":
            return bool(attr)
        return head in cls.COLLECTIONS and attr in ("count", "ids")

    def resolve(self, path: str) -> Any:
        """Return the value at *path*, or ``None`` for a missing store attribute."""
        head, _, attr = path.partition(".")
        if head == "store":
            return self.store.get(attr)
        if head in self.COLLECTIONS:
            if attr == "count":
                return len(self.collection(head))
            if attr == "ids":
                return sorted(self.entity_ids(head))
        raise KeyError(path)

    @property
    def is_empty(self) -> bool:
        return not self.store and not any(
            self.collection(name) for name in self.COLLECTIONS
        )
