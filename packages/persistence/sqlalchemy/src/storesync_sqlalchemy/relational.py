"""
SQLAlchemy implementation of the relational store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from storesync_core.domain.snapshot import Snapshot
from storesync_core.ports.relational import IRelationalStore

from .exceptions import SQLAlchemyPersistenceError
from .models import ResourceSnapshotModel

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger("storesync.sqlalchemy")


class SQLAlchemyRelationalStore(IRelationalStore):
    """
    Keeps one ``resource_snapshots`` row per resource.

    Every method runs in its own short transaction; ``upsert`` reads the
    previous payload under ``FOR UPDATE`` (where the dialect supports it) so
    the returned previous snapshot is the one actually replaced.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, resource_id: str, snapshot: Snapshot) -> Snapshot | None:
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(
                    ResourceSnapshotModel, resource_id, with_for_update=True
                )
                previous = _to_snapshot(row)
                if row is None:
                    row = ResourceSnapshotModel(resource_id=resource_id)
                    session.add(row)
                row.payload = snapshot.model_dump(mode="json")
                row.content_hash = snapshot.content_hash()
                row.fetched_at = snapshot.fetched_at
        except SQLAlchemyError as exc:
            raise SQLAlchemyPersistenceError(
                f"Failed to write snapshot for {resource_id}: {exc}"
            ) from exc
        logger.debug("Stored snapshot for %s", resource_id)
        return previous

    async def read_current(self, resource_id: str) -> Snapshot | None:
        async with self._session_factory() as session:
            row = await session.get(ResourceSnapshotModel, resource_id)
            return _to_snapshot(row)

    async def delete(self, resource_id: str) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(
                    ResourceSnapshotModel, resource_id, with_for_update=True
                )
                if row is None or row.payload is None:
                    return False
                row.payload = None
                row.content_hash = None
                row.fetched_at = None
        except SQLAlchemyError as exc:
            raise SQLAlchemyPersistenceError(
                f"Failed to delete snapshot for {resource_id}: {exc}"
            ) from exc
        logger.debug("Deleted snapshot for %s", resource_id)
        return True

    async def mark_synced(self, resource_id: str, at: datetime) -> None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(ResourceSnapshotModel, resource_id)
            if row is None:
                row = ResourceSnapshotModel(resource_id=resource_id)
                session.add(row)
            row.last_synced_at = at

    async def get_last_synced_at(self, resource_id: str) -> datetime | None:
        async with self._session_factory() as session:
            row = await session.get(ResourceSnapshotModel, resource_id)
            return row.last_synced_at if row is not None else None


def _to_snapshot(row: ResourceSnapshotModel | None) -> Snapshot | None:
    if row is None or row.payload is None:
        return None
    return Snapshot.model_validate(row.payload)
