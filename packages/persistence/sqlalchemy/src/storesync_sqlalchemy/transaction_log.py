"""
SQLAlchemy implementation of the sync transaction log.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storesync_core.domain.transaction import ACTIVE_PHASES, SyncTransaction
from storesync_core.ports.transaction_log import ITransactionLog
from storesync_core.primitives.exceptions import TransactionLogError

from .models import SyncTransactionModel

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from storesync_core.domain.transaction import SyncKind


class SQLAlchemyTransactionLog(ITransactionLog):
    """Durable ``ITransactionLog`` over the ``sync_transactions`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, transaction: SyncTransaction) -> None:
        row = SyncTransactionModel(id=transaction.id)
        _apply(row, transaction)
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except IntegrityError as exc:
            raise TransactionLogError(
                f"Transaction {transaction.id} already logged"
            ) from exc
        except SQLAlchemyError as exc:
            raise TransactionLogError(
                f"Failed to log transaction {transaction.id}: {exc}"
            ) from exc

    async def update(self, transaction: SyncTransaction) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(SyncTransactionModel, transaction.id)
                if row is None:
                    raise TransactionLogError(
                        f"Transaction {transaction.id} not logged"
                    )
                _apply(row, transaction)
        except SQLAlchemyError as exc:
            raise TransactionLogError(
                f"Failed to update transaction {transaction.id}: {exc}"
            ) from exc

    async def get(self, sync_id: str) -> SyncTransaction | None:
        async with self._session_factory() as session:
            row = await session.get(SyncTransactionModel, sync_id)
            return _from_row(row) if row is not None else None

    async def query_recent(
        self,
        resource_id: str,
        kind: SyncKind,
        since: datetime,
    ) -> list[SyncTransaction]:
        stmt = (
            select(SyncTransactionModel)
            .where(
                SyncTransactionModel.resource_id == resource_id,
                SyncTransactionModel.kind == kind.value,
                SyncTransactionModel.started_at >= since,
            )
            .order_by(SyncTransactionModel.started_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_from_row(row) for row in result.scalars().all()]

    async def find_stuck(
        self,
        started_before: datetime,
        limit: int = 50,
    ) -> list[SyncTransaction]:
        stmt = (
            select(SyncTransactionModel)
            .where(
                SyncTransactionModel.phase.in_([p.value for p in ACTIVE_PHASES]),
                SyncTransactionModel.started_at < started_before,
            )
            .order_by(SyncTransactionModel.started_at.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_from_row(row) for row in result.scalars().all()]


def _apply(row: SyncTransactionModel, transaction: SyncTransaction) -> None:
    row.resource_id = transaction.resource_id
    row.kind = transaction.kind.value
    row.phase = transaction.phase.value
    row.attempt = transaction.attempt
    row.started_at = transaction.started_at
    row.finished_at = transaction.finished_at
    row.execution_time = transaction.execution_time
    row.error_code = transaction.error_code.value if transaction.error_code else None
    row.last_error = transaction.last_error
    row.correlation_id = transaction.correlation_id
    row.payload = transaction.model_dump(mode="json")


def _from_row(row: SyncTransactionModel) -> SyncTransaction:
    return SyncTransaction.model_validate(row.payload)
