"""Exceptions for the SQLAlchemy persistence layer."""

from __future__ import annotations

from storesync_core.primitives.exceptions import InfrastructureError, TransactionLogError


class SQLAlchemyPersistenceError(InfrastructureError):
    """Raised when the relational store cannot complete an operation."""


__all__: list[str] = [
    "SQLAlchemyPersistenceError",
    "TransactionLogError",
]
