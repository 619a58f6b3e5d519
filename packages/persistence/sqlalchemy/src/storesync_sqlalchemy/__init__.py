"""storesync-sqlalchemy — relational store and durable transaction log."""

from __future__ import annotations

from .exceptions import SQLAlchemyPersistenceError
from .models import Base, ResourceSnapshotModel, SyncTransactionModel
from .relational import SQLAlchemyRelationalStore
from .schema import create_schema, drop_schema
from .transaction_log import SQLAlchemyTransactionLog

__all__ = [
    "Base",
    "ResourceSnapshotModel",
    "SQLAlchemyPersistenceError",
    "SQLAlchemyRelationalStore",
    "SQLAlchemyTransactionLog",
    "SyncTransactionModel",
    "create_schema",
    "drop_schema",
]
