"""Domain models: snapshots, transactions, locks, breakers, jobs."""

from __future__ import annotations

from .circuit import CircuitBreakerState, CircuitState
from .documents import (
    CATEGORIES,
    VectorDocument,
    build_documents,
    namespace_for,
    resolve_indexed_field,
)
from .job import JobResult, JobStatus
from .lock import LockRecord
from .results import SyncErrorInfo, SyncTransactionResult
from .snapshot import Snapshot
from .transaction import (
    ACTIVE_PHASES,
    TERMINAL_PHASES,
    CompensationRecord,
    OperationRecord,
    SyncKind,
    SyncMetrics,
    SyncPhase,
    SyncTransaction,
)

__all__ = [
    "ACTIVE_PHASES",
    "CATEGORIES",
    "TERMINAL_PHASES",
    "CircuitBreakerState",
    "CircuitState",
    "CompensationRecord",
    "JobResult",
    "JobStatus",
    "LockRecord",
    "OperationRecord",
    "Snapshot",
    "SyncErrorInfo",
    "SyncKind",
    "SyncMetrics",
    "SyncPhase",
    "SyncTransaction",
    "SyncTransactionResult",
    "VectorDocument",
    "build_documents",
    "namespace_for",
    "resolve_indexed_field",
]
