"""storesync-core — saga-coordinated sync of store data into a relational
store and a vector index.

Backing-store agnostic: shared state lives behind ports with in-memory
implementations here and Redis / SQLAlchemy implementations in sibling
packages.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters.memory import (
    InMemoryCircuitBreakerStore,
    InMemoryJobHistory,
    InMemoryLockStore,
    InMemoryRelationalStore,
    InMemoryRemotePlatform,
    InMemoryTransactionLog,
    InMemoryVectorIndex,
    StaticCredentialsProvider,
)
from .bootstrap import SyncBootstrapResult, bootstrap_sync
from .config import CircuitBreakerConfig, SyncConfig

# ── Services ────────────────────────────────────────────────────
from .consistency import (
    CheckLevel,
    ConsistencyChecker,
    ConsistencyReport,
    Discrepancy,
    DiscrepancyType,
    Severity,
)
from .correlation import correlation_scope, get_correlation_id, set_correlation_id

# ── Domain ──────────────────────────────────────────────────────
from .domain import (
    CircuitBreakerState,
    CircuitState,
    CompensationRecord,
    JobResult,
    JobStatus,
    LockRecord,
    OperationRecord,
    Snapshot,
    SyncErrorInfo,
    SyncKind,
    SyncMetrics,
    SyncPhase,
    SyncTransaction,
    SyncTransactionResult,
    VectorDocument,
    build_documents,
)
from .instrumentation import HookRegistry, get_hook_registry, set_hook_registry
from .jobs import JobContext, JobRunner, QueueStats
from .locking import LockAcquisition, LockManager, LockRelease

# ── Errors ──────────────────────────────────────────────────────
from .primitives.exceptions import (
    AuthError,
    CapacityExceededError,
    CircuitOpenError,
    ConsistencyViolationError,
    DuplicateTransactionError,
    LockConflictError,
    NotFoundError,
    PermanentRemoteError,
    StoreSyncError,
    SyncError,
    SyncErrorCode,
    TransientError,
    TransientRemoteError,
)
from .resilience import CircuitBreaker, ErrorKind, RetryPolicy, classify_error
from .sync import (
    SyncOptions,
    SyncRecoveryWorker,
    SyncScheduler,
    SyncTransactionCoordinator,
)

__all__ = [
    "AuthError",
    "CapacityExceededError",
    "CheckLevel",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitOpenError",
    "CircuitState",
    "CompensationRecord",
    "ConsistencyChecker",
    "ConsistencyReport",
    "ConsistencyViolationError",
    "Discrepancy",
    "DiscrepancyType",
    "DuplicateTransactionError",
    "ErrorKind",
    "HookRegistry",
    "InMemoryCircuitBreakerStore",
    "InMemoryJobHistory",
    "InMemoryLockStore",
    "InMemoryRelationalStore",
    "InMemoryRemotePlatform",
    "InMemoryTransactionLog",
    "InMemoryVectorIndex",
    "JobContext",
    "JobResult",
    "JobRunner",
    "JobStatus",
    "LockAcquisition",
    "LockConflictError",
    "LockManager",
    "LockRecord",
    "LockRelease",
    "NotFoundError",
    "OperationRecord",
    "PermanentRemoteError",
    "QueueStats",
    "RetryPolicy",
    "Severity",
    "Snapshot",
    "StaticCredentialsProvider",
    "StoreSyncError",
    "SyncBootstrapResult",
    "SyncConfig",
    "SyncError",
    "SyncErrorCode",
    "SyncErrorInfo",
    "SyncKind",
    "SyncMetrics",
    "SyncOptions",
    "SyncPhase",
    "SyncRecoveryWorker",
    "SyncScheduler",
    "SyncTransaction",
    "SyncTransactionCoordinator",
    "SyncTransactionResult",
    "TransientError",
    "TransientRemoteError",
    "VectorDocument",
    "bootstrap_sync",
    "build_documents",
    "classify_error",
    "correlation_scope",
    "get_correlation_id",
    "get_hook_registry",
    "set_correlation_id",
    "set_hook_registry",
]
