from __future__ import annotations

from .exceptions import (
    AuthError,
    CapacityExceededError,
    CircuitOpenError,
    ConsistencyViolationError,
    DuplicateTransactionError,
    InfrastructureError,
    JobTimeoutError,
    LockConflictError,
    NotFoundError,
    PermanentRemoteError,
    PhaseTransitionError,
    RemoteError,
    RollbackPartialFailureError,
    StepTimeoutError,
    StoreSyncError,
    SyncError,
    SyncErrorCode,
    TransactionLogError,
    TransientError,
    TransientRemoteError,
)

__all__ = [
    "AuthError",
    "CapacityExceededError",
    "CircuitOpenError",
    "ConsistencyViolationError",
    "DuplicateTransactionError",
    "InfrastructureError",
    "JobTimeoutError",
    "LockConflictError",
    "NotFoundError",
    "PermanentRemoteError",
    "PhaseTransitionError",
    "RemoteError",
    "RollbackPartialFailureError",
    "StepTimeoutError",
    "StoreSyncError",
    "SyncError",
    "SyncErrorCode",
    "TransactionLogError",
    "TransientError",
    "TransientRemoteError",
]
