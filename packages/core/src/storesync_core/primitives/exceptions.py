"""Exception hierarchy for storesync.

Every error the coordinator can surface to its callers derives from
:class:`SyncError` and carries a :class:`SyncErrorCode` so results can be
handled programmatically.  Backing-store failures derive from
:class:`InfrastructureError`.
"""

from __future__ import annotations

from enum import Enum


class SyncErrorCode(str, Enum):
    """Programmatic classification of a failed sync."""

    LOCK_CONFLICT = "LOCK_CONFLICT"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    TRANSIENT_REMOTE_ERROR = "TRANSIENT_REMOTE_ERROR"
    PERMANENT_REMOTE_ERROR = "PERMANENT_REMOTE_ERROR"
    CONSISTENCY_VIOLATION = "CONSISTENCY_VIOLATION"
    ROLLBACK_PARTIAL_FAILURE = "ROLLBACK_PARTIAL_FAILURE"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


class StoreSyncError(Exception):
    """Root exception for the storesync packages."""


class PhaseTransitionError(StoreSyncError):
    """Raised when a transaction is moved to a phase it cannot reach."""

    def __init__(self, sync_id: str, current: str, target: str) -> None:
        self.sync_id = sync_id
        self.current = current
        self.target = target
        super().__init__(
            f"Transaction {sync_id} cannot move from {current!r} to {target!r}"
        )


class InfrastructureError(StoreSyncError):
    """Base class for failures of a backing store."""


class TransactionLogError(InfrastructureError):
    """Raised when the durable transaction log cannot be read or written."""


class SyncError(StoreSyncError):
    """Base class for errors surfaced in a ``SyncTransactionResult``."""

    code: SyncErrorCode = SyncErrorCode.UNKNOWN


# ── Fail-fast errors (raised in prepare, before side effects) ───────


class LockConflictError(SyncError):
    """Another transaction holds the resource lock.

    Carries the holder's age and purpose so the caller can decide whether
    to wait or give up.
    """

    code = SyncErrorCode.LOCK_CONFLICT

    def __init__(
        self,
        resource_id: str,
        holder_age: float | None = None,
        holder_purpose: str | None = None,
    ) -> None:
        self.resource_id = resource_id
        self.holder_age = holder_age
        self.holder_purpose = holder_purpose
        msg = f"Resource {resource_id!r} is locked"
        if holder_purpose:
            msg += f" by {holder_purpose!r}"
        if holder_age is not None:
            msg += f" (held for {holder_age:.1f}s)"
        super().__init__(msg)


class DuplicateTransactionError(SyncError):
    """An identical sync is in flight or completed moments ago."""

    code = SyncErrorCode.DUPLICATE_TRANSACTION

    def __init__(self, resource_id: str, kind: str, existing_id: str) -> None:
        self.resource_id = resource_id
        self.kind = kind
        self.existing_id = existing_id
        super().__init__(
            f"Duplicate {kind} sync for {resource_id!r}: {existing_id} is "
            "in progress or completed recently"
        )


class CircuitOpenError(SyncError):
    """The circuit breaker for the resource is open."""

    code = SyncErrorCode.CIRCUIT_OPEN

    def __init__(self, key: str, retry_after: float | None = None) -> None:
        self.key = key
        self.retry_after = retry_after
        msg = f"Circuit breaker open for {key!r}"
        if retry_after is not None:
            msg += f", retry after {retry_after:.0f}s"
        super().__init__(msg)


class CapacityExceededError(SyncError):
    """The job runner reached its concurrency ceiling."""

    code = SyncErrorCode.CAPACITY_EXCEEDED

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Maximum concurrent jobs ({limit}) reached, try again later"
        )


# ── Remote platform errors ──────────────────────────────────────────


class RemoteError(SyncError):
    """Base class for errors raised by the remote platform adapter."""


class TransientRemoteError(RemoteError):
    """Network timeout, 5xx or rate limit. Safe to retry."""

    code = SyncErrorCode.TRANSIENT_REMOTE_ERROR


TransientError = TransientRemoteError


class PermanentRemoteError(RemoteError):
    """The remote platform rejected the request in a way retries cannot fix."""

    code = SyncErrorCode.PERMANENT_REMOTE_ERROR


class AuthError(PermanentRemoteError):
    """Credentials were rejected (401/403)."""


class NotFoundError(PermanentRemoteError):
    """The resource does not exist on the remote platform."""


# ── Saga errors ─────────────────────────────────────────────────────


class ConsistencyViolationError(SyncError):
    """Verification found at least one critical discrepancy."""

    code = SyncErrorCode.CONSISTENCY_VIOLATION

    def __init__(self, resource_id: str, critical: int, score: float) -> None:
        self.resource_id = resource_id
        self.critical = critical
        self.score = score
        super().__init__(
            f"{critical} critical discrepancies for {resource_id!r} "
            f"(consistency score {score:.1f})"
        )


class RollbackPartialFailureError(SyncError):
    """One or more compensations failed during rollback."""

    code = SyncErrorCode.ROLLBACK_PARTIAL_FAILURE

    def __init__(self, sync_id: str, failed: list[str]) -> None:
        self.sync_id = sync_id
        self.failed = failed
        super().__init__(
            f"Rollback of {sync_id} left {len(failed)} compensation(s) "
            f"unapplied: {', '.join(failed)}"
        )


class JobTimeoutError(SyncError):
    """A job did not resolve before its deadline."""

    code = SyncErrorCode.TIMEOUT

    def __init__(self, job_id: str, timeout: float) -> None:
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(f"Job {job_id} timed out after {timeout}s")


class StepTimeoutError(SyncError):
    """A single saga step overran its deadline."""

    code = SyncErrorCode.TIMEOUT

    def __init__(self, step: str, timeout: float) -> None:
        self.step = step
        self.timeout = timeout
        super().__init__(f"Step {step!r} timed out after {timeout}s")
