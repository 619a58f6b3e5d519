"""SyncTransaction — durable record of one attempt to reconcile a resource."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..primitives.exceptions import PhaseTransitionError, SyncErrorCode


class SyncKind(str, Enum):
    """What a sync reconciles; determines which steps and phases run."""

    FULL = "full"
    INCREMENTAL = "incremental"
    CLEANUP = "cleanup"


class SyncPhase(str, Enum):
    """Saga phase of a transaction."""

    PREPARE = "prepare"
    EXECUTE = "execute"
    VERIFY = "verify"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_PHASES = frozenset(
    {SyncPhase.PREPARE, SyncPhase.EXECUTE, SyncPhase.VERIFY, SyncPhase.COMMIT}
)
TERMINAL_PHASES = frozenset({SyncPhase.COMPLETED, SyncPhase.FAILED})

_TRANSITIONS: dict[SyncPhase, frozenset[SyncPhase]] = {
    SyncPhase.PREPARE: frozenset({SyncPhase.EXECUTE, SyncPhase.FAILED}),
    SyncPhase.EXECUTE: frozenset(
        {SyncPhase.VERIFY, SyncPhase.COMMIT, SyncPhase.ROLLBACK}
    ),
    SyncPhase.VERIFY: frozenset({SyncPhase.COMMIT, SyncPhase.ROLLBACK}),
    SyncPhase.COMMIT: frozenset({SyncPhase.COMPLETED, SyncPhase.ROLLBACK}),
    SyncPhase.ROLLBACK: frozenset({SyncPhase.FAILED}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationRecord(BaseModel):
    """Immutable entry of the operations log."""

    model_config = ConfigDict(frozen=True)

    name: str
    phase: SyncPhase
    occurred_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompensationRecord(BaseModel):
    """Compensating action registered for a completed forward step."""

    model_config = ConfigDict(frozen=True)

    name: str
    step: str
    description: str = ""


class SyncMetrics(BaseModel):
    """Counters collected while a transaction runs."""

    remote_calls: int = 0
    relational_operations: int = 0
    vector_operations: int = 0
    documents_processed: int = 0
    namespaces_affected: list[str] = Field(default_factory=list)
    stale_results_discarded: int = 0


class SyncTransaction(BaseModel):
    """
    One attempt to reconcile one resource across the remote platform, the
    relational store and the vector index.

    Phases move forward only (see ``_TRANSITIONS``); a failure in execute,
    verify or commit moves to ``rollback`` and then ``failed``. ``cleanup``
    runs after the terminal phase without replacing it.

    Compensations are only ever pushed together with the operation record of
    the step they undo (:meth:`record_step`), so rollback never runs a
    compensation for a step that did not execute.
    """

    id: str
    resource_id: str
    kind: SyncKind
    phase: SyncPhase = SyncPhase.PREPARE

    # ── Saga bookkeeping ────────────────────────────────────────────
    operations_log: list[OperationRecord] = Field(default_factory=list)
    rollback_stack: list[CompensationRecord] = Field(default_factory=list)
    rollback_log: list[str] = Field(default_factory=list)
    failed_compensations: list[str] = Field(default_factory=list)

    # ── Retry ───────────────────────────────────────────────────────
    attempt: int = 1
    max_attempts: int = 3

    # ── Ownership & timing ──────────────────────────────────────────
    lock_token: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    execution_time: float | None = None

    # ── Outcome ─────────────────────────────────────────────────────
    last_error: str | None = None
    error_code: SyncErrorCode | None = None
    consistency_score: float | None = None
    metrics: SyncMetrics = Field(default_factory=SyncMetrics)

    correlation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @staticmethod
    def generate_id(resource_id: str, now: datetime | None = None) -> str:
        """``sync-<resource>-<epoch ms>-<8 hex>``."""
        moment = now or _utcnow()
        return (
            f"sync-{resource_id}-{int(moment.timestamp() * 1000)}"
            f"-{uuid.uuid4().hex[:8]}"
        )

    @classmethod
    def create(
        cls,
        resource_id: str,
        kind: SyncKind,
        *,
        attempt: int = 1,
        max_attempts: int = 3,
        now: datetime | None = None,
        correlation_id: str | None = None,
    ) -> SyncTransaction:
        moment = now or _utcnow()
        return cls(
            id=cls.generate_id(resource_id, moment),
            resource_id=resource_id,
            kind=kind,
            attempt=attempt,
            max_attempts=max_attempts,
            started_at=moment,
            correlation_id=correlation_id,
        )

    # ── Phase ───────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def can_transition_to(self, target: SyncPhase) -> bool:
        return target in _TRANSITIONS.get(self.phase, frozenset())

    def transition_to(self, target: SyncPhase) -> None:
        if not self.can_transition_to(target):
            raise PhaseTransitionError(self.id, self.phase.value, target.value)
        self.phase = target

    # ── Operations log ──────────────────────────────────────────────

    def log(self, name: str, **metadata: Any) -> OperationRecord:
        """Append a diagnostic entry that has no compensation."""
        record = OperationRecord(name=name, phase=self.phase, metadata=metadata)
        self.operations_log.append(record)
        return record

    def record_step(
        self,
        step: str,
        compensation: CompensationRecord | None = None,
        **metadata: Any,
    ) -> OperationRecord:
        """Append a completed forward step and, optionally, its compensation."""
        record = self.log(step, **metadata)
        if compensation is not None:
            self.rollback_stack.append(compensation)
        return record

    def pop_compensation(self) -> CompensationRecord | None:
        if not self.rollback_stack:
            return None
        return self.rollback_stack.pop()

    @property
    def operation_names(self) -> list[str]:
        return [record.name for record in self.operations_log]

    def has_step(self, name: str) -> bool:
        return any(record.name == name for record in self.operations_log)

    def fail_with(self, exc: BaseException, code: SyncErrorCode) -> None:
        self.last_error = str(exc) or type(exc).__name__
        self.error_code = code

    def abandon(self, reason: str, at: datetime | None = None) -> None:
        """Mark a transaction whose process died mid-saga as failed.

        Bypasses the transition table: the in-memory rollback targets of an
        abandoned transaction are gone, so it cannot pass through rollback.
        """
        self.phase = SyncPhase.FAILED
        self.last_error = reason
        self.error_code = SyncErrorCode.TIMEOUT
        self.finished_at = at or _utcnow()
        self.rollback_stack.clear()
