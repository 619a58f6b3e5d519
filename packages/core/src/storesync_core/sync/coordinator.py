"""SyncTransactionCoordinator — phased saga across the three stores.

prepare → execute → verify → commit → completed, with any failure after
prepare moving to rollback → failed. Cleanup always runs last.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..config import SyncConfig
from ..consistency.checker import CheckLevel, ConsistencyChecker
from ..correlation import correlation_scope, get_correlation_id
from ..domain.results import SyncErrorInfo, SyncTransactionResult
from ..domain.transaction import (
    CompensationRecord,
    SyncKind,
    SyncPhase,
    SyncTransaction,
)
from ..instrumentation import get_hook_registry
from ..jobs.runner import JobRunner
from ..primitives.exceptions import (
    CapacityExceededError,
    CircuitOpenError,
    ConsistencyViolationError,
    DuplicateTransactionError,
    JobTimeoutError,
    LockConflictError,
    RollbackPartialFailureError,
    StepTimeoutError,
    SyncError,
    SyncErrorCode,
)
from ..resilience.retry import RetryPolicy, classify_error
from .options import SyncOptions

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from ..domain.snapshot import Snapshot
    from ..jobs.runner import JobContext
    from ..locking.manager import LockManager
    from ..ports.relational import IRelationalStore
    from ..ports.remote import ICredentialsProvider, IRemotePlatform
    from ..ports.transaction_log import ITransactionLog
    from ..ports.vector_index import IVectorIndex, VectorIndexStats
    from ..resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger("storesync.sync")

_VERIFY_BY_DEFAULT: dict[SyncKind, bool] = {
    SyncKind.FULL: True,
    SyncKind.INCREMENTAL: False,
    SyncKind.CLEANUP: True,
}

# Errors that return to the caller immediately from run_sync_with_retry.
_NO_RETRY_CODES = frozenset(
    {
        SyncErrorCode.DUPLICATE_TRANSACTION,
        SyncErrorCode.CIRCUIT_OPEN,
        SyncErrorCode.CAPACITY_EXCEEDED,
    }
)

_FAIL_FAST = (
    LockConflictError,
    DuplicateTransactionError,
    CircuitOpenError,
    CapacityExceededError,
)

DISCARD_REMOTE_SNAPSHOT = "discard_remote_snapshot"
RESTORE_RELATIONAL = "restore_relational"
RESTORE_VECTOR_INDEX = "restore_vector_index"


@dataclass(frozen=True)
class _RollbackTargets:
    """Pre-transaction state the compensations restore."""

    relational: Snapshot | None
    vector: VectorIndexStats | None


@dataclass
class _Saga:
    """In-memory state of one running transaction."""

    transaction: SyncTransaction
    options: SyncOptions
    job: JobContext | None
    timeout: float
    started: float = field(default_factory=time.monotonic)
    credentials: Mapping[str, Any] | None = None
    relational_before: Snapshot | None = None
    vector_before: VectorIndexStats | None = None
    remote_snapshot: Snapshot | None = None
    persisted: bool = False
    rollback_error: RollbackPartialFailureError | None = None

    @property
    def targets(self) -> _RollbackTargets:
        return _RollbackTargets(self.relational_before, self.vector_before)


class SyncTransactionCoordinator:
    """
    Makes a three-system update appear atomic.

    Every forward step in execute registers its compensation right after it
    succeeds; on failure the compensations run in reverse order and restore
    the relational store and vector index to their pre-transaction state.
    The remote platform is only ever read, never rolled back.

    Callers only see :class:`SyncTransactionResult`; all failure nuance is
    in its ``error`` field.
    """

    def __init__(
        self,
        *,
        remote: IRemotePlatform,
        relational: IRelationalStore,
        vector_index: IVectorIndex,
        transaction_log: ITransactionLog,
        lock_manager: LockManager,
        circuit_breaker: CircuitBreaker,
        job_runner: JobRunner,
        checker: ConsistencyChecker | None = None,
        credentials: ICredentialsProvider | None = None,
        retry_policy: RetryPolicy | None = None,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._remote = remote
        self._relational = relational
        self._vector = vector_index
        self._log = transaction_log
        self._locks = lock_manager
        self._breaker = circuit_breaker
        self._jobs = job_runner
        self._checker = checker or ConsistencyChecker(relational, vector_index, remote)
        self._credentials = credentials
        self.retry_policy = retry_policy or RetryPolicy()
        self.config = config or SyncConfig()
        self._clock = clock
        self._active: dict[str, SyncTransaction] = {}
        self._by_job: dict[str, SyncTransaction] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._compensations: dict[
            str, Callable[[_Saga, _RollbackTargets], Awaitable[None]]
        ] = {
            DISCARD_REMOTE_SNAPSHOT: self._discard_remote_snapshot,
            RESTORE_RELATIONAL: self._restore_relational,
            RESTORE_VECTOR_INDEX: self._restore_vector_index,
        }

    # ── Public interface ─────────────────────────────────────────────

    async def run_sync(
        self,
        resource_id: str,
        kind: SyncKind | str = SyncKind.FULL,
        options: SyncOptions | None = None,
    ) -> SyncTransactionResult:
        """Run one saga through the job runner and wait for its result."""
        opts = options or SyncOptions()
        max_attempts = opts.max_attempts or self.retry_policy.max_attempts
        return await self._run_attempt(
            resource_id, SyncKind(kind), opts, attempt=1, max_attempts=max_attempts
        )

    async def run_sync_with_retry(
        self,
        resource_id: str,
        kind: SyncKind | str = SyncKind.FULL,
        options: SyncOptions | None = None,
    ) -> SyncTransactionResult:
        """
        Re-run the whole saga from prepare while the error is retryable.

        A busy lock waits with backoff without consuming an attempt, up to
        ``options.max_lock_waits`` times. Duplicate, circuit-open and
        capacity errors return immediately.
        """
        opts = options or SyncOptions()
        sync_kind = SyncKind(kind)
        policy = self.retry_policy.with_overrides(
            max_attempts=opts.max_attempts, base_delay=opts.retry_delay
        )
        attempt = 1
        lock_waits = 0

        while True:
            result = await self._run_attempt(
                resource_id, sync_kind, opts, attempt, policy.max_attempts
            )
            if result.success:
                return result

            code = result.error_code
            if code is SyncErrorCode.LOCK_CONFLICT:
                if lock_waits >= opts.max_lock_waits:
                    return result
                delay = policy.next_delay(lock_waits)
                lock_waits += 1
                logger.info(
                    "%s is locked, waiting %.2fs before trying again (%d/%d)",
                    resource_id,
                    delay,
                    lock_waits,
                    opts.max_lock_waits,
                )
                await asyncio.sleep(delay)
                continue

            if code in _NO_RETRY_CODES or not result.retryable:
                return result
            if attempt >= policy.max_attempts:
                logger.error(
                    "%s sync of %s failed after %d attempts: %s",
                    sync_kind.value,
                    resource_id,
                    attempt,
                    result.error.message if result.error else "unknown error",
                )
                return result

            delay = policy.next_delay(attempt - 1)
            logger.warning(
                "%s sync of %s failed on attempt %d/%d (%s), retrying in %.2fs",
                sync_kind.value,
                resource_id,
                attempt,
                policy.max_attempts,
                code.value if code else "unknown",
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1

    def schedule_sync(
        self,
        resource_id: str,
        kind: SyncKind | str = SyncKind.INCREMENTAL,
        delay: float = 0.0,
        options: SyncOptions | None = None,
    ) -> asyncio.Task[Any]:
        """Run a sync after *delay* seconds as a job of the job runner."""
        opts = options or SyncOptions()
        sync_kind = SyncKind(kind)
        max_attempts = opts.max_attempts or self.retry_policy.max_attempts
        job_id = opts.job_id or JobRunner.make_job_id(
            f"scheduled-{sync_kind.value}", resource_id, self._clock() + delay
        )
        timeout = opts.timeout or self.config.job_timeout
        return self._jobs.submit_later(
            job_id,
            lambda job: self._execute_saga(
                resource_id, sync_kind, opts, 1, max_attempts, job, timeout
            ),
            delay,
            timeout=timeout,
            job_type=f"sync.{sync_kind.value}",
            resource_id=resource_id,
        )

    async def get_transaction(self, sync_id: str) -> SyncTransaction | None:
        active = self._active.get(sync_id)
        if active is not None:
            return active.model_copy(deep=True)
        return await self._log.get(sync_id)

    def active_transactions(self) -> list[SyncTransaction]:
        return [tx.model_copy(deep=True) for tx in self._active.values()]

    async def get_queue_stats(self) -> dict[str, float]:
        stats = await self._jobs.queue_stats()
        return {
            "running": stats.running,
            "completed": stats.completed,
            "failed": stats.failed,
            "total": stats.total,
            "avg_execution_time": stats.avg_execution_time,
        }

    async def recover_abandoned(self, limit: int = 10) -> int:
        """
        Fail transactions stuck in an active phase and roll them forward.

        A transaction counts as abandoned when it started more than
        ``config.recovery_grace_period`` ago, is not running in this
        process, and its lock is no longer live. Its rollback targets died
        with its process, so it is marked failed and a forced full sync
        rewrites both stores from the remote platform.
        """
        cutoff = self._now() - timedelta(seconds=self.config.recovery_grace_period)
        recovered = 0
        for tx in await self._log.find_stuck(cutoff, limit):
            if tx.id in self._active:
                continue
            holder = await self._locks.get_holder(tx.resource_id)
            if holder is not None and holder.owner_id == tx.id:
                continue

            previous_phase = tx.phase
            tx.abandon(
                f"abandoned in {previous_phase.value} phase; no live lock after "
                f"{self.config.recovery_grace_period:.0f}s",
                at=self._now(),
            )
            await self._log.update(tx)
            logger.warning(
                "Transaction %s for %s abandoned in %s phase, marked failed",
                tx.id,
                tx.resource_id,
                previous_phase.value,
            )
            recovered += 1

            if holder is not None:
                # Someone else is syncing this resource right now.
                continue
            result = await self.run_sync(
                tx.resource_id,
                SyncKind.FULL,
                SyncOptions(force=True, purpose=f"recovery of {tx.id}"),
            )
            if result.success:
                logger.info("Recovered %s with sync %s", tx.resource_id, result.sync_id)
            else:
                logger.error(
                    "Recovery sync of %s failed: %s",
                    tx.resource_id,
                    result.error.message if result.error else "unknown error",
                )
        return recovered

    # ── Job submission ───────────────────────────────────────────────

    async def _run_attempt(
        self,
        resource_id: str,
        kind: SyncKind,
        options: SyncOptions,
        attempt: int,
        max_attempts: int,
    ) -> SyncTransactionResult:
        job_id = options.job_id or JobRunner.make_job_id(
            f"sync-{kind.value}", resource_id, self._clock()
        )
        timeout = options.timeout or self.config.job_timeout
        try:
            job = await self._jobs.submit(
                job_id,
                lambda ctx: self._execute_saga(
                    resource_id, kind, options, attempt, max_attempts, ctx, timeout
                ),
                timeout=timeout,
                job_type=f"sync.{kind.value}",
                resource_id=resource_id,
            )
        except CapacityExceededError as exc:
            return SyncTransactionResult(
                success=False,
                resource_id=resource_id,
                kind=kind,
                phase=SyncPhase.FAILED,
                attempt=attempt,
                error=SyncErrorInfo.from_exception(exc, retryable=False),
            )

        if isinstance(job.result, SyncTransactionResult):
            return job.result

        # The saga did not produce a result: it timed out or crashed.
        tx = self._by_job.get(job_id)
        try:
            code = SyncErrorCode(job.error_code or SyncErrorCode.UNKNOWN.value)
        except ValueError:
            code = SyncErrorCode.UNKNOWN
        return SyncTransactionResult(
            success=False,
            sync_id=tx.id if tx is not None else None,
            resource_id=resource_id,
            kind=kind,
            phase=tx.phase if tx is not None else SyncPhase.FAILED,
            attempt=attempt,
            operations=tx.operation_names if tx is not None else [],
            error=SyncErrorInfo(
                code=code,
                message=job.error or "job failed",
                retryable=code is SyncErrorCode.TIMEOUT,
            ),
            execution_time=job.execution_time or 0.0,
        )

    async def _execute_saga(
        self,
        resource_id: str,
        kind: SyncKind,
        options: SyncOptions,
        attempt: int,
        max_attempts: int,
        job: JobContext | None,
        timeout: float,
    ) -> SyncTransactionResult:
        tx = SyncTransaction.create(
            resource_id,
            kind,
            attempt=attempt,
            max_attempts=max_attempts,
            now=self._now(),
            correlation_id=get_correlation_id(),
        )
        if tx.correlation_id is None:
            tx.correlation_id = tx.id
        saga = _Saga(transaction=tx, options=options, job=job, timeout=timeout)

        with correlation_scope(tx.correlation_id):
            registry = get_hook_registry()
            result: SyncTransactionResult = await registry.execute_all(
                f"sync.run.{kind.value}",
                {
                    "sync.id": tx.id,
                    "sync.resource_id": resource_id,
                    "sync.attempt": attempt,
                    "correlation_id": tx.correlation_id,
                },
                lambda: self._run_saga(saga),
            )
        return result

    # ── Saga ─────────────────────────────────────────────────────────

    async def _run_saga(self, saga: _Saga) -> SyncTransactionResult:
        tx = saga.transaction
        self._active[tx.id] = tx
        if saga.job is not None:
            self._by_job[saga.job.job_id] = tx
        logger.info(
            "Starting %s sync %s for %s (attempt %d/%d)",
            tx.kind.value,
            tx.id,
            tx.resource_id,
            tx.attempt,
            tx.max_attempts,
        )

        error: Exception | None = None
        try:
            try:
                await self._prepare(saga)
            except Exception as exc:  # noqa: BLE001
                error = exc
                self._fail_prepare(saga, exc)
            else:
                try:
                    await self._execute(saga)
                    if self._should_verify(saga):
                        await self._verify(saga)
                    await self._commit(saga)
                except Exception as exc:  # noqa: BLE001
                    error = exc
                    await self._handle_failure(saga, exc)
                else:
                    await self._report_to_breaker(tx.resource_id, success=True)
        finally:
            await self._cleanup(saga)

        result = self._build_result(saga, error)
        if result.success:
            logger.info(
                "Sync %s for %s completed in %.2fs",
                tx.id,
                tx.resource_id,
                result.execution_time,
            )
        return result

    # ── prepare ──

    async def _prepare(self, saga: _Saga) -> None:
        tx = saga.transaction
        opts = saga.options

        if opts.force:
            tx.log("idempotency_check_skipped")
        else:
            await self._check_duplicate(tx)
            tx.log("idempotency_check_passed")

        acquisition = await self._locks.acquire(
            tx.resource_id,
            purpose=opts.purpose or f"{tx.kind.value} sync {tx.id}",
            ttl=opts.lock_ttl or self.config.lock_ttl,
            owner_id=tx.id,
        )
        if not acquisition.granted:
            raise LockConflictError(
                tx.resource_id, acquisition.holder_age, acquisition.holder_purpose
            )
        tx.lock_token = acquisition.token
        tx.log("lock_acquired", reclaimed=acquisition.reclaimed)

        if not await self._breaker.allow(tx.resource_id):
            raise CircuitOpenError(
                tx.resource_id, await self._breaker.retry_after(tx.resource_id)
            )
        tx.log("circuit_breaker_passed")

        if self._credentials is not None and opts.credentials is None:
            saga.credentials = await self._credentials.get_credentials(tx.resource_id)
        else:
            saga.credentials = opts.credentials

        saga.relational_before = await self._relational.read_current(tx.resource_id)
        saga.vector_before = await self._vector.stats(tx.resource_id)
        tx.metrics.relational_operations += 1
        tx.metrics.vector_operations += 1
        tx.log(
            "snapshots_created",
            relational=saga.relational_before is not None,
            vector_documents=saga.vector_before.total_documents,
        )

        await self._log.insert(tx)
        saga.persisted = True

    async def _check_duplicate(self, tx: SyncTransaction) -> None:
        now = self._now()
        window = timedelta(seconds=self.config.idempotency_window)
        in_flight_window = timedelta(
            seconds=max(self.config.idempotency_window, self.config.lock_ttl)
        )
        for record in await self._log.query_recent(
            tx.resource_id, tx.kind, now - in_flight_window
        ):
            if record.id == tx.id:
                continue
            in_flight = record.is_active or record.phase is SyncPhase.ROLLBACK
            finished = record.finished_at or record.started_at
            completed_recently = (
                record.phase is SyncPhase.COMPLETED and finished >= now - window
            )
            if in_flight or completed_recently:
                raise DuplicateTransactionError(tx.resource_id, tx.kind.value, record.id)

    def _fail_prepare(self, saga: _Saga, exc: Exception) -> None:
        tx = saga.transaction
        code = exc.code if isinstance(exc, SyncError) else SyncErrorCode.UNKNOWN
        tx.fail_with(exc, code)
        tx.transition_to(SyncPhase.FAILED)
        if isinstance(exc, _FAIL_FAST):
            logger.info("Sync %s for %s rejected: %s", tx.id, tx.resource_id, exc)
        else:
            logger.error(
                "Sync %s for %s failed in prepare: %s",
                tx.id,
                tx.resource_id,
                exc,
                exc_info=exc,
            )

    # ── execute ──

    async def _execute(self, saga: _Saga) -> None:
        tx = saga.transaction
        opts = saga.options
        rid = tx.resource_id

        tx.transition_to(SyncPhase.EXECUTE)
        await self._persist(saga)

        self._check_deadline(saga)
        snapshot: Snapshot = await self._run_step(
            saga,
            "remote_fetch",
            lambda: self._remote.fetch_snapshot(rid, saga.credentials),
            CompensationRecord(
                name=DISCARD_REMOTE_SNAPSHOT,
                step="remote_fetch",
                description="drop the fetched snapshot; the remote is never rolled back",
            ),
        )
        saga.remote_snapshot = snapshot
        tx.metrics.remote_calls += 1

        if (
            tx.kind is SyncKind.INCREMENTAL
            and saga.relational_before is not None
            and saga.relational_before.content_hash() == snapshot.content_hash()
        ):
            tx.log("no_changes_detected")
            return

        if tx.kind is SyncKind.CLEANUP and opts.include_vectors:
            self._check_deadline(saga)
            deleted = await self._run_step(
                saga,
                "vector_purge",
                lambda: self._vector.delete_all(rid),
                self._vector_compensation("vector_purge"),
            )
            tx.metrics.vector_operations += 1
            self._note_namespaces(tx, deleted.namespaces_deleted)

        if opts.include_database:
            self._check_deadline(saga)
            await self._run_step(
                saga,
                "relational_write",
                lambda: self._relational.upsert(rid, snapshot),
                CompensationRecord(
                    name=RESTORE_RELATIONAL,
                    step="relational_write",
                    description="restore the pre-transaction relational snapshot",
                ),
            )
            tx.metrics.relational_operations += 1

        if opts.include_vectors:
            self._check_deadline(saga)
            source = await self._relational.read_current(rid)
            tx.metrics.relational_operations += 1
            if source is None:
                tx.log("vector_reindex_skipped", reason="no relational data")
                return
            written = await self._run_step(
                saga,
                "vector_reindex",
                lambda: self._vector.reindex(rid, source),
                self._vector_compensation("vector_reindex"),
            )
            tx.metrics.vector_operations += 1
            tx.metrics.documents_processed += written.documents_written
            self._note_namespaces(tx, written.namespaces)

    @staticmethod
    def _vector_compensation(step: str) -> CompensationRecord:
        return CompensationRecord(
            name=RESTORE_VECTOR_INDEX,
            step=step,
            description="rebuild the vector index from the pre-transaction snapshot",
        )

    @staticmethod
    def _note_namespaces(tx: SyncTransaction, namespaces: list[str]) -> None:
        for ns in namespaces:
            if ns not in tx.metrics.namespaces_affected:
                tx.metrics.namespaces_affected.append(ns)

    async def _run_step(
        self,
        saga: _Saga,
        step: str,
        operation: Callable[[], Awaitable[Any]],
        compensation: CompensationRecord | None = None,
    ) -> Any:
        """Run one forward step and record it with its compensation.

        With a step timeout configured, an overrunning step is assumed to
        have possibly applied: its compensation is registered anyway and
        its eventual result is discarded.
        """
        tx = saga.transaction
        timeout = self.config.step_timeout
        if timeout is None:
            value = await operation()
            tx.record_step(step, compensation)
            return value

        task: asyncio.Task[Any] = asyncio.ensure_future(operation())
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            tx.record_step(f"{step}:timed_out", compensation)
            self._background.add(task)
            task.add_done_callback(
                functools.partial(
                    self._on_late_step, saga, step, compensation, saga.targets
                )
            )
            raise StepTimeoutError(step, timeout)
        value = task.result()
        tx.record_step(step, compensation)
        return value

    def _on_late_step(
        self,
        saga: _Saga,
        step: str,
        compensation: CompensationRecord | None,
        targets: _RollbackTargets,
        task: asyncio.Task[Any],
    ) -> None:
        self._background.discard(task)
        tx = saga.transaction
        if task.cancelled():
            return
        exc = task.exception()
        tx.metrics.stale_results_discarded += 1
        logger.warning(
            "Discarding late %s of step %s for %s (transaction %s is %s)",
            "failure" if exc is not None else "result",
            step,
            tx.resource_id,
            tx.id,
            tx.phase.value,
        )
        if exc is not None or compensation is None:
            return
        if compensation.name in tx.rollback_log:
            # Rollback already ran; undo the write that landed after it.
            reapply = asyncio.ensure_future(
                self._reapply_compensation(saga, compensation, targets)
            )
            self._background.add(reapply)
            reapply.add_done_callback(self._background.discard)

    async def _reapply_compensation(
        self,
        saga: _Saga,
        compensation: CompensationRecord,
        targets: _RollbackTargets,
    ) -> None:
        """Undo a write that landed after its transaction rolled back.

        Runs under a fresh lock and only while no later sync has committed:
        rolling back over a newer commit would destroy it, so that case is
        left for a consistency check and resync.
        """
        tx = saga.transaction
        rid = tx.resource_id
        acquisition = await self._locks.acquire(
            rid,
            purpose=f"late-result repair of {tx.id}",
            owner_id=f"{tx.id}:repair",
        )
        if not acquisition.granted or acquisition.token is None:
            logger.warning(
                "Not re-applying %s for %s: resource is locked by %s; "
                "run a consistency check and resync",
                compensation.name,
                rid,
                acquisition.holder_purpose or "another sync",
            )
            return
        try:
            last_synced = await self._relational.get_last_synced_at(rid)
            if last_synced is not None and last_synced >= tx.started_at:
                logger.warning(
                    "Not re-applying %s for %s: a later sync committed at %s; "
                    "run a consistency check and resync",
                    compensation.name,
                    rid,
                    last_synced.isoformat(),
                )
                return
            await self._compensations[compensation.name](saga, targets)
        except Exception:
            logger.exception(
                "Re-applying %s for %s failed after a late step result",
                compensation.name,
                rid,
            )
        finally:
            await self._locks.release(rid, acquisition.token)

    def _check_deadline(self, saga: _Saga) -> None:
        if saga.job is not None and saga.job.expired:
            raise JobTimeoutError(saga.job.job_id, saga.timeout)

    # ── verify ──

    def _should_verify(self, saga: _Saga) -> bool:
        explicit = saga.options.consistency_checks
        if explicit is not None:
            return explicit
        return _VERIFY_BY_DEFAULT[saga.transaction.kind]

    async def _verify(self, saga: _Saga) -> None:
        tx = saga.transaction
        opts = saga.options
        tx.transition_to(SyncPhase.VERIFY)
        await self._persist(saga)
        self._check_deadline(saga)

        report = await self._checker.check(
            tx.resource_id,
            opts.verify_fields or self.config.verify_fields,
            CheckLevel(opts.consistency_level or self.config.consistency_level),
            reference=saga.remote_snapshot if opts.include_database else None,
            credentials=saga.credentials,
            include_vector=opts.include_vectors,
        )
        tx.consistency_score = report.score
        tx.log(
            "consistency_verified",
            score=report.score,
            discrepancies=len(report.discrepancies),
        )
        critical = report.critical
        if critical:
            raise ConsistencyViolationError(tx.resource_id, len(critical), report.score)
        for discrepancy in report.high:
            logger.warning(
                "High-severity discrepancy for %s: %s expected %r, got %r (%s)",
                tx.resource_id,
                discrepancy.field,
                discrepancy.expected,
                discrepancy.actual,
                "/".join(discrepancy.systems),
            )

    # ── commit ──

    async def _commit(self, saga: _Saga) -> None:
        tx = saga.transaction
        tx.transition_to(SyncPhase.COMMIT)
        await self._persist(saga)
        await self._relational.mark_synced(tx.resource_id, self._now())
        tx.metrics.relational_operations += 1
        tx.log("sync_marker_updated")
        tx.transition_to(SyncPhase.COMPLETED)

    # ── rollback ──

    async def _handle_failure(self, saga: _Saga, exc: Exception) -> None:
        tx = saga.transaction
        code = exc.code if isinstance(exc, SyncError) else SyncErrorCode.UNKNOWN
        tx.fail_with(exc, code)
        logger.error(
            "Sync %s for %s failed in %s phase: %s",
            tx.id,
            tx.resource_id,
            tx.phase.value,
            exc,
            exc_info=not isinstance(exc, SyncError),
        )
        if not isinstance(exc, ConsistencyViolationError):
            await self._report_to_breaker(tx.resource_id, success=False)
        await self._rollback(saga)

    async def _rollback(self, saga: _Saga) -> None:
        tx = saga.transaction
        tx.transition_to(SyncPhase.ROLLBACK)
        await self._persist_quietly(saga)
        targets = saga.targets

        compensation = tx.pop_compensation()
        while compensation is not None:
            try:
                await self._compensations[compensation.name](saga, targets)
                tx.rollback_log.append(compensation.name)
                logger.info(
                    "Compensated %s of %s (%s)",
                    compensation.step,
                    tx.id,
                    compensation.name,
                )
            except Exception as comp_exc:  # noqa: BLE001
                tx.failed_compensations.append(compensation.name)
                logger.error(
                    "Compensation %s for step %s of %s failed: %s",
                    compensation.name,
                    compensation.step,
                    tx.id,
                    comp_exc,
                    exc_info=comp_exc,
                )
            compensation = tx.pop_compensation()

        if tx.failed_compensations:
            partial = RollbackPartialFailureError(tx.id, list(tx.failed_compensations))
            saga.rollback_error = partial
            tx.last_error = f"{partial}; caused by: {tx.last_error}"
            tx.error_code = partial.code
            logger.critical(
                "%s. %s may be inconsistent; run a consistency check and repair",
                partial,
                tx.resource_id,
            )
        tx.transition_to(SyncPhase.FAILED)

    async def _discard_remote_snapshot(
        self, saga: _Saga, targets: _RollbackTargets
    ) -> None:
        saga.remote_snapshot = None

    async def _restore_relational(self, saga: _Saga, targets: _RollbackTargets) -> None:
        rid = saga.transaction.resource_id
        if targets.relational is not None:
            await self._relational.upsert(rid, targets.relational)
        else:
            await self._relational.delete(rid)

    async def _restore_vector_index(
        self, saga: _Saga, targets: _RollbackTargets
    ) -> None:
        rid = saga.transaction.resource_id
        await self._vector.delete_all(rid)
        had_documents = targets.vector is not None and targets.vector.total_documents > 0
        if had_documents and targets.relational is not None:
            await self._vector.reindex(rid, targets.relational)

    # ── cleanup ──

    async def _cleanup(self, saga: _Saga) -> None:
        tx = saga.transaction
        if tx.lock_token is not None:
            try:
                released = await self._locks.release(tx.resource_id, tx.lock_token)
                if not released.released:
                    logger.debug(
                        "Lock on %s no longer held by %s, nothing to release",
                        tx.resource_id,
                        tx.id,
                    )
            except Exception:
                logger.exception("Failed to release lock on %s", tx.resource_id)

        saga.relational_before = None
        saga.vector_before = None
        saga.remote_snapshot = None

        tx.finished_at = self._now()
        tx.execution_time = time.monotonic() - saga.started
        tx.log("cleanup_completed", phase=tx.phase.value)
        try:
            if saga.persisted:
                await self._log.update(tx)
            else:
                await self._log.insert(tx)
                saga.persisted = True
        except Exception:
            logger.exception("Failed to finalize transaction record %s", tx.id)

        self._active.pop(tx.id, None)
        if saga.job is not None and self._by_job.get(saga.job.job_id) is tx:
            del self._by_job[saga.job.job_id]

    # ── Helpers ──────────────────────────────────────────────────────

    async def _persist(self, saga: _Saga) -> None:
        if saga.persisted:
            await self._log.update(saga.transaction)

    async def _persist_quietly(self, saga: _Saga) -> None:
        try:
            await self._persist(saga)
        except Exception:
            logger.exception(
                "Failed to persist phase of transaction %s", saga.transaction.id
            )

    async def _report_to_breaker(self, key: str, *, success: bool) -> None:
        try:
            if success:
                await self._breaker.record_success(key)
            else:
                await self._breaker.record_failure(key)
        except Exception:
            logger.exception("Failed to update circuit breaker for %s", key)

    def _build_result(
        self, saga: _Saga, error: Exception | None
    ) -> SyncTransactionResult:
        tx = saga.transaction
        info: SyncErrorInfo | None = None
        if error is not None:
            retryable = self.retry_policy.is_retryable(classify_error(error))
            info = SyncErrorInfo.from_exception(error, retryable=retryable)
            if saga.rollback_error is not None:
                info = SyncErrorInfo.from_exception(
                    saga.rollback_error, retryable=False, cause=info
                )
        return SyncTransactionResult(
            success=tx.phase is SyncPhase.COMPLETED,
            sync_id=tx.id,
            resource_id=tx.resource_id,
            kind=tx.kind,
            phase=tx.phase,
            attempt=tx.attempt,
            operations=tx.operation_names,
            rollback_operations=list(tx.rollback_log),
            error=info,
            execution_time=tx.execution_time or 0.0,
            consistency_score=tx.consistency_score,
            metrics=tx.metrics.model_copy(deep=True),
        )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)
