"""bootstrap_sync — one-call wiring of the sync services."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .adapters.memory import (
    InMemoryCircuitBreakerStore,
    InMemoryJobHistory,
    InMemoryLockStore,
    InMemoryRelationalStore,
    InMemoryTransactionLog,
    InMemoryVectorIndex,
)
from .config import CircuitBreakerConfig, SyncConfig
from .consistency.checker import ConsistencyChecker
from .jobs.runner import JobRunner
from .locking.manager import LockManager
from .resilience.circuit_breaker import CircuitBreaker
from .resilience.retry import RetryPolicy
from .sync.coordinator import SyncTransactionCoordinator

if TYPE_CHECKING:
    from .ports.circuit_breaker import ICircuitBreakerStore
    from .ports.job_history import IJobHistoryStore
    from .ports.locking import ILockStore
    from .ports.relational import IRelationalStore
    from .ports.remote import ICredentialsProvider, IRemotePlatform
    from .ports.transaction_log import ITransactionLog
    from .ports.vector_index import IVectorIndex
    from .sync.recovery import SyncRecoveryWorker
    from .sync.scheduler import SyncScheduler

logger = logging.getLogger("storesync.sync")


class SyncBootstrapResult:
    """Container returned by :func:`bootstrap_sync`.

    Attributes:
        coordinator: The wired :class:`SyncTransactionCoordinator`.
        lock_manager: Shared :class:`LockManager`.
        circuit_breaker: Shared :class:`CircuitBreaker`.
        job_runner: Shared :class:`JobRunner`.
        checker: :class:`ConsistencyChecker` for audits outside a sync.
        recovery_worker: Optional :class:`SyncRecoveryWorker`.
        scheduler: Optional :class:`SyncScheduler`.
    """

    def __init__(
        self,
        coordinator: SyncTransactionCoordinator,
        lock_manager: LockManager,
        circuit_breaker: CircuitBreaker,
        job_runner: JobRunner,
        checker: ConsistencyChecker,
        recovery_worker: SyncRecoveryWorker | None = None,
        scheduler: SyncScheduler | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.lock_manager = lock_manager
        self.circuit_breaker = circuit_breaker
        self.job_runner = job_runner
        self.checker = checker
        self.recovery_worker = recovery_worker
        self.scheduler = scheduler

    async def start(self) -> None:
        for worker in (self.recovery_worker, self.scheduler):
            if worker is not None:
                await worker.start()

    async def stop(self) -> None:
        for worker in (self.scheduler, self.recovery_worker):
            if worker is not None:
                await worker.stop()
        await self.job_runner.shutdown()


def bootstrap_sync(
    *,
    remote: IRemotePlatform,
    relational: IRelationalStore | None = None,
    vector_index: IVectorIndex | None = None,
    transaction_log: ITransactionLog | None = None,
    lock_store: ILockStore | None = None,
    breaker_store: ICircuitBreakerStore | None = None,
    job_history: IJobHistoryStore | None = None,
    credentials: ICredentialsProvider | None = None,
    config: SyncConfig | None = None,
    breaker_config: CircuitBreakerConfig | None = None,
    retry_policy: RetryPolicy | None = None,
    recovery_interval: float | None = None,
    schedule_interval: float | None = None,
) -> SyncBootstrapResult:
    """Wire the lock manager, circuit breaker, job runner and coordinator.

    Every store defaults to its in-memory implementation. The lock store
    and breaker store are the process-wide shared state: with the
    in-memory defaults, mutual exclusion and failure counting only hold
    inside this process, which is logged as a warning. Pass shared stores
    (e.g. from ``storesync_redis``) when running more than one instance.

    Parameters
    ----------
    remote:
        Remote platform adapter.
    recovery_interval:
        If set, creates a :class:`SyncRecoveryWorker` polling at this
        interval. The caller must ``await result.start()``.
    schedule_interval:
        If set, creates a :class:`SyncScheduler` with this interval.

    Example
    -------
    ::

        result = bootstrap_sync(
            remote=platform,
            relational=SQLAlchemyRelationalStore(session_factory),
            transaction_log=SQLAlchemyTransactionLog(session_factory),
            lock_store=RedisLockStore(redis),
            breaker_store=RedisCircuitBreakerStore(redis),
            recovery_interval=300,
        )
        await result.start()
        outcome = await result.coordinator.run_sync_with_retry("store-42")
    """
    cfg = config or SyncConfig()

    if lock_store is None or breaker_store is None:
        logger.warning(
            "Using in-memory lock/circuit-breaker stores: mutual exclusion "
            "is per process only"
        )
    relational_store = relational or InMemoryRelationalStore()
    vectors = vector_index or InMemoryVectorIndex()

    lock_manager = LockManager(lock_store or InMemoryLockStore(), default_ttl=cfg.lock_ttl)
    circuit_breaker = CircuitBreaker(
        breaker_store or InMemoryCircuitBreakerStore(), breaker_config
    )
    job_runner = JobRunner(
        job_history or InMemoryJobHistory(cfg.job_history_size),
        max_concurrent=cfg.max_concurrent_jobs,
        default_timeout=cfg.job_timeout,
    )
    checker = ConsistencyChecker(relational_store, vectors, remote)
    coordinator = SyncTransactionCoordinator(
        remote=remote,
        relational=relational_store,
        vector_index=vectors,
        transaction_log=transaction_log or InMemoryTransactionLog(),
        lock_manager=lock_manager,
        circuit_breaker=circuit_breaker,
        job_runner=job_runner,
        checker=checker,
        credentials=credentials,
        retry_policy=retry_policy,
        config=cfg,
    )

    recovery_worker: SyncRecoveryWorker | None = None
    if recovery_interval is not None:
        from .sync.recovery import SyncRecoveryWorker

        recovery_worker = SyncRecoveryWorker(
            coordinator, poll_interval=float(recovery_interval)
        )

    scheduler: SyncScheduler | None = None
    if schedule_interval is not None:
        from .sync.scheduler import SyncScheduler

        scheduler = SyncScheduler(coordinator, interval=float(schedule_interval))

    logger.info(
        "Sync bootstrap complete: max_concurrent_jobs=%d, recovery=%s",
        cfg.max_concurrent_jobs,
        f"{recovery_interval}s" if recovery_interval else "disabled",
    )
    return SyncBootstrapResult(
        coordinator=coordinator,
        lock_manager=lock_manager,
        circuit_breaker=circuit_breaker,
        job_runner=job_runner,
        checker=checker,
        recovery_worker=recovery_worker,
        scheduler=scheduler,
    )


__all__ = ["SyncBootstrapResult", "bootstrap_sync"]
