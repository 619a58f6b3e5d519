"""JobRunner — bounded, deduplicated, deadline-wrapped async jobs."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..correlation import get_correlation_id
from ..domain.job import JobResult, JobStatus
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import (
    CapacityExceededError,
    JobTimeoutError,
    SyncError,
    SyncErrorCode,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from ..ports.job_history import IJobHistoryStore

    JobWork = Callable[["JobContext"], Coroutine[Any, Any, Any]]

logger = logging.getLogger("storesync.jobs")


@dataclass
class JobContext:
    """Handed to job work so it can notice its own deadline.

    The runner never cancels work; long-running work should check
    :attr:`expired` between steps and stop on its own.
    """

    job_id: str
    deadline: float
    timed_out: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def expired(self) -> bool:
        return self.timed_out.is_set() or time.monotonic() >= self.deadline

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())


@dataclass(frozen=True)
class QueueStats:
    running: int
    completed: int
    failed: int
    total: int
    avg_execution_time: float


@dataclass
class _RunningJob:
    task: asyncio.Task[JobResult]
    job_type: str
    resource_id: str | None
    started_at: float


class JobRunner:
    """
    Runs async work units with three guarantees:

    * **Idempotency by key** — submitting a job id that is still running
      attaches the caller to the in-flight execution; the work runs once
      and every caller receives the same :class:`JobResult`.
    * **Backpressure** — once ``max_concurrent`` jobs are running, new
      submissions fail fast with :class:`CapacityExceededError`.
    * **Deadline** — a job unresolved after its timeout is reported as
      failed. The work itself keeps running (no preemption); its late
      outcome is logged and discarded.

    Finished results are kept in a bounded :class:`IJobHistoryStore`.
    In-flight deduplication is per runner instance.
    """

    def __init__(
        self,
        history: IJobHistoryStore,
        max_concurrent: int = 5,
        default_timeout: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._history = history
        self.max_concurrent = max_concurrent
        self.default_timeout = default_timeout
        self._clock = clock
        self._running: dict[str, _RunningJob] = {}
        self._late: set[asyncio.Task[Any]] = set()
        self._scheduled: set[asyncio.Task[JobResult | None]] = set()

    @staticmethod
    def make_job_id(job_type: str, resource_id: str, now: float | None = None) -> str:
        moment = time.time() if now is None else now
        return f"{job_type}-{resource_id}-{int(moment * 1000)}"

    async def submit(
        self,
        job_id: str,
        work: JobWork,
        *,
        timeout: float | None = None,
        job_type: str = "job",
        resource_id: str | None = None,
    ) -> JobResult:
        registry = get_hook_registry()
        result: JobResult = await registry.execute_all(
            f"job.submit.{job_type}",
            {
                "job.id": job_id,
                "job.resource_id": resource_id,
                "correlation_id": get_correlation_id(),
            },
            lambda: self._submit_internal(job_id, work, timeout, job_type, resource_id),
        )
        return result

    async def _submit_internal(
        self,
        job_id: str,
        work: JobWork,
        timeout: float | None,
        job_type: str,
        resource_id: str | None,
    ) -> JobResult:
        existing = self._running.get(job_id)
        if existing is not None:
            logger.info("Job %s already running, attaching to it", job_id)
            return await asyncio.shield(existing.task)

        if len(self._running) >= self.max_concurrent:
            logger.warning(
                "Rejecting job %s: %d/%d jobs running",
                job_id,
                len(self._running),
                self.max_concurrent,
            )
            raise CapacityExceededError(self.max_concurrent)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        started_at = self._clock()
        task = asyncio.create_task(
            self._supervise(
                job_id, work, effective_timeout, job_type, resource_id, started_at
            ),
            name=f"job:{job_id}",
        )
        self._running[job_id] = _RunningJob(task, job_type, resource_id, started_at)
        logger.debug(
            "Job %s started (%d/%d running)",
            job_id,
            len(self._running),
            self.max_concurrent,
        )
        return await asyncio.shield(task)

    async def _supervise(
        self,
        job_id: str,
        work: JobWork,
        timeout: float,
        job_type: str,
        resource_id: str | None,
        started_at: float,
    ) -> JobResult:
        started = time.monotonic()
        context = JobContext(job_id=job_id, deadline=started + timeout)
        work_task: asyncio.Task[Any] = asyncio.create_task(work(context))
        try:
            done, _ = await asyncio.wait({work_task}, timeout=timeout)
            elapsed = time.monotonic() - started
            common: dict[str, Any] = {
                "job_id": job_id,
                "job_type": job_type,
                "resource_id": resource_id,
                "started_at": started_at,
                "finished_at": self._clock(),
                "execution_time": elapsed,
            }
            if not done:
                context.timed_out.set()
                self._late.add(work_task)
                work_task.add_done_callback(
                    functools.partial(self._on_late_completion, job_id)
                )
                error = JobTimeoutError(job_id, timeout)
                logger.warning(
                    "Job %s timed out after %.1fs; its work keeps running and "
                    "its outcome will be discarded",
                    job_id,
                    timeout,
                )
                result = JobResult(
                    status=JobStatus.FAILED,
                    error=str(error),
                    error_code=error.code.value,
                    **common,
                )
            else:
                result = self._outcome(work_task, common)
            await self._record(result)
            return result
        except asyncio.CancelledError:
            work_task.cancel()
            raise
        finally:
            current = self._running.get(job_id)
            if current is not None and current.task is asyncio.current_task():
                del self._running[job_id]

    @staticmethod
    def _outcome(work_task: asyncio.Task[Any], common: dict[str, Any]) -> JobResult:
        if work_task.cancelled():
            return JobResult(
                status=JobStatus.FAILED, error="cancelled", **common
            )
        exc = work_task.exception()
        if exc is not None:
            code = exc.code if isinstance(exc, SyncError) else SyncErrorCode.UNKNOWN
            logger.error(
                "Job %s failed: %s", common["job_id"], exc, exc_info=exc
            )
            return JobResult(
                status=JobStatus.FAILED,
                error=str(exc) or type(exc).__name__,
                error_code=code.value,
                **common,
            )
        value = work_task.result()
        status = (
            JobStatus.FAILED
            if getattr(value, "success", True) is False
            else JobStatus.COMPLETED
        )
        return JobResult(status=status, result=value, **common)

    async def _record(self, result: JobResult) -> None:
        try:
            await self._history.record(result)
        except Exception:
            logger.exception("Failed to record history of job %s", result.job_id)

    def _on_late_completion(self, job_id: str, task: asyncio.Task[Any]) -> None:
        self._late.discard(task)
        if task.cancelled():
            logger.debug("Timed-out job %s was cancelled", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Discarding late failure of timed-out job %s: %s", job_id, exc
            )
        else:
            logger.info("Discarding late result of timed-out job %s", job_id)

    # ── Delayed submission ───────────────────────────────────────────

    def submit_later(
        self,
        job_id: str,
        work: JobWork,
        delay: float,
        *,
        timeout: float | None = None,
        job_type: str = "job",
        resource_id: str | None = None,
    ) -> asyncio.Task[JobResult | None]:
        """Submit *work* after *delay* seconds as a supervised task.

        The returned task resolves to the job result, or ``None`` when the
        runner was at capacity at submission time.
        """

        async def _delayed() -> JobResult | None:
            await asyncio.sleep(delay)
            try:
                return await self.submit(
                    job_id,
                    work,
                    timeout=timeout,
                    job_type=job_type,
                    resource_id=resource_id,
                )
            except CapacityExceededError:
                logger.warning("Scheduled job %s dropped: runner at capacity", job_id)
                return None

        task = asyncio.create_task(_delayed(), name=f"scheduled:{job_id}")
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    # ── Queries ─────────────────────────────────────────────────────

    def is_running(self, job_id: str) -> bool:
        return job_id in self._running

    def running_jobs(self) -> list[JobResult]:
        return [
            JobResult(
                job_id=job_id,
                job_type=job.job_type,
                resource_id=job.resource_id,
                status=JobStatus.RUNNING,
                started_at=job.started_at,
            )
            for job_id, job in self._running.items()
        ]

    async def get_job_result(self, job_id: str) -> JobResult | None:
        for job in self.running_jobs():
            if job.job_id == job_id:
                return job
        return await self._history.get(job_id)

    async def queue_stats(self) -> QueueStats:
        history = await self._history.recent()
        completed = sum(1 for r in history if r.status is JobStatus.COMPLETED)
        failed = sum(1 for r in history if r.status is JobStatus.FAILED)
        times = [r.execution_time for r in history if r.execution_time is not None]
        running = len(self._running)
        return QueueStats(
            running=running,
            completed=completed,
            failed=failed,
            total=running + completed + failed,
            avg_execution_time=sum(times) / len(times) if times else 0.0,
        )

    async def clear_history(self) -> int:
        cleared = await self._history.clear()
        logger.info("Cleared %d job history entries", cleared)
        return cleared

    async def shutdown(self) -> None:
        """Cancel delayed submissions, wait for running jobs, drop late work."""
        for task in list(self._scheduled):
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*self._scheduled, return_exceptions=True)

        await asyncio.gather(
            *(job.task for job in list(self._running.values())),
            return_exceptions=True,
        )

        for task in list(self._late):
            task.cancel()
        await asyncio.gather(*self._late, return_exceptions=True)
        logger.info("JobRunner shut down")
