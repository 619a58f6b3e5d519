"""SyncScheduler — periodic syncs submitted through the coordinator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, cast

from ..correlation import get_correlation_id
from ..domain.transaction import SyncKind
from ..instrumentation import get_hook_registry
from ..ports.background_worker import IBackgroundWorker

if TYPE_CHECKING:
    from ..domain.results import SyncTransactionResult
    from .coordinator import SyncTransactionCoordinator
    from .options import SyncOptions

logger = logging.getLogger("storesync.sync")


class SyncScheduler(IBackgroundWorker):
    """
    Runs a sync for every registered resource each ``interval`` seconds.

    Each sync goes through the coordinator and therefore the job runner, so
    scheduled work shares the concurrency ceiling, deadline and history of
    on-demand syncs. Duplicate and busy results are expected here and only
    logged at debug level.
    """

    def __init__(
        self,
        coordinator: SyncTransactionCoordinator,
        interval: float = 3600.0,
    ) -> None:
        self._coordinator = coordinator
        self._interval = interval
        self._resources: dict[str, tuple[SyncKind, SyncOptions | None]] = {}
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    def register(
        self,
        resource_id: str,
        kind: SyncKind | str = SyncKind.INCREMENTAL,
        options: SyncOptions | None = None,
    ) -> None:
        self._resources[resource_id] = (SyncKind(kind), options)

    def unregister(self, resource_id: str) -> None:
        self._resources.pop(resource_id, None)

    @property
    def resources(self) -> list[str]:
        return list(self._resources)

    def trigger(self) -> None:
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("SyncScheduler started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        self._running = False
        self._trigger.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
        logger.info("SyncScheduler stopped")

    async def run_once(self) -> list[SyncTransactionResult]:
        registry = get_hook_registry()
        return cast(
            "list[SyncTransactionResult]",
            await registry.execute_all(
                "sync.scheduler.tick",
                {
                    "scheduler.resources": len(self._resources),
                    "correlation_id": get_correlation_id(),
                },
                self._tick,
            ),
        )

    async def _tick(self) -> list[SyncTransactionResult]:
        results = await asyncio.gather(
            *(
                self._coordinator.run_sync(resource_id, kind, options)
                for resource_id, (kind, options) in self._resources.items()
            )
        )
        for result in results:
            if result.success:
                continue
            logger.debug(
                "Scheduled %s sync of %s not completed: %s",
                result.kind.value,
                result.resource_id,
                result.error.message if result.error else "unknown error",
            )
        return list(results)

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._trigger.wait(), timeout=self._interval)
            self._trigger.clear()
            try:
                await self.run_once()
            except Exception:
                logger.exception("SyncScheduler error")
