"""SyncRecoveryWorker — sweeps transactions abandoned by a crashed process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, cast

from ..correlation import get_correlation_id
from ..instrumentation import get_hook_registry
from ..ports.background_worker import IBackgroundWorker

if TYPE_CHECKING:
    from .coordinator import SyncTransactionCoordinator

logger = logging.getLogger("storesync.sync")


class SyncRecoveryWorker(IBackgroundWorker):
    """
    Periodically finds transactions stuck in an active phase past the grace
    period, marks them failed and re-runs a full sync for their resource.

    Call :meth:`trigger` to wake immediately; otherwise the worker runs every
    ``poll_interval`` seconds.
    """

    def __init__(
        self,
        coordinator: SyncTransactionCoordinator,
        poll_interval: float = 300.0,
        batch_size: int = 10,
    ) -> None:
        self._coordinator = coordinator
        self._poll_interval = poll_interval
        self.batch_size = batch_size
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    def trigger(self) -> None:
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            logger.warning("SyncRecoveryWorker already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "SyncRecoveryWorker started (poll_interval=%.1fs)", self._poll_interval
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._trigger.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("SyncRecoveryWorker stopped")

    async def run_once(self) -> int:
        """Run a single sweep; returns the number of abandoned transactions."""
        registry = get_hook_registry()
        return cast(
            "int",
            await registry.execute_all(
                "sync.recovery.run_once",
                {"correlation_id": get_correlation_id()},
                lambda: self._coordinator.recover_abandoned(limit=self.batch_size),
            ),
        )

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._trigger.wait(), timeout=self._poll_interval
                )
            self._trigger.clear()
            try:
                count = await self.run_once()
                if count:
                    logger.info("SyncRecoveryWorker: recovered %d transactions", count)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error in SyncRecoveryWorker cycle: %s", exc)
