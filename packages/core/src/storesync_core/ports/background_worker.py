"""IBackgroundWorker — lifecycle protocol for long-running loops."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IBackgroundWorker(Protocol):
    """
    Start/stop contract shared by background loops.

    Used by: ``SyncRecoveryWorker``, ``SyncScheduler``.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
