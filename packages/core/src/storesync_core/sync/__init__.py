from __future__ import annotations

from .coordinator import SyncTransactionCoordinator
from .options import SyncOptions
from .recovery import SyncRecoveryWorker
from .scheduler import SyncScheduler

__all__ = [
    "SyncOptions",
    "SyncRecoveryWorker",
    "SyncScheduler",
    "SyncTransactionCoordinator",
]
