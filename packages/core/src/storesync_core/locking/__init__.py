from __future__ import annotations

from .manager import LockAcquisition, LockManager, LockRelease

__all__ = ["LockAcquisition", "LockManager", "LockRelease"]
