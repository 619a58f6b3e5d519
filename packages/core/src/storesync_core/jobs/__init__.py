from __future__ import annotations

from .runner import JobContext, JobRunner, QueueStats

__all__ = ["JobContext", "JobRunner", "QueueStats"]
