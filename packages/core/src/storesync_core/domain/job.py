"""Job result model shared by the runner and job history stores."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobResult(BaseModel):
    """Outcome of one job execution.

    Returned unchanged to every caller attached to the same job id.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    job_type: str = "job"
    resource_id: str | None = None
    status: JobStatus = JobStatus.RUNNING
    result: Any = None
    error: str | None = None
    error_code: str | None = None
    started_at: float
    finished_at: float | None = None
    execution_time: float | None = None

    @property
    def success(self) -> bool:
        return self.status is JobStatus.COMPLETED
