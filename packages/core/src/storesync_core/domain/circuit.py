"""CircuitBreakerState — per-key failure tracker."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerState(BaseModel):
    """Immutable snapshot of one breaker.

    ``version`` increases with every write so shared stores can apply
    changes with compare-and-set. ``trial_started_at`` is set while the
    single half-open trial call is outstanding.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: float | None = None
    trial_started_at: float | None = None
    total_failures: int = 0
    total_successes: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None
    version: int = 0
