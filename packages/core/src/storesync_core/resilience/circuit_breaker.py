"""CircuitBreaker — per-key failure gate above per-call retries."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from ..config import CircuitBreakerConfig
from ..domain.circuit import CircuitBreakerState, CircuitState

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..ports.circuit_breaker import ICircuitBreakerStore

logger = logging.getLogger("storesync.resilience")

_MAX_CAS_ATTEMPTS = 10


class CircuitBreaker:
    """
    Tracks consecutive failures per key and rejects calls while open.

    State machine::

        CLOSED    → OPEN       (consecutive failures ≥ threshold)
        OPEN      → HALF_OPEN  (cooldown elapsed; one trial call allowed)
        HALF_OPEN → CLOSED     (trial succeeded)
        HALF_OPEN → OPEN       (trial failed)

    States are created lazily on the first failure of a key. All writes go
    through the store's versioned compare-and-set, so with a shared store
    exactly one caller across all processes wins the half-open trial.
    """

    def __init__(
        self,
        store: ICircuitBreakerStore,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

    async def allow(self, key: str) -> bool:
        """Return whether a call for *key* may be attempted now."""
        for _ in range(_MAX_CAS_ATTEMPTS):
            state = await self._store.get(key)
            if state is None or state.state is CircuitState.CLOSED:
                return True

            now = self._clock()
            if state.state is CircuitState.OPEN:
                if now - (state.opened_at or now) < self.config.cooldown:
                    return False
            elif (
                state.trial_started_at is not None
                and now - state.trial_started_at < self.config.cooldown
            ):
                # A trial is already outstanding.
                return False

            trial = state.model_copy(
                update={
                    "state": CircuitState.HALF_OPEN,
                    "trial_started_at": now,
                    "version": state.version + 1,
                }
            )
            if await self._store.compare_and_set(trial, state.version):
                logger.info("Circuit breaker %s half-open, allowing trial call", key)
                return True

        logger.warning("Circuit breaker %s: contention while claiming trial", key)
        return False

    async def record_success(self, key: str) -> None:
        for _ in range(_MAX_CAS_ATTEMPTS):
            state = await self._store.get(key)
            if state is None:
                return
            closed = state.model_copy(
                update={
                    "state": CircuitState.CLOSED,
                    "consecutive_failures": 0,
                    "opened_at": None,
                    "trial_started_at": None,
                    "total_successes": state.total_successes + 1,
                    "last_success_at": self._clock(),
                    "version": state.version + 1,
                }
            )
            if await self._store.compare_and_set(closed, state.version):
                if state.state is not CircuitState.CLOSED:
                    logger.info("Circuit breaker %s closed after successful trial", key)
                return
        logger.warning("Circuit breaker %s: could not record success", key)

    async def record_failure(self, key: str) -> None:
        for _ in range(_MAX_CAS_ATTEMPTS):
            current = await self._store.get(key)
            base = current or CircuitBreakerState(key=key)
            expected = current.version if current is not None else None
            now = self._clock()
            failures = base.consecutive_failures + 1

            opened_at = base.opened_at
            if base.state is CircuitState.HALF_OPEN:
                next_state, opened_at = CircuitState.OPEN, now
            elif base.state is CircuitState.OPEN:
                next_state = CircuitState.OPEN
            elif failures >= self.config.failure_threshold:
                next_state, opened_at = CircuitState.OPEN, now
            else:
                next_state = CircuitState.CLOSED

            updated = base.model_copy(
                update={
                    "state": next_state,
                    "consecutive_failures": failures,
                    "opened_at": opened_at,
                    "trial_started_at": None,
                    "total_failures": base.total_failures + 1,
                    "last_failure_at": now,
                    "version": base.version + 1,
                }
            )
            if await self._store.compare_and_set(updated, expected):
                if next_state is CircuitState.OPEN and base.state is not CircuitState.OPEN:
                    logger.warning(
                        "Circuit breaker %s opened after %d consecutive failures",
                        key,
                        failures,
                    )
                return
        logger.warning("Circuit breaker %s: could not record failure", key)

    # ── Administration ───────────────────────────────────────────────

    async def get_state(self, key: str) -> CircuitBreakerState:
        state = await self._store.get(key)
        return state or CircuitBreakerState(key=key)

    async def retry_after(self, key: str) -> float | None:
        """Seconds until an open breaker allows its trial, or ``None``."""
        state = await self._store.get(key)
        if state is None or state.state is not CircuitState.OPEN:
            return None
        elapsed = self._clock() - (state.opened_at or 0.0)
        return max(0.0, self.config.cooldown - elapsed)

    async def reset(self, key: str) -> None:
        await self._store.delete(key)
        logger.info("Circuit breaker %s reset", key)

    async def force_open(self, key: str) -> None:
        for _ in range(_MAX_CAS_ATTEMPTS):
            current = await self._store.get(key)
            base = current or CircuitBreakerState(key=key)
            forced = base.model_copy(
                update={
                    "state": CircuitState.OPEN,
                    "opened_at": self._clock(),
                    "trial_started_at": None,
                    "version": base.version + 1,
                }
            )
            expected = current.version if current is not None else None
            if await self._store.compare_and_set(forced, expected):
                logger.warning("Circuit breaker %s forced open", key)
                return

    async def metrics(self) -> dict[str, CircuitBreakerState]:
        return {state.key: state for state in await self._store.list_all()}

    async def system_health(self) -> dict[str, int]:
        """Count breakers by health: closed, half-open and open."""
        health = {"healthy": 0, "degraded": 0, "unhealthy": 0, "total": 0}
        for state in await self._store.list_all():
            health["total"] += 1
            if state.state is CircuitState.CLOSED:
                health["healthy"] += 1
            elif state.state is CircuitState.HALF_OPEN:
                health["degraded"] += 1
            else:
                health["unhealthy"] += 1
        return health
