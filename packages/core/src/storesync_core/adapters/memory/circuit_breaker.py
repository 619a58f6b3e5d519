"""InMemoryCircuitBreakerStore — per-process breaker counters."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ...ports.circuit_breaker import ICircuitBreakerStore

if TYPE_CHECKING:
    from ...domain.circuit import CircuitBreakerState


class InMemoryCircuitBreakerStore(ICircuitBreakerStore):
    def __init__(self) -> None:
        self._states: dict[str, CircuitBreakerState] = {}
        self._mutex = asyncio.Lock()

    async def get(self, key: str) -> CircuitBreakerState | None:
        return self._states.get(key)

    async def compare_and_set(
        self,
        state: CircuitBreakerState,
        expected_version: int | None,
    ) -> bool:
        async with self._mutex:
            current = self._states.get(state.key)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                return False
            self._states[state.key] = state
            return True

    async def delete(self, key: str) -> bool:
        async with self._mutex:
            return self._states.pop(key, None) is not None

    async def list_all(self) -> list[CircuitBreakerState]:
        return list(self._states.values())
