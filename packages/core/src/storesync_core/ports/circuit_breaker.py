"""ICircuitBreakerStore — storage seam for breaker counters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.circuit import CircuitBreakerState


@runtime_checkable
class ICircuitBreakerStore(Protocol):
    """
    Versioned storage of breaker states keyed by resource key.

    Writes are optimistic: :meth:`compare_and_set` only succeeds when the
    stored version still equals *expected_version*. This is what lets the
    half-open trial be claimed by exactly one caller even when several
    processes share the store.
    """

    async def get(self, key: str) -> CircuitBreakerState | None: ...

    async def compare_and_set(
        self,
        state: CircuitBreakerState,
        expected_version: int | None,
    ) -> bool:
        """Write *state* if the stored version is *expected_version*.

        ``None`` means the key must not exist yet.
        """
        ...

    async def delete(self, key: str) -> bool: ...

    async def list_all(self) -> list[CircuitBreakerState]: ...
