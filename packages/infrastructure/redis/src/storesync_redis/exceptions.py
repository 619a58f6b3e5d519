"""Redis-specific exceptions for storesync-redis."""

from __future__ import annotations

from storesync_core.primitives.exceptions import InfrastructureError


class RedisStoreError(InfrastructureError):
    """Raised when a Redis-backed store cannot complete an operation."""

    def __init__(self, operation: str, key: str, cause: BaseException) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"Redis {operation} failed for {key!r}: {cause}")
