"""storesync-redis — shared backing stores for locks, breakers and job history."""

from __future__ import annotations

from .circuit_breaker import RedisCircuitBreakerStore
from .exceptions import RedisStoreError
from .job_history import RedisJobHistory
from .locking import RedisLockStore

__all__ = [
    "RedisCircuitBreakerStore",
    "RedisJobHistory",
    "RedisLockStore",
    "RedisStoreError",
]
