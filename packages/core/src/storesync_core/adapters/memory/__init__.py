"""In-memory adapters for tests and single-instance deployments."""

from __future__ import annotations

from .circuit_breaker import InMemoryCircuitBreakerStore
from .job_history import InMemoryJobHistory
from .locking import InMemoryLockStore
from .relational import InMemoryRelationalStore
from .remote import InMemoryRemotePlatform, StaticCredentialsProvider
from .transaction_log import InMemoryTransactionLog
from .vector_index import InMemoryVectorIndex

__all__ = [
    "InMemoryCircuitBreakerStore",
    "InMemoryJobHistory",
    "InMemoryLockStore",
    "InMemoryRelationalStore",
    "InMemoryRemotePlatform",
    "InMemoryTransactionLog",
    "InMemoryVectorIndex",
    "StaticCredentialsProvider",
]
