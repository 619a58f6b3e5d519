from __future__ import annotations

from .background_worker import IBackgroundWorker
from .circuit_breaker import ICircuitBreakerStore
from .job_history import IJobHistoryStore
from .locking import ILockStore
from .relational import IRelationalStore
from .remote import ICredentialsProvider, IRemotePlatform
from .transaction_log import ITransactionLog
from .vector_index import DeleteResult, IVectorIndex, ReindexResult, VectorIndexStats

__all__ = [
    "DeleteResult",
    "IBackgroundWorker",
    "ICircuitBreakerStore",
    "ICredentialsProvider",
    "IJobHistoryStore",
    "ILockStore",
    "IRelationalStore",
    "IRemotePlatform",
    "ITransactionLog",
    "IVectorIndex",
    "ReindexResult",
    "VectorIndexStats",
]
