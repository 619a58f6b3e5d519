"""Shared fixtures for storesync-core tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest

from storesync_core.adapters.memory import (
    InMemoryCircuitBreakerStore,
    InMemoryJobHistory,
    InMemoryLockStore,
    InMemoryRelationalStore,
    InMemoryRemotePlatform,
    InMemoryTransactionLog,
    InMemoryVectorIndex,
)
from storesync_core.config import CircuitBreakerConfig, SyncConfig
from storesync_core.domain import Snapshot
from storesync_core.instrumentation import HookRegistry, set_hook_registry
from storesync_core.jobs import JobRunner
from storesync_core.locking import LockManager
from storesync_core.resilience import CircuitBreaker, RetryPolicy
from storesync_core.sync import SyncTransactionCoordinator

if TYPE_CHECKING:
    from collections.abc import Callable


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_hook_registry() -> HookRegistry:
    registry = HookRegistry()
    set_hook_registry(registry)
    return registry


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    def _make(
        resource_id: str = "store-42",
        *,
        products: int = 3,
        orders: int = 2,
        customers: int = 1,
        **store: Any,
    ) -> Snapshot:
        profile = {
            "name": "Acme Outfitters",
            "domain": "acme.example",
            "currency": "EUR",
            **store,
        }
        return Snapshot(
            resource_id=resource_id,
            store=profile,
            products=[
                {"id": f"p{i}", "title": f"Trail Shoe {i}", "price": f"{49 + i}.00"}
                for i in range(products)
            ],
            orders=[
                {"id": f"o{i}", "name": f"#{1000 + i}", "status": "paid"}
                for i in range(orders)
            ],
            customers=[
                {"id": f"c{i}", "first_name": "Ada", "email": f"ada{i}@example.com"}
                for i in range(customers)
            ],
        )

    return _make


@dataclass
class SyncHarness:
    remote: InMemoryRemotePlatform
    relational: InMemoryRelationalStore
    vector: InMemoryVectorIndex
    log: InMemoryTransactionLog
    history: InMemoryJobHistory
    locks: LockManager
    breaker: CircuitBreaker
    runner: JobRunner
    coordinator: SyncTransactionCoordinator


@pytest.fixture
def build_harness() -> Callable[..., SyncHarness]:
    def _build(
        *,
        remote: InMemoryRemotePlatform | None = None,
        relational: InMemoryRelationalStore | None = None,
        vector: InMemoryVectorIndex | None = None,
        config: SyncConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        max_concurrent: int = 5,
    ) -> SyncHarness:
        cfg = config or SyncConfig()
        remote = remote or InMemoryRemotePlatform()
        relational = relational or InMemoryRelationalStore()
        vector = vector or InMemoryVectorIndex()
        log = InMemoryTransactionLog()
        history = InMemoryJobHistory(cfg.job_history_size)
        locks = LockManager(InMemoryLockStore(), default_ttl=cfg.lock_ttl)
        breaker = CircuitBreaker(InMemoryCircuitBreakerStore(), breaker_config)
        runner = JobRunner(
            history, max_concurrent=max_concurrent, default_timeout=cfg.job_timeout
        )
        coordinator = SyncTransactionCoordinator(
            remote=remote,
            relational=relational,
            vector_index=vector,
            transaction_log=log,
            lock_manager=locks,
            circuit_breaker=breaker,
            job_runner=runner,
            retry_policy=retry_policy or RetryPolicy(base_delay=0.0),
            config=cfg,
        )
        return SyncHarness(
            remote=remote,
            relational=relational,
            vector=vector,
            log=log,
            history=history,
            locks=locks,
            breaker=breaker,
            runner=runner,
            coordinator=coordinator,
        )

    return _build


@pytest.fixture
def harness(build_harness: Callable[..., SyncHarness]) -> SyncHarness:
    return build_harness()
