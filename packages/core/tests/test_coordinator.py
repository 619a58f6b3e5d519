"""Tests for SyncTransactionCoordinator: happy paths and fail-fast rejections."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest
from pydantic import ValidationError

from storesync_core.adapters.memory import InMemoryRemotePlatform
from storesync_core.config import CircuitBreakerConfig, SyncConfig
from storesync_core.correlation import correlation_scope
from storesync_core.domain import SyncKind, SyncPhase, SyncTransaction
from storesync_core.domain.circuit import CircuitState
from storesync_core.instrumentation import get_hook_registry
from storesync_core.primitives.exceptions import (
    AuthError,
    SyncErrorCode,
    TransientRemoteError,
)
from storesync_core.sync import SyncOptions

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import SyncHarness

    from storesync_core.domain import Snapshot


class TrackingRemote(InMemoryRemotePlatform):
    """Remote platform that records how many fetches overlap."""

    def __init__(self, latency: float = 0.0) -> None:
        super().__init__(latency)
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_snapshot(self, resource_id: str, credentials: Any) -> Snapshot:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return await super().fetch_snapshot(resource_id, credentials)
        finally:
            self.in_flight -= 1


# ── Happy paths ──────────────────────────────────────────────────────


class TestFullSync:
    async def test_full_sync_updates_all_stores(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        snapshot = make_snapshot()
        harness.remote.put(snapshot)

        result = await harness.coordinator.run_sync("store-42", SyncKind.FULL)

        assert result.success
        assert result.phase is SyncPhase.COMPLETED
        assert result.error is None
        assert result.operations == [
            "idempotency_check_passed",
            "lock_acquired",
            "circuit_breaker_passed",
            "snapshots_created",
            "remote_fetch",
            "relational_write",
            "vector_reindex",
            "consistency_verified",
            "sync_marker_updated",
            "cleanup_completed",
        ]
        assert result.rollback_operations == []
        assert result.consistency_score == 100.0

        assert await harness.relational.read_current("store-42") == snapshot
        assert await harness.relational.get_last_synced_at("store-42") is not None
        stats = await harness.vector.stats("store-42")
        assert stats.namespaces == {
            "store-42:store": 1,
            "store-42:products": 3,
            "store-42:orders": 2,
            "store-42:customers": 1,
        }
        assert result.metrics.documents_processed == 7
        assert result.metrics.remote_calls == 1
        assert sorted(result.metrics.namespaces_affected) == sorted(stats.namespaces)

    async def test_lock_released_and_transaction_logged(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42")

        assert not await harness.locks.is_held("store-42")
        assert result.sync_id is not None
        logged = await harness.log.get(result.sync_id)
        assert logged is not None
        assert logged.phase is SyncPhase.COMPLETED
        assert logged.finished_at is not None
        assert logged.execution_time is not None
        assert logged.rollback_log == []
        assert harness.coordinator.active_transactions() == []
        assert await harness.coordinator.get_transaction(result.sync_id) is not None

    async def test_sync_id_format(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42")

        assert result.sync_id is not None
        prefix, _, suffix = result.sync_id.rpartition("-")
        assert prefix.startswith("sync-store-42-")
        assert len(suffix) == 8

    async def test_records_job_history(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        await harness.coordinator.run_sync("store-42", options=SyncOptions(job_id="job-1"))

        job = await harness.runner.get_job_result("job-1")
        assert job is not None
        assert job.success
        stats = await harness.coordinator.get_queue_stats()
        assert stats["completed"] == 1
        assert stats["running"] == 0


class TestSyncKinds:
    async def test_incremental_without_changes_skips_writes(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.coordinator.run_sync("store-42", SyncKind.FULL)

        result = await harness.coordinator.run_sync("store-42", SyncKind.INCREMENTAL)

        assert result.success
        assert "no_changes_detected" in result.operations
        assert "relational_write" not in result.operations
        assert "consistency_verified" not in result.operations
        assert harness.relational.write_count == 1

    async def test_incremental_with_changes_writes(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.coordinator.run_sync("store-42", SyncKind.FULL)
        harness.remote.put(make_snapshot(products=5))

        result = await harness.coordinator.run_sync("store-42", SyncKind.INCREMENTAL)

        assert result.success
        assert "relational_write" in result.operations
        stats = await harness.vector.stats("store-42")
        assert stats.namespaces["store-42:products"] == 5

    async def test_cleanup_purges_vector_index_first(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot(products=4))
        await harness.coordinator.run_sync("store-42", SyncKind.FULL)
        harness.remote.put(make_snapshot(products=1, customers=0))

        result = await harness.coordinator.run_sync("store-42", SyncKind.CLEANUP)

        assert result.success
        ops = result.operations
        assert ops.index("vector_purge") < ops.index("relational_write")
        assert ops.index("relational_write") < ops.index("vector_reindex")
        stats = await harness.vector.stats("store-42")
        assert "store-42:customers" not in stats.namespaces
        assert stats.namespaces["store-42:products"] == 1

    async def test_relational_only_sync(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(include_vectors=False)
        )

        assert result.success
        assert "vector_reindex" not in result.operations
        assert (await harness.vector.stats("store-42")).total_documents == 0
        assert result.consistency_score == 100.0

    async def test_kind_accepts_plain_string(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42", "full")

        assert result.kind is SyncKind.FULL


# ── Fail-fast rejections ─────────────────────────────────────────────


class TestIdempotency:
    async def test_second_full_sync_within_window_is_duplicate(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        first = await harness.coordinator.run_sync("store-42", SyncKind.FULL)

        second = await harness.coordinator.run_sync("store-42", SyncKind.FULL)

        assert first.success
        assert not second.success
        assert second.error_code is SyncErrorCode.DUPLICATE_TRANSACTION
        assert not second.retryable
        assert first.sync_id is not None and first.sync_id in second.error.message
        assert harness.relational.write_count == 1
        assert harness.remote.fetch_calls == ["store-42"]

    async def test_duplicate_is_not_retried(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.coordinator.run_sync("store-42")

        result = await harness.coordinator.run_sync_with_retry("store-42")

        assert result.error_code is SyncErrorCode.DUPLICATE_TRANSACTION
        assert result.attempt == 1

    async def test_force_bypasses_idempotency_window(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.coordinator.run_sync("store-42")

        result = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(force=True)
        )

        assert result.success
        assert "idempotency_check_skipped" in result.operations

    async def test_window_expiry_allows_new_sync(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        harness = build_harness(config=SyncConfig(idempotency_window=60, lock_ttl=60))
        harness.remote.put(make_snapshot())
        first = await harness.coordinator.run_sync("store-42")
        assert first.sync_id is not None

        # Age the logged record past the window.
        logged = await harness.log.get(first.sync_id)
        assert logged is not None
        aged = datetime.now(timezone.utc) - timedelta(minutes=5)
        logged.started_at = aged
        logged.finished_at = aged
        await harness.log.update(logged)

        second = await harness.coordinator.run_sync("store-42")

        assert second.success

    async def test_different_kinds_are_not_duplicates(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.coordinator.run_sync("store-42", SyncKind.FULL)

        result = await harness.coordinator.run_sync("store-42", SyncKind.CLEANUP)

        assert result.success


class TestLocking:
    async def test_locked_resource_fails_fast(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        held = await harness.locks.acquire("store-42", purpose="manual reindex")

        result = await harness.coordinator.run_sync("store-42")

        assert result.error_code is SyncErrorCode.LOCK_CONFLICT
        assert result.retryable
        assert result.phase is SyncPhase.FAILED
        assert "manual reindex" in result.error.message
        assert harness.remote.fetch_calls == []
        holder = await harness.locks.get_holder("store-42")
        assert holder is not None and holder.token == held.token

    async def test_lock_waits_are_bounded(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        await harness.locks.acquire("store-42", purpose="manual reindex")

        result = await harness.coordinator.run_sync_with_retry(
            "store-42", options=SyncOptions(max_lock_waits=2, retry_delay=0.0)
        )

        assert result.error_code is SyncErrorCode.LOCK_CONFLICT
        assert result.attempt == 1

    async def test_concurrent_syncs_are_mutually_exclusive(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        remote = TrackingRemote(latency=0.05)
        harness = build_harness(remote=remote)
        remote.put(make_snapshot())

        results = await asyncio.gather(
            harness.coordinator.run_sync(
                "store-42", options=SyncOptions(job_id="a", force=True)
            ),
            harness.coordinator.run_sync(
                "store-42", options=SyncOptions(job_id="b", force=True)
            ),
        )

        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.error_code is SyncErrorCode.LOCK_CONFLICT
        assert remote.max_in_flight == 1

    async def test_waiting_syncs_all_succeed_serially(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        remote = TrackingRemote(latency=0.02)
        harness = build_harness(remote=remote)
        remote.put(make_snapshot())

        results = await asyncio.gather(
            *(
                harness.coordinator.run_sync_with_retry(
                    "store-42",
                    options=SyncOptions(
                        job_id=f"job-{i}",
                        force=True,
                        retry_delay=0.01,
                        max_lock_waits=50,
                    ),
                )
                for i in range(3)
            )
        )

        assert all(r.success for r in results)
        assert remote.max_in_flight == 1
        assert len(remote.fetch_calls) == 3


class TestCapacity:
    async def test_full_runner_rejects_new_syncs(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        remote = InMemoryRemotePlatform(latency=0.1)
        harness = build_harness(remote=remote, max_concurrent=1)
        remote.put(make_snapshot("store-42"))
        remote.put(make_snapshot("store-7"))

        first = asyncio.create_task(harness.coordinator.run_sync("store-42"))
        await asyncio.sleep(0.02)
        rejected = await harness.coordinator.run_sync("store-7")

        assert rejected.error_code is SyncErrorCode.CAPACITY_EXCEEDED
        assert not rejected.retryable
        assert (await first).success
        assert remote.fetch_calls == ["store-42"]


class TestRetry:
    async def test_transient_error_retried_to_success(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        harness.remote.fail_next(TransientRemoteError("502 Bad Gateway"))

        result = await harness.coordinator.run_sync_with_retry("store-42")

        assert result.success
        assert result.attempt == 2
        attempts = sorted(harness.log.all(), key=lambda tx: tx.attempt)
        assert [tx.phase for tx in attempts] == [SyncPhase.FAILED, SyncPhase.COMPLETED]
        assert attempts[0].error_code is SyncErrorCode.TRANSIENT_REMOTE_ERROR
        state = await harness.breaker.get_state("store-42")
        assert state.consecutive_failures == 0
        assert state.total_failures == 1

    async def test_permanent_error_not_retried(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        harness.remote.fail_next(AuthError("401 Unauthorized"))

        result = await harness.coordinator.run_sync_with_retry("store-42")

        assert result.error_code is SyncErrorCode.PERMANENT_REMOTE_ERROR
        assert not result.retryable
        assert result.attempt == 1
        assert len(harness.remote.fetch_calls) == 1

    async def test_gives_up_after_max_attempts(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        harness.remote.fail_next(*(TransientRemoteError("timeout") for _ in range(3)))

        result = await harness.coordinator.run_sync_with_retry(
            "store-42", options=SyncOptions(max_attempts=3)
        )

        assert result.error_code is SyncErrorCode.TRANSIENT_REMOTE_ERROR
        assert result.attempt == 3
        assert len(harness.remote.fetch_calls) == 3

    async def test_missing_resource_is_permanent(self, harness: SyncHarness) -> None:
        result = await harness.coordinator.run_sync_with_retry("store-404")

        assert result.error_code is SyncErrorCode.PERMANENT_REMOTE_ERROR
        assert result.attempt == 1


class TestCircuitBreaker:
    async def test_breaker_opens_after_threshold(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        harness = build_harness(
            breaker_config=CircuitBreakerConfig(failure_threshold=2, cooldown=60)
        )
        harness.remote.put(make_snapshot())
        harness.remote.fail_next(TransientRemoteError("503"), TransientRemoteError("503"))

        for job_id in ("job-1", "job-2"):
            await harness.coordinator.run_sync(
                "store-42", options=SyncOptions(job_id=job_id)
            )
        rejected = await harness.coordinator.run_sync_with_retry(
            "store-42", options=SyncOptions(job_id="job-3")
        )

        assert rejected.error_code is SyncErrorCode.CIRCUIT_OPEN
        assert rejected.attempt == 1
        assert len(harness.remote.fetch_calls) == 2
        state = await harness.breaker.get_state("store-42")
        assert state.state is CircuitState.OPEN
        assert not await harness.locks.is_held("store-42")


# ── Recovery, scheduling and context ─────────────────────────────────


class TestRecovery:
    async def _stuck(self, harness: SyncHarness) -> SyncTransaction:
        started = datetime.now(timezone.utc) - timedelta(hours=1)
        tx = SyncTransaction.create("store-42", SyncKind.FULL, now=started)
        tx.transition_to(SyncPhase.EXECUTE)
        await harness.log.insert(tx)
        return tx

    async def test_abandoned_transaction_failed_and_rolled_forward(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        stuck = await self._stuck(harness)

        recovered = await harness.coordinator.recover_abandoned()

        assert recovered == 1
        logged = await harness.log.get(stuck.id)
        assert logged is not None
        assert logged.phase is SyncPhase.FAILED
        assert logged.error_code is SyncErrorCode.TIMEOUT
        assert await harness.relational.read_current("store-42") is not None

    async def test_live_lock_owner_is_not_abandoned(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        stuck = await self._stuck(harness)
        await harness.locks.acquire("store-42", owner_id=stuck.id)

        recovered = await harness.coordinator.recover_abandoned()

        assert recovered == 0
        logged = await harness.log.get(stuck.id)
        assert logged is not None and logged.phase is SyncPhase.EXECUTE

    async def test_recent_transactions_are_left_alone(
        self, harness: SyncHarness
    ) -> None:
        tx = SyncTransaction.create("store-42", SyncKind.FULL)
        await harness.log.insert(tx)

        assert await harness.coordinator.recover_abandoned() == 0


class TestScheduling:
    async def test_schedule_sync_runs_after_delay(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        task = harness.coordinator.schedule_sync("store-42", SyncKind.FULL, delay=0.01)
        job = await task

        assert job is not None
        assert job.success
        assert job.result.success


class TestContext:
    async def test_sync_id_is_default_correlation_id(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())
        seen: dict[str, Any] = {}

        async def hook(operation: str, attributes: dict[str, Any], next_handler: Any) -> Any:
            seen.update(attributes)
            return await next_handler()

        get_hook_registry().register(hook, operations=["sync.run.*"])

        result = await harness.coordinator.run_sync("store-42")

        assert seen["sync.id"] == result.sync_id
        assert seen["correlation_id"] == result.sync_id

    async def test_caller_correlation_id_is_kept(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        with correlation_scope("req-123"):
            result = await harness.coordinator.run_sync("store-42")

        assert result.sync_id is not None
        logged = await harness.log.get(result.sync_id)
        assert logged is not None
        assert logged.correlation_id == "req-123"


class TestOptions:
    @pytest.mark.parametrize("path", ["products.title", "orders.total", "inventory.count"])
    def test_unsupported_verify_field_is_rejected(self, path: str) -> None:
        with pytest.raises(ValidationError, match="verify field"):
            SyncOptions(verify_fields=("store.name", path))

    def test_unknown_consistency_level_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="consistency_level"):
            SyncOptions(consistency_level="deep")

    def test_config_rejects_unsupported_verify_field(self) -> None:
        with pytest.raises(ValueError, match="orders.total"):
            SyncConfig(verify_fields=("store.name", "orders.total"))

    async def test_custom_verify_fields_keep_breaker_clean(
        self, harness: SyncHarness, make_snapshot: Callable[..., Snapshot]
    ) -> None:
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync(
            "store-42",
            options=SyncOptions(
                verify_fields=("store.name", "products.count"),
                consistency_level="comprehensive",
            ),
        )

        assert result.success, result.error
        assert result.consistency_score == 100.0
        state = await harness.breaker.get_state("store-42")
        assert state.total_failures == 0


@pytest.mark.parametrize("kind", list(SyncKind))
async def test_every_kind_completes_on_a_fresh_resource(
    kind: SyncKind,
    harness: SyncHarness,
    make_snapshot: Callable[..., Snapshot],
) -> None:
    harness.remote.put(make_snapshot())

    result = await harness.coordinator.run_sync("store-42", kind)

    assert result.success
    assert result.kind is kind
