"""Tests for SyncTransactionCoordinator rollback, verification and deadlines."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest

from storesync_core.adapters.memory import (
    InMemoryRelationalStore,
    InMemoryRemotePlatform,
    InMemoryVectorIndex,
)
from storesync_core.config import SyncConfig
from storesync_core.domain import SyncPhase
from storesync_core.domain.documents import build_documents
from storesync_core.ports.vector_index import ReindexResult
from storesync_core.primitives.exceptions import SyncErrorCode
from storesync_core.sync import SyncOptions

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import SyncHarness

    from storesync_core.domain import Snapshot


class FlakyVectorIndex(InMemoryVectorIndex):
    """Vector index whose next reindex calls can fail or silently lose data."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reindex = 0
        self.drop_reindex = 0

    async def reindex(self, resource_id: str, snapshot: Snapshot) -> ReindexResult:
        if self.fail_reindex:
            self.fail_reindex -= 1
            raise ConnectionError("vector index unavailable")
        if self.drop_reindex:
            self.drop_reindex -= 1
            await self.delete_all(resource_id)
            documents = build_documents(snapshot)
            return ReindexResult(
                documents_written=sum(len(d) for d in documents.values()),
                namespaces=sorted(documents),
            )
        return await super().reindex(resource_id, snapshot)


class BrokenDeleteRelationalStore(InMemoryRelationalStore):
    async def delete(self, resource_id: str) -> bool:
        raise RuntimeError("relational store unreachable")


class SlowRelationalStore(InMemoryRelationalStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def upsert(self, resource_id: str, snapshot: Snapshot) -> Snapshot | None:
        await asyncio.sleep(self.delay)
        return await super().upsert(resource_id, snapshot)


class SlowFirstWriteRelationalStore(InMemoryRelationalStore):
    """Only the first upsert is slow; later syncs write immediately."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self._writes_started = 0

    async def upsert(self, resource_id: str, snapshot: Snapshot) -> Snapshot | None:
        self._writes_started += 1
        if self._writes_started == 1:
            await asyncio.sleep(self.delay)
        return await super().upsert(resource_id, snapshot)


class TestRollback:
    async def test_failure_after_relational_write_restores_empty_state(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        vector = FlakyVectorIndex()
        vector.fail_reindex = 1
        harness = build_harness(vector=vector)
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42")

        assert not result.success
        assert result.phase is SyncPhase.FAILED
        assert result.error_code is SyncErrorCode.UNKNOWN
        assert result.rollback_operations == [
            "restore_relational",
            "discard_remote_snapshot",
        ]
        assert "vector_reindex" not in result.operations
        assert await harness.relational.read_current("store-42") is None
        assert (await vector.stats("store-42")).total_documents == 0
        assert not await harness.locks.is_held("store-42")

        logged = await harness.log.get(result.sync_id or "")
        assert logged is not None
        assert logged.phase is SyncPhase.FAILED
        assert logged.failed_compensations == []

    async def test_failure_restores_previous_snapshot(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        vector = FlakyVectorIndex()
        harness = build_harness(vector=vector)
        v1 = make_snapshot(name="Acme Outfitters")
        harness.remote.put(v1)
        assert (await harness.coordinator.run_sync("store-42")).success

        harness.remote.put(make_snapshot(name="Acme Outdoor", products=6))
        vector.fail_reindex = 1
        result = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(force=True)
        )

        assert not result.success
        assert await harness.relational.read_current("store-42") == v1
        stats = await vector.stats("store-42")
        assert stats.namespaces["store-42:products"] == 3

    async def test_critical_discrepancy_rolls_back_all_steps(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        vector = FlakyVectorIndex()
        harness = build_harness(vector=vector)
        v1 = make_snapshot()
        harness.remote.put(v1)
        assert (await harness.coordinator.run_sync("store-42")).success

        harness.remote.put(make_snapshot(products=8))
        vector.drop_reindex = 1
        result = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(force=True)
        )

        assert result.error_code is SyncErrorCode.CONSISTENCY_VIOLATION
        assert not result.retryable
        assert result.consistency_score is not None and result.consistency_score < 100
        assert result.rollback_operations == [
            "restore_vector_index",
            "restore_relational",
            "discard_remote_snapshot",
        ]
        assert await harness.relational.read_current("store-42") == v1
        assert (await vector.stats("store-42")).namespaces["store-42:products"] == 3

    async def test_consistency_violation_does_not_trip_breaker(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        vector = FlakyVectorIndex()
        vector.drop_reindex = 1
        harness = build_harness(vector=vector)
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42")

        assert result.error_code is SyncErrorCode.CONSISTENCY_VIOLATION
        state = await harness.breaker.get_state("store-42")
        assert state.total_failures == 0

    async def test_partial_rollback_failure_is_reported(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        vector = FlakyVectorIndex()
        vector.fail_reindex = 1
        harness = build_harness(vector=vector, relational=BrokenDeleteRelationalStore())
        harness.remote.put(make_snapshot())

        with caplog.at_level(logging.INFO, logger="storesync"):
            result = await harness.coordinator.run_sync("store-42")

        assert result.error_code is SyncErrorCode.ROLLBACK_PARTIAL_FAILURE
        assert not result.retryable
        assert result.error is not None and result.error.cause is not None
        assert result.error.cause.code is SyncErrorCode.UNKNOWN
        assert "vector index unavailable" in result.error.cause.message
        assert result.rollback_operations == ["discard_remote_snapshot"]
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

        logged = await harness.log.get(result.sync_id or "")
        assert logged is not None
        assert logged.phase is SyncPhase.FAILED
        assert logged.failed_compensations == ["restore_relational"]
        assert logged.error_code is SyncErrorCode.ROLLBACK_PARTIAL_FAILURE


class TestDeadlines:
    async def test_job_timeout_reports_timeout(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        harness = build_harness(remote=InMemoryRemotePlatform(latency=0.2))
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(timeout=0.05, job_id="slow")
        )

        assert result.error_code is SyncErrorCode.TIMEOUT
        assert result.retryable
        assert result.sync_id is not None

        # The abandoned saga stops itself at the next step boundary.
        await asyncio.sleep(0.3)
        assert harness.relational.write_count == 0
        logged = await harness.log.get(result.sync_id)
        assert logged is not None
        assert logged.phase is SyncPhase.FAILED
        assert logged.error_code is SyncErrorCode.TIMEOUT
        assert not await harness.locks.is_held("store-42")

    async def test_step_timeout_rolls_back(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        harness = build_harness(
            remote=InMemoryRemotePlatform(latency=0.2),
            config=SyncConfig(step_timeout=0.05),
        )
        harness.remote.put(make_snapshot())

        with caplog.at_level(logging.WARNING, logger="storesync.sync"):
            result = await harness.coordinator.run_sync("store-42")
            await asyncio.sleep(0.3)

        assert result.error_code is SyncErrorCode.TIMEOUT
        assert result.retryable
        assert "remote_fetch:timed_out" in result.operations
        assert result.rollback_operations == ["discard_remote_snapshot"]
        assert harness.relational.write_count == 0
        assert any("Discarding late result" in r.getMessage() for r in caplog.records)

    async def test_late_relational_write_is_undone(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
    ) -> None:
        relational = SlowRelationalStore(delay=0.15)
        harness = build_harness(
            relational=relational, config=SyncConfig(step_timeout=0.05)
        )
        harness.remote.put(make_snapshot())

        result = await harness.coordinator.run_sync("store-42")

        assert result.error_code is SyncErrorCode.TIMEOUT
        assert "relational_write:timed_out" in result.operations
        assert "restore_relational" in result.rollback_operations

        await asyncio.sleep(0.4)
        assert relational.write_count == 1
        assert await relational.read_current("store-42") is None

    async def test_late_write_does_not_undo_a_newer_sync(
        self,
        build_harness: Callable[..., SyncHarness],
        make_snapshot: Callable[..., Snapshot],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        relational = SlowFirstWriteRelationalStore(delay=0.3)
        harness = build_harness(
            relational=relational, config=SyncConfig(step_timeout=0.05)
        )
        harness.remote.put(make_snapshot(name="v1"))

        first = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(job_id="sync-1")
        )
        assert first.error_code is SyncErrorCode.TIMEOUT
        assert "restore_relational" in first.rollback_operations

        harness.remote.put(make_snapshot(name="v2"))
        second = await harness.coordinator.run_sync(
            "store-42", options=SyncOptions(job_id="sync-2", force=True)
        )
        assert second.success

        with caplog.at_level(logging.WARNING, logger="storesync.sync"):
            await asyncio.sleep(0.4)

        assert any(
            "a later sync committed" in r.getMessage() for r in caplog.records
        )
        assert await relational.read_current("store-42") is not None
        assert (await harness.vector.stats("store-42")).total_documents > 0
        assert not await harness.locks.is_held("store-42")
