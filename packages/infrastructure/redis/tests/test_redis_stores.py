"""Tests for the Redis-backed lock, breaker and job history stores."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storesync_core.domain import CircuitBreakerState, CircuitState, JobResult, JobStatus
from storesync_core.domain.lock import LockRecord
from storesync_core.locking import LockManager
from storesync_redis import (
    RedisCircuitBreakerStore,
    RedisJobHistory,
    RedisLockStore,
    RedisStoreError,
)


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.eval = AsyncMock(return_value=1)
    redis.get = AsyncMock(return_value=None)
    redis.mget = AsyncMock(return_value=[])
    redis.smembers = AsyncMock(return_value=set())
    redis.srem = AsyncMock()
    redis.delete = AsyncMock(return_value=1)
    redis.hget = AsyncMock(return_value=None)
    redis.hmget = AsyncMock(return_value=[])
    redis.lrange = AsyncMock(return_value=[])
    redis.llen = AsyncMock(return_value=0)
    return redis


def _record(token: str = "tok-1", acquired_at: float = 1000.0) -> LockRecord:
    return LockRecord(
        resource_id="store-42",
        owner_id="sync-a",
        token=token,
        acquired_at=acquired_at,
        ttl=180.0,
        purpose="full",
    )


@pytest.mark.asyncio
class TestRedisLockStore:
    async def test_compare_and_set_passes_token_and_expiry(
        self, mock_redis: MagicMock
    ) -> None:
        store = RedisLockStore(mock_redis, stale_retention=60.0)

        assert await store.compare_and_set("store-42", None, _record()) is True

        args = mock_redis.eval.call_args[0]
        # KEYS[1]=lock, KEYS[2]=index, ARGV[1]=expected, ARGV[2]=json, ARGV[3]=px
        assert "cjson.decode" in args[0]
        assert args[1] == 2
        assert args[2] == "storesync:lock:store-42"
        assert args[3] == "storesync:lock:index"
        assert args[4] == ""
        assert LockRecord.model_validate_json(args[5]).token == "tok-1"
        assert args[6] == 240_000
        assert args[7] == "store-42"

    async def test_compare_and_set_rejected(self, mock_redis: MagicMock) -> None:
        mock_redis.eval.return_value = 0
        store = RedisLockStore(mock_redis)

        assert await store.compare_and_set("store-42", "old", _record()) is False
        assert mock_redis.eval.call_args[0][4] == "old"

    async def test_get_decodes_record(self, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = _record().model_dump_json().encode()
        store = RedisLockStore(mock_redis)

        record = await store.get("store-42")

        assert record is not None
        assert record.owner_id == "sync-a"
        assert record.purpose == "full"

    async def test_delete_if_token(self, mock_redis: MagicMock) -> None:
        store = RedisLockStore(mock_redis)

        assert await store.delete_if_token("store-42", "tok-1") is True
        args = mock_redis.eval.call_args[0]
        assert "DEL" in args[0]
        assert args[4] == "tok-1"

    async def test_list_all_prunes_expired_keys(self, mock_redis: MagicMock) -> None:
        mock_redis.smembers.return_value = {b"store-42"}
        mock_redis.mget.return_value = [None]
        store = RedisLockStore(mock_redis)

        assert await store.list_all() == []
        mock_redis.srem.assert_awaited_once_with("storesync:lock:index", "store-42")

    async def test_client_errors_are_wrapped(self, mock_redis: MagicMock) -> None:
        mock_redis.get.side_effect = RedisConnectionError("down")
        store = RedisLockStore(mock_redis)

        with pytest.raises(RedisStoreError, match="GET"):
            await store.get("store-42")

    async def test_lock_manager_over_redis(self, mock_redis: MagicMock) -> None:
        manager = LockManager(RedisLockStore(mock_redis), clock=lambda: 1000.0)

        acquisition = await manager.acquire("store-42", purpose="full")

        assert acquisition.granted
        assert mock_redis.eval.call_args[0][4] == ""
        assert LockRecord.model_validate_json(mock_redis.eval.call_args[0][5]).token == (
            acquisition.token
        )

    async def test_lock_manager_reports_holder(self, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = _record(acquired_at=990.0).model_dump_json()
        manager = LockManager(RedisLockStore(mock_redis), clock=lambda: 1000.0)

        acquisition = await manager.acquire("store-42")

        assert not acquisition.granted
        assert acquisition.holder_age == pytest.approx(10.0)
        assert acquisition.holder_purpose == "full"
        mock_redis.eval.assert_not_called()


@pytest.mark.asyncio
class TestRedisCircuitBreakerStore:
    async def test_first_write_expects_absent(self, mock_redis: MagicMock) -> None:
        store = RedisCircuitBreakerStore(mock_redis)
        state = CircuitBreakerState(key="remote:store-42", version=1)

        assert await store.compare_and_set(state, None) is True
        args = mock_redis.eval.call_args[0]
        assert args[2] == "storesync:breaker:remote:store-42"
        assert args[4] == ""
        assert args[6] == "remote:store-42"

    async def test_versioned_write(self, mock_redis: MagicMock) -> None:
        mock_redis.eval.return_value = 0
        store = RedisCircuitBreakerStore(mock_redis)
        state = CircuitBreakerState(key="k", state=CircuitState.OPEN, version=4)

        assert await store.compare_and_set(state, 3) is False
        assert mock_redis.eval.call_args[0][4] == "3"

    async def test_list_all(self, mock_redis: MagicMock) -> None:
        state = CircuitBreakerState(key="k", consecutive_failures=2, version=2)
        mock_redis.smembers.return_value = {"k"}
        mock_redis.mget.return_value = [state.model_dump_json()]
        store = RedisCircuitBreakerStore(mock_redis)

        states = await store.list_all()

        assert [s.consecutive_failures for s in states] == [2]


@pytest.mark.asyncio
class TestRedisJobHistory:
    def _result(self, job_id: str) -> JobResult:
        return JobResult(
            job_id=job_id,
            job_type="sync",
            status=JobStatus.COMPLETED,
            started_at=1.0,
            finished_at=2.0,
            execution_time=1.0,
        )

    async def test_record_trims_to_max_size(self, mock_redis: MagicMock) -> None:
        history = RedisJobHistory(mock_redis, max_size=3)

        await history.record(self._result("job-1"))

        args = mock_redis.eval.call_args[0]
        assert "LTRIM" in args[0]
        assert args[2:5] == ("storesync:jobs:results", "storesync:jobs:order", "job-1")
        assert args[6] == 3

    async def test_recent_reads_newest_first(self, mock_redis: MagicMock) -> None:
        mock_redis.lrange.return_value = [b"job-2", b"job-1"]
        mock_redis.hmget.return_value = [
            self._result("job-2").model_dump_json(),
            self._result("job-1").model_dump_json(),
        ]
        history = RedisJobHistory(mock_redis)

        results = await history.recent(limit=2)

        assert [r.job_id for r in results] == ["job-2", "job-1"]
        mock_redis.lrange.assert_awaited_once_with("storesync:jobs:order", 0, 1)

    async def test_clear_returns_count(self, mock_redis: MagicMock) -> None:
        mock_redis.llen.return_value = 7
        history = RedisJobHistory(mock_redis)

        assert await history.clear() == 7
        mock_redis.delete.assert_awaited_once_with(
            "storesync:jobs:results", "storesync:jobs:order"
        )


def test_job_history_rejects_empty_size(mock_redis: MagicMock) -> None:
    with pytest.raises(ValueError, match="max_size"):
        RedisJobHistory(mock_redis, max_size=0)
