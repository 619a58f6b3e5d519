"""RedisJobHistory — bounded job history visible to every instance."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from storesync_core.domain.job import JobResult
from storesync_core.ports.job_history import IJobHistoryStore

from .exceptions import RedisStoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("storesync.redis.jobs")

# KEYS[1]=results hash, KEYS[2]=order list
# ARGV[1]=job id, ARGV[2]=result json, ARGV[3]=max size
_RECORD = """
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
redis.call('LREM', KEYS[2], 0, ARGV[1])
redis.call('LPUSH', KEYS[2], ARGV[1])
local limit = tonumber(ARGV[3])
local evicted = redis.call('LRANGE', KEYS[2], limit, -1)
for _, id in ipairs(evicted) do
    redis.call('HDEL', KEYS[1], id)
end
redis.call('LTRIM', KEYS[2], 0, limit - 1)
return #evicted
"""


class RedisJobHistory(IJobHistoryStore):
    """Results in a hash, newest-first ids in a list trimmed to ``max_size``."""

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "storesync:jobs",
        max_size: int = 100,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._redis = redis
        self._results_key = f"{prefix}:results"
        self._order_key = f"{prefix}:order"
        self._max_size = max_size

    async def record(self, result: JobResult) -> None:
        try:
            evicted = await self._redis.eval(
                _RECORD,
                2,
                self._results_key,
                self._order_key,
                result.job_id,
                result.model_dump_json(),
                self._max_size,
            )
        except RedisError as exc:
            raise RedisStoreError("record", self._results_key, exc) from exc
        if evicted:
            logger.debug("Evicted %s job results from history", evicted)

    async def get(self, job_id: str) -> JobResult | None:
        raw = await self._redis.hget(self._results_key, job_id)
        return JobResult.model_validate_json(raw) if raw else None

    async def recent(self, limit: int | None = None) -> list[JobResult]:
        count = self._max_size if limit is None else min(limit, self._max_size)
        if count <= 0:
            return []
        ids = await self._redis.lrange(self._order_key, 0, count - 1)
        if not ids:
            return []
        values = await self._redis.hmget(self._results_key, ids)
        return [JobResult.model_validate_json(raw) for raw in values if raw]

    async def clear(self) -> int:
        count = int(await self._redis.llen(self._order_key))
        await self._redis.delete(self._results_key, self._order_key)
        return count
