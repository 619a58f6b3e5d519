"""RedisCircuitBreakerStore — breaker counters shared across processes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from storesync_core.domain.circuit import CircuitBreakerState
from storesync_core.ports.circuit_breaker import ICircuitBreakerStore

from .exceptions import RedisStoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

# KEYS[1]=state key, KEYS[2]=index set
# ARGV[1]=expected version ('' = absent), ARGV[2]=state json, ARGV[3]=breaker key
_COMPARE_AND_SET = """
local current = redis.call('GET', KEYS[1])
if current then
    if ARGV[1] == '' then
        return 0
    end
    local ok, decoded = pcall(cjson.decode, current)
    if not ok or tostring(decoded['version']) ~= ARGV[1] then
        return 0
    end
elseif ARGV[1] ~= '' then
    return 0
end
redis.call('SET', KEYS[1], ARGV[2])
redis.call('SADD', KEYS[2], ARGV[3])
return 1
"""


class RedisCircuitBreakerStore(ICircuitBreakerStore):
    """Versioned breaker states; the version check runs inside Redis."""

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "storesync:breaker",
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:index"

    async def get(self, key: str) -> CircuitBreakerState | None:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as exc:
            raise RedisStoreError("GET", self._key(key), exc) from exc
        return CircuitBreakerState.model_validate_json(raw) if raw else None

    async def compare_and_set(
        self,
        state: CircuitBreakerState,
        expected_version: int | None,
    ) -> bool:
        expected = "" if expected_version is None else str(expected_version)
        try:
            result = await self._redis.eval(
                _COMPARE_AND_SET,
                2,
                self._key(state.key),
                self._index_key,
                expected,
                state.model_dump_json(),
                state.key,
            )
        except RedisError as exc:
            raise RedisStoreError("compare-and-set", self._key(state.key), exc) from exc
        return bool(result)

    async def delete(self, key: str) -> bool:
        removed = await self._redis.delete(self._key(key))
        await self._redis.srem(self._index_key, key)
        return bool(removed)

    async def list_all(self) -> list[CircuitBreakerState]:
        members = [
            m.decode("utf-8") if isinstance(m, bytes) else m
            for m in await self._redis.smembers(self._index_key)
        ]
        if not members:
            return []
        values = await self._redis.mget([self._key(m) for m in members])
        return [CircuitBreakerState.model_validate_json(raw) for raw in values if raw]
