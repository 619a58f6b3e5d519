"""RedisLockStore — ILockStore shared by every process using the same Redis."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from storesync_core.domain.lock import LockRecord
from storesync_core.ports.locking import ILockStore

from .exceptions import RedisStoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("storesync.redis.locking")

# KEYS[1]=lock key, KEYS[2]=index set
# ARGV[1]=expected token ('' = absent), ARGV[2]=record json,
# ARGV[3]=expiry ms, ARGV[4]=resource id
_COMPARE_AND_SET = """
local current = redis.call('GET', KEYS[1])
if current then
    local ok, decoded = pcall(cjson.decode, current)
    if not ok or decoded['token'] ~= ARGV[1] then
        return 0
    end
elseif ARGV[1] ~= '' then
    return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'PX', tonumber(ARGV[3]))
redis.call('SADD', KEYS[2], ARGV[4])
return 1
"""

# KEYS[1]=lock key, KEYS[2]=index set, ARGV[1]=token, ARGV[2]=resource id
_DELETE_IF_TOKEN = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
local ok, decoded = pcall(cjson.decode, current)
if not ok or decoded['token'] ~= ARGV[1] then
    return 0
end
redis.call('DEL', KEYS[1])
redis.call('SREM', KEYS[2], ARGV[2])
return 1
"""

# KEYS[1]=lock key, KEYS[2]=index set, ARGV[1]=resource id
_DELETE = """
local current = redis.call('GET', KEYS[1])
if current then
    redis.call('DEL', KEYS[1])
end
redis.call('SREM', KEYS[2], ARGV[1])
return current
"""


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisLockStore(ILockStore):
    """
    One JSON-encoded :class:`LockRecord` per resource key.

    Writes are Lua compare-and-set scripts keyed on the holder's token, so
    two processes can never both replace the same observed holder. Keys
    outlive the lock TTL by ``stale_retention`` seconds so the next
    acquirer still sees an expired record and logs the reclamation.
    """

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        prefix: str = "storesync:lock",
        stale_retention: float = 3600.0,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._stale_retention = stale_retention

    def _key(self, resource_id: str) -> str:
        return f"{self._prefix}:{resource_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:index"

    async def get(self, resource_id: str) -> LockRecord | None:
        try:
            raw = await self._redis.get(self._key(resource_id))
        except RedisError as exc:
            raise RedisStoreError("GET", self._key(resource_id), exc) from exc
        return LockRecord.model_validate_json(raw) if raw else None

    async def compare_and_set(
        self,
        resource_id: str,
        expected_token: str | None,
        record: LockRecord,
    ) -> bool:
        expiry_ms = int((record.ttl + self._stale_retention) * 1000)
        try:
            result = await self._redis.eval(
                _COMPARE_AND_SET,
                2,
                self._key(resource_id),
                self._index_key,
                expected_token or "",
                record.model_dump_json(),
                expiry_ms,
                resource_id,
            )
        except RedisError as exc:
            raise RedisStoreError("compare-and-set", self._key(resource_id), exc) from exc
        return bool(result)

    async def delete_if_token(self, resource_id: str, token: str) -> bool:
        try:
            result = await self._redis.eval(
                _DELETE_IF_TOKEN,
                2,
                self._key(resource_id),
                self._index_key,
                token,
                resource_id,
            )
        except RedisError as exc:
            raise RedisStoreError("release", self._key(resource_id), exc) from exc
        return bool(result)

    async def delete(self, resource_id: str) -> LockRecord | None:
        try:
            raw = await self._redis.eval(
                _DELETE, 2, self._key(resource_id), self._index_key, resource_id
            )
        except RedisError as exc:
            raise RedisStoreError("DEL", self._key(resource_id), exc) from exc
        return LockRecord.model_validate_json(raw) if raw else None

    async def list_all(self) -> list[LockRecord]:
        members = [_text(m) for m in await self._redis.smembers(self._index_key)]
        if not members:
            return []
        values = await self._redis.mget([self._key(m) for m in members])
        records: list[LockRecord] = []
        gone: list[str] = []
        for resource_id, raw in zip(members, values, strict=True):
            if raw:
                records.append(LockRecord.model_validate_json(raw))
            else:
                gone.append(resource_id)
        if gone:
            await self._redis.srem(self._index_key, *gone)
            logger.debug("Pruned %d expired lock keys from index", len(gone))
        return records
