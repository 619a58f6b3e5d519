"""LockManager — named exclusive locks with owner tokens, TTL and reclamation."""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..correlation import get_correlation_id
from ..domain.lock import LockRecord
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import LockConflictError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from ..ports.locking import ILockStore

logger = logging.getLogger("storesync.locking")

_MAX_CAS_ATTEMPTS = 5


@dataclass(frozen=True)
class LockAcquisition:
    """Outcome of :meth:`LockManager.acquire`.

    On conflict ``holder_age`` and ``holder_purpose`` describe the current
    holder so the caller can decide whether to wait or give up.
    """

    granted: bool
    token: str | None = None
    reason: str | None = None
    holder_age: float | None = None
    holder_purpose: str | None = None
    reclaimed: bool = False


@dataclass(frozen=True)
class LockRelease:
    released: bool


class LockManager:
    """
    Exclusive lock per resource id, backed by an :class:`ILockStore`.

    No queueing: a caller that is not granted the lock gets the holder's
    details back and decides on its own backoff. A lock past its TTL is
    reclaimed by the next acquirer and logged as a distinct event, because
    it means the previous holder crashed or timed out.

    Release is guarded by the token handed out on acquire, so a straggling
    release from a timed-out holder can never free a newer holder's lock.
    """

    def __init__(
        self,
        store: ILockStore,
        default_ttl: float = 180.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.default_ttl = default_ttl
        self._clock = clock

    async def acquire(
        self,
        resource_id: str,
        purpose: str = "",
        ttl: float | None = None,
        owner_id: str | None = None,
    ) -> LockAcquisition:
        registry = get_hook_registry()
        result: LockAcquisition = await registry.execute_all(
            "lock.acquire",
            {
                "lock.resource_id": resource_id,
                "lock.purpose": purpose,
                "correlation_id": get_correlation_id(),
            },
            lambda: self._acquire_internal(resource_id, purpose, ttl, owner_id),
        )
        return result

    async def _acquire_internal(
        self,
        resource_id: str,
        purpose: str,
        ttl: float | None,
        owner_id: str | None,
    ) -> LockAcquisition:
        effective_ttl = ttl if ttl is not None else self.default_ttl
        token = uuid.uuid4().hex

        for _ in range(_MAX_CAS_ATTEMPTS):
            now = self._clock()
            current = await self._store.get(resource_id)

            if current is not None and not current.is_expired(now):
                age = current.age(now)
                logger.debug(
                    "Lock on %s held by %s (%s) for %.1fs",
                    resource_id,
                    current.owner_id,
                    current.purpose,
                    age,
                )
                return LockAcquisition(
                    granted=False,
                    reason=f"held by {current.owner_id}",
                    holder_age=age,
                    holder_purpose=current.purpose,
                )

            record = LockRecord(
                resource_id=resource_id,
                owner_id=owner_id or token,
                token=token,
                acquired_at=now,
                ttl=effective_ttl,
                purpose=purpose,
            )
            expected = current.token if current is not None else None
            if not await self._store.compare_and_set(resource_id, expected, record):
                continue

            if current is not None:
                logger.warning(
                    "Stale lock reclaimed on %s: previous owner %s (%s) held it "
                    "for %.1fs, ttl %.1fs",
                    resource_id,
                    current.owner_id,
                    current.purpose,
                    current.age(now),
                    current.ttl,
                    extra={
                        "event": "stale_lock_reclaimed",
                        "resource_id": resource_id,
                        "previous_owner": current.owner_id,
                        "previous_age": current.age(now),
                    },
                )
            else:
                logger.debug("Lock on %s acquired for %s", resource_id, purpose)
            return LockAcquisition(
                granted=True, token=token, reclaimed=current is not None
            )

        return LockAcquisition(granted=False, reason="contention")

    async def release(self, resource_id: str, token: str) -> LockRelease:
        released = await self._store.delete_if_token(resource_id, token)
        if released:
            logger.debug("Lock on %s released", resource_id)
        else:
            logger.debug(
                "Release of %s ignored: token does not match current holder",
                resource_id,
            )
        return LockRelease(released=released)

    async def is_held(self, resource_id: str) -> bool:
        current = await self._store.get(resource_id)
        return current is not None and not current.is_expired(self._clock())

    async def extend(self, resource_id: str, token: str, ttl: float | None = None) -> bool:
        """Heartbeat: restart the TTL of a lock still held with *token*."""
        current = await self._store.get(resource_id)
        if current is None or current.token != token:
            return False
        now = self._clock()
        if current.is_expired(now):
            return False
        renewed = current.model_copy(
            update={
                "acquired_at": now,
                "ttl": ttl if ttl is not None else current.ttl,
            }
        )
        return await self._store.compare_and_set(resource_id, token, renewed)

    async def get_holder(self, resource_id: str) -> LockRecord | None:
        current = await self._store.get(resource_id)
        if current is None or current.is_expired(self._clock()):
            return None
        return current

    async def active_locks(self) -> list[LockRecord]:
        now = self._clock()
        return [r for r in await self._store.list_all() if not r.is_expired(now)]

    async def force_release(self, resource_id: str) -> bool:
        """Administrative unlock regardless of holder."""
        removed = await self._store.delete(resource_id)
        if removed is not None:
            logger.warning(
                "Lock on %s force-released (owner %s, purpose %s)",
                resource_id,
                removed.owner_id,
                removed.purpose,
            )
        return removed is not None

    @contextlib.asynccontextmanager
    async def hold(
        self,
        resource_id: str,
        purpose: str = "",
        ttl: float | None = None,
    ) -> AsyncIterator[str]:
        """Hold the lock for the duration of the block, yielding its token."""
        acquisition = await self.acquire(resource_id, purpose, ttl)
        if not acquisition.granted or acquisition.token is None:
            raise LockConflictError(
                resource_id, acquisition.holder_age, acquisition.holder_purpose
            )
        try:
            yield acquisition.token
        finally:
            await self.release(resource_id, acquisition.token)
