"""ILockStore — storage seam behind the LockManager.

The in-memory store gives mutual exclusion inside one process only. Any
deployment running more than one instance must pass a shared store (e.g.
``storesync_redis.RedisLockStore``) or two instances can sync the same
resource concurrently.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.lock import LockRecord


@runtime_checkable
class ILockStore(Protocol):
    """
    Atomic storage of one ``LockRecord`` per resource id.

    Every mutation is a compare-and-set against the current holder's token,
    so the manager never overwrites a lock it did not observe.
    """

    async def get(self, resource_id: str) -> LockRecord | None:
        """Return the current record, expired or not, or ``None``."""
        ...

    async def compare_and_set(
        self,
        resource_id: str,
        expected_token: str | None,
        record: LockRecord,
    ) -> bool:
        """
        Store *record* if the current holder's token equals *expected_token*.

        Args:
            resource_id: Resource whose lock is written.
            expected_token: Token observed by the caller, ``None`` meaning
                "no record exists".
            record: The new lock record.

        Returns:
            ``True`` if the write happened, ``False`` if another writer won.
        """
        ...

    async def delete_if_token(self, resource_id: str, token: str) -> bool:
        """Delete the record only if it is held with *token*."""
        ...

    async def delete(self, resource_id: str) -> LockRecord | None:
        """Unconditionally delete the record, returning what was removed."""
        ...

    async def list_all(self) -> list[LockRecord]:
        """All stored records, for monitoring."""
        ...
