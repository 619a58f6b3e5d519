"""Scriptable in-memory remote platform and credentials provider."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Any

from ...ports.remote import ICredentialsProvider, IRemotePlatform
from ...primitives.exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ...domain.snapshot import Snapshot


class InMemoryRemotePlatform(IRemotePlatform):
    """
    Serves snapshots registered with :meth:`put`.

    Failures can be queued with :meth:`fail_next`; each queued exception is
    raised by one subsequent fetch. ``latency`` delays every fetch, which is
    handy for exercising timeouts and concurrent syncs.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self._snapshots: dict[str, Snapshot] = {}
        self._failures: deque[BaseException] = deque()
        self.latency = latency
        self.fetch_calls: list[str] = []

    def put(self, snapshot: Snapshot) -> None:
        self._snapshots[snapshot.resource_id] = snapshot

    def fail_next(self, *errors: BaseException) -> None:
        self._failures.extend(errors)

    async def fetch_snapshot(
        self,
        resource_id: str,
        credentials: Mapping[str, Any] | None,
    ) -> Snapshot:
        self.fetch_calls.append(resource_id)
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._failures:
            raise self._failures.popleft()
        snapshot = self._snapshots.get(resource_id)
        if snapshot is None:
            raise NotFoundError(f"Resource {resource_id!r} not found on remote platform")
        return snapshot


class StaticCredentialsProvider(ICredentialsProvider):
    def __init__(self, credentials: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._credentials = dict(credentials or {})

    async def get_credentials(self, resource_id: str) -> Mapping[str, Any] | None:
        return self._credentials.get(resource_id)
