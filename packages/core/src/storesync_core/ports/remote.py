"""Ports for the remote e-commerce platform and its credentials."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..domain.snapshot import Snapshot


@runtime_checkable
class IRemotePlatform(Protocol):
    """
    Read-only access to the platform the data originates from.

    Implementations must raise ``AuthError``, ``NotFoundError`` or
    ``TransientError`` (from ``storesync_core.primitives``) so the
    coordinator can tell retryable failures from permanent ones. Anything
    else is treated as permanent.
    """

    async def fetch_snapshot(
        self,
        resource_id: str,
        credentials: Mapping[str, Any] | None,
    ) -> Snapshot: ...


@runtime_checkable
class ICredentialsProvider(Protocol):
    """Looks up platform credentials (e.g. an access token) for a resource."""

    async def get_credentials(self, resource_id: str) -> Mapping[str, Any] | None: ...
