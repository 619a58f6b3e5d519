"""LockRecord — the mutual-exclusion record stored per resource."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class LockRecord(BaseModel):
    """A lock held on ``resource_id``.

    Times are epoch seconds so records can be shared between processes.
    A record past ``expires_at`` is stale and may be reclaimed.
    """

    model_config = ConfigDict(frozen=True)

    resource_id: str
    owner_id: str
    token: str
    acquired_at: float
    ttl: float
    purpose: str = ""

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def age(self, now: float) -> float:
        return max(0.0, now - self.acquired_at)
