"""Per-call options of the sync coordinator."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..consistency.checker import CheckLevel
from ..domain.snapshot import Snapshot


class SyncOptions(BaseModel):
    """Overrides for one ``run_sync`` / ``run_sync_with_retry`` call.

    ``None`` means "use the coordinator's configured default".
    ``consistency_checks`` defaults per kind: on for full and cleanup syncs,
    off for incremental ones.
    """

    model_config = ConfigDict(frozen=True)

    credentials: dict[str, Any] | None = None
    job_id: str | None = None
    include_database: bool = True
    include_vectors: bool = True
    consistency_checks: bool | None = None
    consistency_level: str | None = None
    verify_fields: tuple[str, ...] | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    retry_delay: float | None = Field(default=None, ge=0.0)
    max_lock_waits: int = Field(default=10, ge=0)
    timeout: float | None = Field(default=None, gt=0.0)
    lock_ttl: float | None = Field(default=None, gt=0.0)
    force: bool = False
    purpose: str | None = None

    @field_validator("consistency_level")
    @classmethod
    def validate_consistency_level(cls, v: str | None) -> str | None:
        if v is None:
            return v
        levels = [level.value for level in CheckLevel]
        if v not in levels:
            raise ValueError(f"consistency_level must be one of {levels}, got {v!r}")
        return v

    @field_validator("verify_fields")
    @classmethod
    def validate_verify_fields(
        cls, v: tuple[str, ...] | None
    ) -> tuple[str, ...] | None:
        if v is None:
            return v
        unknown = [path for path in v if not Snapshot.is_resolvable(path)]
        if unknown:
            raise ValueError(
                f"Unsupported verify field paths {unknown}; use store.<attr>, "
                "<collection>.count or <collection>.ids"
            )
        return v
