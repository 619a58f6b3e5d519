"""Configuration objects passed to the services at construction time."""

from __future__ import annotations

from dataclasses import dataclass, field

from .domain.snapshot import Snapshot

DEFAULT_VERIFY_FIELDS: tuple[str, ...] = (
    "store.name",
    "store.domain",
    "store.currency",
    "products.count",
    "orders.count",
    "customers.count",
)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Policy shared by every breaker key; counters stay per key.

    Attributes:
        failure_threshold: Consecutive failures that open the breaker.
        cooldown: Seconds an open breaker rejects calls before allowing
            a single trial. An unreported trial is re-issued after the
            same period.
    """

    failure_threshold: int = 5
    cooldown: float = 300.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.cooldown < 0:
            raise ValueError("cooldown must not be negative")


@dataclass(frozen=True)
class SyncConfig:
    """Coordinator and job runner settings.

    Attributes:
        idempotency_window: Seconds during which a completed sync of the
            same resource and kind makes a new one a duplicate.
        lock_ttl: Default TTL of the resource lock in seconds.
        job_timeout: Default deadline of a sync job in seconds.
        max_concurrent_jobs: Global ceiling of simultaneously running jobs.
        job_history_size: Number of finished jobs kept for querying.
        step_timeout: Optional deadline for a single saga step.
        verify_fields: Field paths sampled by verification.
        consistency_level: Level used by verification.
        recovery_grace_period: Seconds after which an active transaction
            whose lock is gone is considered abandoned.
    """

    idempotency_window: float = 60.0
    lock_ttl: float = 180.0
    job_timeout: float = 600.0
    max_concurrent_jobs: int = 5
    job_history_size: int = 100
    step_timeout: float | None = None
    verify_fields: tuple[str, ...] = field(default=DEFAULT_VERIFY_FIELDS)
    consistency_level: str = "standard"
    recovery_grace_period: float = 900.0

    def __post_init__(self) -> None:
        for name in ("idempotency_window", "lock_ttl", "job_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if self.job_history_size < 1:
            raise ValueError("job_history_size must be at least 1")
        if self.step_timeout is not None and self.step_timeout <= 0:
            raise ValueError("step_timeout must be positive")
        unknown = [
            path for path in self.verify_fields if not Snapshot.is_resolvable(path)
        ]
        if unknown:
            raise ValueError(f"Unsupported verify field paths {unknown}")
        if self.consistency_level not in ("basic", "standard", "comprehensive"):
            raise ValueError(f"Unknown consistency level {self.consistency_level!r}")
