"""RetryPolicy — backoff and retryability decisions."""

from __future__ import annotations

import asyncio
import random
from enum import Enum

from pydantic import BaseModel, Field

from ..primitives.exceptions import (
    JobTimeoutError,
    LockConflictError,
    StepTimeoutError,
    TransientRemoteError,
)


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientRemoteError,
    LockConflictError,
    StepTimeoutError,
    JobTimeoutError,
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Network timeouts, 5xx and a busy lock are transient; anything else is not.

    Unknown exception types are classified as permanent so a programming
    error is never retried into the remote platform.
    """
    if isinstance(exc, _TRANSIENT_TYPES):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class RetryPolicy(BaseModel):
    """Exponential backoff: ``base_delay * 2**attempt`` capped at ``max_delay``.

    ``attempt`` is the zero-based number of failures observed so far, so the
    first retry waits ``base_delay``. After ``max_attempts`` total attempts
    the operation is permanently failed.
    """

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    jitter: bool = False

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** max(attempt, 0)), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)  # noqa: S311
        return delay

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind is ErrorKind.TRANSIENT

    def should_retry(self, kind: ErrorKind, attempts_made: int) -> bool:
        """Whether another attempt is allowed after *attempts_made* attempts."""
        return self.is_retryable(kind) and attempts_made < self.max_attempts

    def with_overrides(
        self,
        *,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> RetryPolicy:
        updates: dict[str, object] = {}
        if max_attempts is not None:
            updates["max_attempts"] = max_attempts
        if base_delay is not None:
            updates["base_delay"] = base_delay
        return self.model_copy(update=updates) if updates else self
