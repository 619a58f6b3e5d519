"""SyncTransactionResult — the only thing coordinator callers ever see."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..primitives.exceptions import SyncError, SyncErrorCode
from .transaction import SyncKind, SyncMetrics, SyncPhase


class SyncErrorInfo(BaseModel):
    """Programmatic description of a failure.

    ``cause`` is set when the reported error hides another one, e.g. a
    partial rollback failure caused by a remote error.
    """

    model_config = ConfigDict(frozen=True)

    code: SyncErrorCode
    message: str
    retryable: bool = False
    cause: SyncErrorInfo | None = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        retryable: bool,
        cause: SyncErrorInfo | None = None,
    ) -> SyncErrorInfo:
        code = exc.code if isinstance(exc, SyncError) else SyncErrorCode.UNKNOWN
        return cls(
            code=code,
            message=str(exc) or type(exc).__name__,
            retryable=retryable,
            cause=cause,
        )


class SyncTransactionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    sync_id: str | None = None
    resource_id: str
    kind: SyncKind
    phase: SyncPhase
    attempt: int = 1
    operations: list[str] = Field(default_factory=list)
    rollback_operations: list[str] = Field(default_factory=list)
    error: SyncErrorInfo | None = None
    execution_time: float = 0.0
    consistency_score: float | None = None
    metrics: SyncMetrics = Field(default_factory=SyncMetrics)

    @property
    def error_code(self) -> SyncErrorCode | None:
        return self.error.code if self.error else None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)
