from __future__ import annotations

from .checker import (
    FIELD_SEVERITY,
    CheckLevel,
    ConsistencyChecker,
    ConsistencyReport,
    Discrepancy,
    DiscrepancyType,
    Severity,
)

__all__ = [
    "FIELD_SEVERITY",
    "CheckLevel",
    "ConsistencyChecker",
    "ConsistencyReport",
    "Discrepancy",
    "DiscrepancyType",
    "Severity",
]
