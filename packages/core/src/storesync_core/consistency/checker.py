"""ConsistencyChecker — read-only comparison of the synced copies."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_VERIFY_FIELDS
from ..correlation import get_correlation_id
from ..domain.snapshot import Snapshot
from ..instrumentation import get_hook_registry

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from ..ports.relational import IRelationalStore
    from ..ports.remote import IRemotePlatform
    from ..ports.vector_index import IVectorIndex

logger = logging.getLogger("storesync.consistency")

REMOTE = "remote"
RELATIONAL = "relational"
VECTOR = "vector"

REMOTE_VS_RELATIONAL = "remote_vs_relational"
RELATIONAL_VS_VECTOR = "relational_vs_vector"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DiscrepancyType(str, Enum):
    MISSING = "missing"
    OUTDATED = "outdated"
    CORRUPT = "corrupt"
    ORPHANED = "orphaned"


class CheckLevel(str, Enum):
    """How deep a check goes.

    * ``basic`` — existence of the relational record and collection counts.
    * ``standard`` — every requested field, relational vs vector index, and
      remote vs relational when a reference snapshot is supplied.
    * ``comprehensive`` — standard plus entity id sets; fetches the remote
      snapshot itself when no reference is supplied.
    """

    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


FIELD_SEVERITY: dict[str, Severity] = {
    "store.name": Severity.MEDIUM,
    "store.domain": Severity.LOW,
    "store.currency": Severity.MEDIUM,
    "store.language": Severity.LOW,
    "products.count": Severity.HIGH,
    "orders.count": Severity.MEDIUM,
    "customers.count": Severity.MEDIUM,
}

_SUGGESTIONS: dict[tuple[str, str], str] = {
    (REMOTE, RELATIONAL): "Run a full sync to refresh relational data",
    (RELATIONAL, VECTOR): "Re-index the vector database from relational data",
}


class Discrepancy(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: DiscrepancyType
    severity: Severity
    systems: tuple[str, str]
    entity: str
    field: str
    expected: Any = None
    actual: Any = None
    suggested_action: str = ""


class ConsistencyReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: str
    level: CheckLevel
    score: float
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    fields_checked: int = 0
    fields_matching: int = 0
    system_scores: dict[str, float] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    skipped_fields: list[str] = Field(default_factory=list)
    execution_time: float = 0.0
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def count(self, severity: Severity) -> int:
        return sum(1 for d in self.discrepancies if d.severity is severity)

    @property
    def critical(self) -> list[Discrepancy]:
        return [d for d in self.discrepancies if d.severity is Severity.CRITICAL]

    @property
    def high(self) -> list[Discrepancy]:
        return [d for d in self.discrepancies if d.severity is Severity.HIGH]

    @property
    def needs_attention(self) -> bool:
        return self.count(Severity.CRITICAL) > 0 or self.count(Severity.HIGH) > 2


class _Tally:
    """Running counts of one check."""

    def __init__(self, max_discrepancies: int) -> None:
        self.max_discrepancies = max_discrepancies
        self.discrepancies: list[Discrepancy] = []
        self.dropped = 0
        self.pairs: dict[str, list[int]] = {}

    def observe(self, pair: str, matched: bool) -> None:
        checked_matching = self.pairs.setdefault(pair, [0, 0])
        checked_matching[0] += 1
        if matched:
            checked_matching[1] += 1

    def add(self, discrepancy: Discrepancy) -> None:
        if len(self.discrepancies) < self.max_discrepancies:
            self.discrepancies.append(discrepancy)
        else:
            self.dropped += 1

    @property
    def checked(self) -> int:
        return sum(c for c, _ in self.pairs.values())

    @property
    def matching(self) -> int:
        return sum(m for _, m in self.pairs.values())


def _percent(matching: int, checked: int) -> float:
    return 100.0 if checked == 0 else round(100.0 * matching / checked, 2)


class ConsistencyChecker:
    """
    Samples fields across the remote platform, the relational store and the
    vector index and reports discrepancies with severity.

    Never mutates anything, so it is safe inside a transaction's verify
    phase as well as from scheduled audits.
    """

    def __init__(
        self,
        relational: IRelationalStore,
        vector_index: IVectorIndex,
        remote: IRemotePlatform | None = None,
        max_discrepancies: int = 50,
    ) -> None:
        self._relational = relational
        self._vector = vector_index
        self._remote = remote
        self.max_discrepancies = max_discrepancies

    async def check(
        self,
        resource_id: str,
        fields: Sequence[str] = DEFAULT_VERIFY_FIELDS,
        level: CheckLevel | str = CheckLevel.STANDARD,
        *,
        reference: Snapshot | None = None,
        credentials: Mapping[str, Any] | None = None,
        include_vector: bool = True,
    ) -> ConsistencyReport:
        check_level = CheckLevel(level)
        registry = get_hook_registry()
        report: ConsistencyReport = await registry.execute_all(
            "consistency.check",
            {
                "consistency.resource_id": resource_id,
                "consistency.level": check_level.value,
                "correlation_id": get_correlation_id(),
            },
            lambda: self._check_internal(
                resource_id,
                list(fields),
                check_level,
                reference,
                credentials,
                include_vector,
            ),
        )
        return report

    async def _check_internal(
        self,
        resource_id: str,
        fields: list[str],
        level: CheckLevel,
        reference: Snapshot | None,
        credentials: Mapping[str, Any] | None,
        include_vector: bool,
    ) -> ConsistencyReport:
        started = time.monotonic()
        tally = _Tally(self.max_discrepancies)
        skipped = [path for path in fields if not Snapshot.is_resolvable(path)]
        if skipped:
            logger.warning(
                "Skipping unsupported field paths in consistency check of %s: %s",
                resource_id,
                ", ".join(skipped),
            )
            fields = [path for path in fields if path not in skipped]

        current = await self._relational.read_current(resource_id)
        if current is None:
            tally.observe(REMOTE_VS_RELATIONAL, matched=False)
            tally.add(
                Discrepancy(
                    type=DiscrepancyType.MISSING,
                    severity=Severity.CRITICAL,
                    systems=(REMOTE, RELATIONAL),
                    entity="store",
                    field="*",
                    expected="record",
                    actual=None,
                    suggested_action="Run a full sync to create the relational record",
                )
            )
            return self._report(resource_id, level, tally, started, skipped)

        if level is CheckLevel.COMPREHENSIVE and reference is None and self._remote:
            reference = await self._remote.fetch_snapshot(resource_id, credentials)

        sampled = (
            [f for f in fields if f.endswith(".count")]
            if level is CheckLevel.BASIC
            else fields
        )

        if include_vector:
            await self._compare_vector(resource_id, current, sampled, tally)

        if reference is not None and level is not CheckLevel.BASIC:
            for path in sampled:
                self._compare(
                    tally,
                    (REMOTE, RELATIONAL),
                    path,
                    reference.resolve(path),
                    current.resolve(path),
                )
            if level is CheckLevel.COMPREHENSIVE:
                self._compare_entities(reference, current, tally)

        return self._report(resource_id, level, tally, started, skipped)

    async def _compare_vector(
        self,
        resource_id: str,
        current: Snapshot,
        fields: list[str],
        tally: _Tally,
    ) -> None:
        stats = await self._vector.stats(resource_id)
        if stats.total_documents == 0 and not current.is_empty:
            tally.observe(RELATIONAL_VS_VECTOR, matched=False)
            tally.add(
                Discrepancy(
                    type=DiscrepancyType.MISSING,
                    severity=Severity.CRITICAL,
                    systems=(RELATIONAL, VECTOR),
                    entity="index",
                    field="*",
                    expected="documents",
                    actual=0,
                    suggested_action=_SUGGESTIONS[(RELATIONAL, VECTOR)],
                )
            )
        indexed = await self._vector.read_fields(resource_id, fields)
        for path in fields:
            self._compare(
                tally,
                (RELATIONAL, VECTOR),
                path,
                current.resolve(path),
                indexed.get(path),
            )

    def _compare(
        self,
        tally: _Tally,
        systems: tuple[str, str],
        path: str,
        expected: Any,
        actual: Any,
    ) -> None:
        pair = f"{systems[0]}_vs_{systems[1]}"
        matched = expected == actual
        tally.observe(pair, matched)
        if matched:
            return
        missing = expected is None or actual is None
        tally.add(
            Discrepancy(
                type=DiscrepancyType.MISSING if missing else DiscrepancyType.OUTDATED,
                severity=(
                    Severity.HIGH
                    if missing
                    else FIELD_SEVERITY.get(path, Severity.MEDIUM)
                ),
                systems=systems,
                entity=path.partition(".")[0],
                field=path,
                expected=expected,
                actual=actual,
                suggested_action=_SUGGESTIONS[systems],
            )
        )

    def _compare_entities(
        self, reference: Snapshot, current: Snapshot, tally: _Tally
    ) -> None:
        for collection in Snapshot.COLLECTIONS:
            remote_ids = reference.entity_ids(collection)
            local_ids = current.entity_ids(collection)
            for entity_id in sorted(remote_ids - local_ids):
                tally.add(
                    Discrepancy(
                        type=DiscrepancyType.MISSING,
                        severity=Severity.HIGH,
                        systems=(REMOTE, RELATIONAL),
                        entity=collection,
                        field=f"{collection}.{entity_id}",
                        expected=entity_id,
                        suggested_action=_SUGGESTIONS[(REMOTE, RELATIONAL)],
                    )
                )
            for entity_id in sorted(local_ids - remote_ids):
                tally.add(
                    Discrepancy(
                        type=DiscrepancyType.ORPHANED,
                        severity=Severity.MEDIUM,
                        systems=(REMOTE, RELATIONAL),
                        entity=collection,
                        field=f"{collection}.{entity_id}",
                        actual=entity_id,
                        suggested_action="Run a cleanup sync to remove orphaned records",
                    )
                )
            tally.observe(REMOTE_VS_RELATIONAL, matched=remote_ids == local_ids)

    def _report(
        self,
        resource_id: str,
        level: CheckLevel,
        tally: _Tally,
        started: float,
        skipped: list[str],
    ) -> ConsistencyReport:
        system_scores = {
            pair: _percent(matching, checked)
            for pair, (checked, matching) in tally.pairs.items()
        }
        score = _percent(tally.matching, tally.checked)
        report = ConsistencyReport(
            resource_id=resource_id,
            level=level,
            score=score,
            discrepancies=tally.discrepancies,
            fields_checked=tally.checked,
            fields_matching=tally.matching,
            system_scores=system_scores,
            recommendations=self._recommendations(score, system_scores, tally),
            execution_time=time.monotonic() - started,
            skipped_fields=skipped,
        )
        if tally.dropped:
            logger.info(
                "Consistency check for %s truncated %d discrepancies",
                resource_id,
                tally.dropped,
            )
        logger.debug(
            "Consistency check for %s (%s): score %.1f, %d discrepancies",
            resource_id,
            level.value,
            score,
            len(tally.discrepancies),
        )
        return report

    @staticmethod
    def _recommendations(
        score: float,
        system_scores: dict[str, float],
        tally: _Tally,
    ) -> list[str]:
        recommendations: list[str] = []
        if score < 70:
            recommendations.append("Run a full sync to address major consistency issues")
        if system_scores.get(REMOTE_VS_RELATIONAL, 100.0) < 80:
            recommendations.append("Update store data from the remote platform")
        if system_scores.get(RELATIONAL_VS_VECTOR, 100.0) < 80:
            recommendations.append("Re-index the vector database from relational data")
        critical = sum(1 for d in tally.discrepancies if d.severity is Severity.CRITICAL)
        if critical:
            recommendations.append(
                f"Address {critical} critical data integrity issues immediately"
            )
        if not tally.discrepancies:
            recommendations.append(
                "Data consistency is excellent, keep the regular sync schedule"
            )
        return recommendations
