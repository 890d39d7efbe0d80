"""Ledger data types.

A :class:`FactRecord` is the single current value for a
``(metric_id, period_date, scenario)`` key; every value it ever held is kept in
its ``change_log``. :class:`ConflictEntry` objects are produced per
reconciliation run for human review and never stored in the ledger.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

__all__ = [
    "AppliedChange",
    "ChangeLogEntry",
    "ConflictEntry",
    "FactCandidate",
    "FactKey",
    "FactRecord",
    "ReconciliationResult",
    "ReconciliationSummary",
    "VarianceExplanation",
]

FactKey = tuple[str, str, str]
Severity = Literal["high", "medium", "low"]
Recommendation = Literal["manual_review", "use_new", "keep_existing"]


@dataclass(frozen=True)
class ChangeLogEntry:
    """One accepted change to a fact."""

    timestamp: str
    old_value: float | None
    new_value: float
    reason: str
    source_file: str
    explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeLogEntry:
        return cls(
            timestamp=data["timestamp"],
            old_value=data.get("old_value"),
            new_value=float(data["new_value"]),
            reason=data["reason"],
            source_file=data["source_file"],
            explanation=data.get("explanation"),
        )


@dataclass(frozen=True)
class FactRecord:
    """Current ledger value of one metric for one period and scenario."""

    metric_id: str
    period_date: str
    scenario: str
    amount: float
    source_file: str
    priority: int
    explanation: str | None = None
    source_location: dict[str, Any] | None = None
    change_log: tuple[ChangeLogEntry, ...] = ()

    @property
    def key(self) -> FactKey:
        return (self.metric_id, self.period_date, self.scenario)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["change_log"] = [entry.to_dict() for entry in self.change_log]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactRecord:
        return cls(
            metric_id=data["metric_id"],
            period_date=data["period_date"],
            scenario=data["scenario"],
            amount=float(data["amount"]),
            source_file=data["source_file"],
            priority=int(data["priority"]),
            explanation=data.get("explanation"),
            source_location=data.get("source_location"),
            change_log=tuple(ChangeLogEntry.from_dict(e) for e in data.get("change_log", [])),
        )


@dataclass(frozen=True)
class VarianceExplanation:
    """Commentary accompanying a figure (restatement, correction, ...)."""

    metric_id: str
    explanation_type: str
    explanation: str


@dataclass(frozen=True)
class FactCandidate:
    """A canonicalized line item on its way into the ledger."""

    metric_id: str
    period_date: str
    scenario: str
    amount: float
    source_file: str
    source_location: dict[str, Any] | None = None

    @property
    def key(self) -> FactKey:
        return (self.metric_id, self.period_date, self.scenario)


@dataclass(frozen=True)
class AppliedChange:
    """A change-log entry together with the fact it was applied to."""

    key: FactKey
    entry: ChangeLogEntry


@dataclass(frozen=True)
class ConflictEntry:
    """Disagreement between a stored fact and an incoming candidate."""

    metric_id: str
    period: str
    scenario: str
    existing_value: float
    new_value: float
    existing_source: str
    new_source: str
    severity: Severity
    recommendation: Recommendation
    existing_explanation: str | None = None
    new_explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counts of one reconciliation run; summaries add up."""

    inserted: int = 0
    updated: int = 0
    ignored: int = 0
    unchanged: int = 0
    conflicts: int = 0

    def __add__(self, other: ReconciliationSummary) -> ReconciliationSummary:
        return ReconciliationSummary(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            ignored=self.ignored + other.ignored,
            unchanged=self.unchanged + other.unchanged,
            conflicts=self.conflicts + other.conflicts,
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ReconciliationResult:
    """Ledger after a run plus what changed and what needs review."""

    facts: dict[FactKey, FactRecord] = field(default_factory=dict)
    changes: tuple[AppliedChange, ...] = ()
    conflicts: tuple[ConflictEntry, ...] = ()
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)
