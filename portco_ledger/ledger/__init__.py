"""Ledger module: fact records, source priorities, reconciliation, persistence."""

from portco_ledger.ledger.priority import PriorityRules
from portco_ledger.ledger.reconciliation import reconcile_facts, relative_variance
from portco_ledger.ledger.store import JsonLedgerStore
from portco_ledger.ledger.types import (
    AppliedChange,
    ChangeLogEntry,
    ConflictEntry,
    FactCandidate,
    FactRecord,
    ReconciliationResult,
    ReconciliationSummary,
    VarianceExplanation,
)

__all__ = [
    "AppliedChange",
    "ChangeLogEntry",
    "ConflictEntry",
    "FactCandidate",
    "FactRecord",
    "JsonLedgerStore",
    "PriorityRules",
    "ReconciliationResult",
    "ReconciliationSummary",
    "VarianceExplanation",
    "reconcile_facts",
    "relative_variance",
]
