"""Fact reconciliation: merge candidate facts into a company ledger.

Decision per ``(metric_id, period_date, scenario)`` key
-------------------------------------------------------
* no stored fact → insert, change log seeded with ``"Initial import"``
* same amount → nothing (no change-log entry)
* candidate already recorded in the change log (same source file and amount)
  → nothing, so re-applying a batch is a no-op
* otherwise compare the candidate's effective priority (document type base
  priority + explanation boost) with the stored fact's priority:

  - higher → overwrite
  - lower → keep; a low-severity conflict is recorded if the candidate carries
    an explanation
  - equal → more than ``rounding_tolerance`` apart: a restatement/correction
    wins with a medium conflict, anything else wins (later arrival) with a high
    conflict; within tolerance: silent rounding update

A candidate that wins on priority only because of a restatement/correction
over a fact from the same document-type tier is still reported as a medium
conflict when the amounts differ by more than the tolerance.

Candidates are processed in the order given; for equal priorities the later
candidate in that order wins.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from portco_ledger.config import setup_logging
from portco_ledger.ledger.priority import AUTHORITATIVE_EXPLANATIONS, PriorityRules
from portco_ledger.ledger.types import (
    AppliedChange,
    ChangeLogEntry,
    ConflictEntry,
    FactRecord,
    ReconciliationResult,
    ReconciliationSummary,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from portco_ledger.ledger.types import FactCandidate, FactKey, Severity, VarianceExplanation

logger = setup_logging(__name__)

__all__ = ["reconcile_facts", "relative_variance"]

_RECOMMENDATIONS = {"high": "manual_review", "medium": "use_new", "low": "keep_existing"}


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


def _same_amount(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)


def relative_variance(old: float, new: float) -> float:
    """``|new - old| / |old|``; any change from zero counts as 100 %."""
    if old == 0:
        return 0.0 if new == 0 else 1.0
    return abs((new - old) / old)


def _is_replay(fact: FactRecord, candidate: FactCandidate) -> bool:
    """True when the latest change from this source file already recorded this amount."""
    for entry in reversed(fact.change_log):
        if entry.source_file == candidate.source_file:
            return _same_amount(entry.new_value, candidate.amount)
    return False


def _conflict(
    fact: FactRecord,
    candidate: FactCandidate,
    severity: Severity,
    explanation: VarianceExplanation | None,
) -> ConflictEntry:
    return ConflictEntry(
        metric_id=candidate.metric_id,
        period=candidate.period_date,
        scenario=candidate.scenario,
        existing_value=fact.amount,
        new_value=candidate.amount,
        existing_source=fact.source_file,
        new_source=candidate.source_file,
        severity=severity,
        recommendation=_RECOMMENDATIONS[severity],  # type: ignore[arg-type]
        existing_explanation=fact.explanation,
        new_explanation=explanation.explanation if explanation else None,
    )


def reconcile_facts(
    candidates: Iterable[FactCandidate],
    existing: Mapping[FactKey, FactRecord] | Iterable[FactRecord] = (),
    explanations: Iterable[VarianceExplanation] = (),
    rules: PriorityRules | None = None,
    clock: Callable[[], str] = _utc_now,
) -> ReconciliationResult:
    """Merge candidate facts into an existing ledger.

    Parameters
    ----------
    candidates : Iterable[FactCandidate]
        Incoming facts in arrival order.
    existing : Mapping[FactKey, FactRecord] | Iterable[FactRecord]
        Current ledger; not modified.
    explanations : Iterable[VarianceExplanation]
        Commentary per metric id; the last explanation for a metric applies.
    rules : PriorityRules, optional
        Defaults to :meth:`PriorityRules.from_config`.
    clock : Callable[[], str]
        Timestamp source for change-log entries.

    Returns
    -------
    ReconciliationResult
        New ledger, applied changes, conflicts and counts.
    """
    rules = rules or PriorityRules.from_config()
    if isinstance(existing, Mapping):
        facts: dict[FactKey, FactRecord] = dict(existing)
    else:
        facts = {f.key: f for f in existing}
    explanation_by_metric = {e.metric_id: e for e in explanations}

    changes: list[AppliedChange] = []
    conflicts: list[ConflictEntry] = []
    inserted = updated = ignored = unchanged = 0

    for candidate in candidates:
        key = candidate.key
        explanation = explanation_by_metric.get(candidate.metric_id)
        explanation_text = explanation.explanation if explanation else None
        base = rules.base_priority(candidate.source_file, candidate.scenario)
        boost = rules.explanation_boost(explanation)
        priority = base + boost
        fact = facts.get(key)

        if fact is None:
            entry = ChangeLogEntry(
                timestamp=clock(),
                old_value=None,
                new_value=candidate.amount,
                reason="Initial import",
                source_file=candidate.source_file,
                explanation=explanation_text,
            )
            facts[key] = FactRecord(
                metric_id=candidate.metric_id,
                period_date=candidate.period_date,
                scenario=candidate.scenario,
                amount=candidate.amount,
                source_file=candidate.source_file,
                priority=priority,
                explanation=explanation_text,
                source_location=candidate.source_location,
                change_log=(entry,),
            )
            changes.append(AppliedChange(key=key, entry=entry))
            inserted += 1
            continue

        if _same_amount(fact.amount, candidate.amount) or _is_replay(fact, candidate):
            unchanged += 1
            continue

        doc_type = rules.detect_document_type(candidate.source_file)
        variance = relative_variance(fact.amount, candidate.amount)
        authoritative = explanation is not None and explanation.explanation_type in AUTHORITATIVE_EXPLANATIONS
        severity: Severity | None = None
        reason = ""

        if priority > fact.priority:
            if boost > 0 and explanation is not None:
                reason = (
                    f"{explanation.explanation_type.upper()} from {doc_type} (priority {priority} > {fact.priority})"
                )
            else:
                reason = f"Higher priority source: {doc_type} ({priority} > {fact.priority})"
            same_tier = rules.base_priority(fact.source_file, fact.scenario) == base
            if authoritative and same_tier and variance > rules.rounding_tolerance:
                severity = "medium"
        elif priority < fact.priority:
            ignored += 1
            if explanation is not None:
                conflicts.append(_conflict(fact, candidate, "low", explanation))
                logger.info("Lower priority value with explanation kept for review: %s", key)
            continue
        elif variance > rules.rounding_tolerance:
            if authoritative and explanation is not None:
                reason = f"Equal priority but {explanation.explanation_type.upper()} takes precedence"
                severity = "medium"
            else:
                reason = "Equal priority - newest file (needs review)"
                severity = "high"
        else:
            reason = "Minor update (rounding)"

        entry = ChangeLogEntry(
            timestamp=clock(),
            old_value=fact.amount,
            new_value=candidate.amount,
            reason=reason,
            source_file=candidate.source_file,
            explanation=explanation_text,
        )
        facts[key] = replace(
            fact,
            amount=candidate.amount,
            source_file=candidate.source_file,
            priority=priority,
            explanation=explanation_text,
            source_location=candidate.source_location,
            change_log=(*fact.change_log, entry),
        )
        changes.append(AppliedChange(key=key, entry=entry))
        updated += 1

        if severity is not None:
            conflicts.append(_conflict(fact, candidate, severity, explanation))
            logger.warning(f"{severity.capitalize()} severity conflict on {key}: {fact.amount} -> {candidate.amount}")

    summary = ReconciliationSummary(
        inserted=inserted,
        updated=updated,
        ignored=ignored,
        unchanged=unchanged,
        conflicts=len(conflicts),
    )
    logger.info(
        f"Reconciled: {inserted} inserted, {updated} updated, {ignored} ignored, "
        f"{unchanged} unchanged, {len(conflicts)} conflicts",
    )
    return ReconciliationResult(
        facts=facts,
        changes=tuple(changes),
        conflicts=tuple(conflicts),
        summary=summary,
    )
