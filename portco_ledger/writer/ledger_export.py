"""Ledger snapshot and conflict report export.

Workbook layout (``<company>_ledger.xlsx``):

* ``Ledger``: one row per fact (metric, period, scenario, amount, source,
  priority, explanation, number of changes)
* ``Pivot``: metrics as rows, ``<period> <scenario>`` as columns
* ``Change Log``: every change-log entry of every fact
* ``Conflicts``: conflicts of the last run, when given
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

from portco_ledger.config import DATA_DIR, setup_logging

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from portco_ledger.ledger.types import ConflictEntry, FactRecord

logger = setup_logging(__name__)

__all__ = [
    "change_log_frame",
    "conflicts_frame",
    "facts_frame",
    "pivot_frame",
    "write_conflicts_csv",
    "write_ledger_csv",
    "write_ledger_workbook",
]

_FACT_COLUMNS = [
    "metric_id",
    "period_date",
    "scenario",
    "amount",
    "source_file",
    "priority",
    "explanation",
    "changes",
]


def facts_frame(facts: Iterable[FactRecord]) -> pd.DataFrame:
    """One row per fact, sorted by metric, period, scenario."""
    rows = [
        {
            "metric_id": fact.metric_id,
            "period_date": fact.period_date,
            "scenario": fact.scenario,
            "amount": fact.amount,
            "source_file": fact.source_file,
            "priority": fact.priority,
            "explanation": fact.explanation,
            "changes": len(fact.change_log),
        }
        for fact in facts
    ]
    df = pd.DataFrame(rows, columns=_FACT_COLUMNS)
    return df.sort_values(["metric_id", "period_date", "scenario"], ignore_index=True)


def pivot_frame(facts: Iterable[FactRecord]) -> pd.DataFrame:
    """Metrics as rows, ``<period> <scenario>`` columns in chronological order."""
    df = facts_frame(facts)
    if df.empty:
        return pd.DataFrame()
    df["column"] = df["period_date"] + " " + df["scenario"]
    pivot = df.pivot_table(index="metric_id", columns="column", values="amount", aggfunc="first")
    return pivot.reindex(sorted(pivot.columns), axis=1).reset_index()


def change_log_frame(facts: Iterable[FactRecord]) -> pd.DataFrame:
    """Every change-log entry, oldest first within each fact."""
    rows = [
        {
            "metric_id": fact.metric_id,
            "period_date": fact.period_date,
            "scenario": fact.scenario,
            **entry.to_dict(),
        }
        for fact in facts
        for entry in fact.change_log
    ]
    return pd.DataFrame(rows)


def conflicts_frame(conflicts: Iterable[ConflictEntry]) -> pd.DataFrame:
    """Conflicts ordered high → medium → low severity."""
    df = pd.DataFrame([c.to_dict() for c in conflicts])
    if df.empty:
        return df
    order = {"high": 0, "medium": 1, "low": 2}
    df["_rank"] = df["severity"].map(order)
    return df.sort_values(["_rank", "metric_id", "period"]).drop(columns="_rank").reset_index(drop=True)


def write_ledger_workbook(
    company: str,
    facts: Iterable[FactRecord],
    conflicts: Iterable[ConflictEntry] = (),
    output_dir: Path | None = None,
) -> Path:
    """Write the ledger (and optional conflicts) to an Excel workbook.

    Returns
    -------
    Path
        ``<output_dir>/<company>_ledger.xlsx`` (default ``DATA_DIR/output``).
    """
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    save_dir.mkdir(parents=True, exist_ok=True)
    filepath = save_dir / f"{company}_ledger.xlsx"

    facts = list(facts)
    conflict_df = conflicts_frame(conflicts)

    with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
        facts_frame(facts).to_excel(writer, sheet_name="Ledger", index=False)
        pivot = pivot_frame(facts)
        if not pivot.empty:
            pivot.to_excel(writer, sheet_name="Pivot", index=False)
        change_log_frame(facts).to_excel(writer, sheet_name="Change Log", index=False)
        if not conflict_df.empty:
            conflict_df.to_excel(writer, sheet_name="Conflicts", index=False)

    logger.info(f"Ledger workbook saved: {filepath} ({len(facts)} facts, {len(conflict_df)} conflicts)")
    return filepath


def write_ledger_csv(company: str, facts: Iterable[FactRecord], output_dir: Path | None = None) -> Path:
    """Write one row per fact to ``<company>_ledger.csv``."""
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    save_dir.mkdir(parents=True, exist_ok=True)
    filepath = save_dir / f"{company}_ledger.csv"
    facts_frame(facts).to_csv(filepath, index=False)
    logger.info(f"Ledger CSV saved: {filepath}")
    return filepath


def write_conflicts_csv(company: str, conflicts: Iterable[ConflictEntry], output_dir: Path | None = None) -> Path:
    """Write the conflict report to ``<company>_conflicts.csv``."""
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    save_dir.mkdir(parents=True, exist_ok=True)
    filepath = save_dir / f"{company}_conflicts.csv"
    conflicts_frame(conflicts).to_csv(filepath, index=False)
    logger.info(f"Conflict report saved: {filepath}")
    return filepath
