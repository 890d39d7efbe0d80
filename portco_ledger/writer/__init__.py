"""Writer module for ledger and conflict exports (Excel, CSV)."""

from portco_ledger.writer.ledger_export import (
    change_log_frame,
    conflicts_frame,
    facts_frame,
    pivot_frame,
    write_conflicts_csv,
    write_ledger_csv,
    write_ledger_workbook,
)

__all__ = [
    "change_log_frame",
    "conflicts_frame",
    "facts_frame",
    "pivot_frame",
    "write_conflicts_csv",
    "write_ledger_csv",
    "write_ledger_workbook",
]
