"""Data types shared by the extraction stages.

Classes
-------
RowLabelEntry
    One candidate label cell found by the row label scan.
SourceLocation
    Provenance of an extracted value (sheet/cell or page).
NormalizedLineItem
    One numeric fact read from a document, before reconciliation.
SheetCoordinates
    Resolved metric rows, column periods and column scenarios of one sheet.
CoordinateMap
    ``SheetCoordinates`` for every sheet of a document.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

__all__ = [
    "CoordinateMap",
    "NormalizedLineItem",
    "RowLabelEntry",
    "Scenario",
    "SheetCoordinates",
    "SourceLocation",
]

Scenario = Literal["actual", "budget"]


@dataclass(frozen=True)
class RowLabelEntry:
    """A label cell in one of the left-most columns of a sheet.

    Attributes
    ----------
    sheet : str
        Sheet name.
    row : int
        1-based row number.
    label : str
        Cell text, stripped.
    column : str
        Column letter the label was found in.
    """

    sheet: str
    row: int
    label: str
    column: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SourceLocation:
    """Where an extracted value came from.

    Spreadsheet values carry ``sheet`` and ``cell``; page-oriented reports
    carry ``page``. Whole-document fallback values carry only a ``note``.
    """

    file_type: str
    sheet: str | None = None
    cell: str | None = None
    page: int | None = None
    bbox: tuple[float, float, float, float] | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, dropping unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class NormalizedLineItem:
    """One metric value for one period and scenario, with provenance."""

    metric_id: str
    amount: float
    period_date: str
    scenario: Scenario
    source_location: SourceLocation
    confidence: float = 1.0
    raw_value: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.metric_id, self.period_date, self.scenario)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_id": self.metric_id,
            "amount": self.amount,
            "period_date": self.period_date,
            "scenario": self.scenario,
            "source_location": self.source_location.to_dict(),
            "confidence": self.confidence,
            "raw_value": self.raw_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NormalizedLineItem:
        location = dict(data.get("source_location") or {})
        if location.get("bbox") is not None:
            location["bbox"] = tuple(location["bbox"])
        return cls(
            metric_id=data["metric_id"],
            amount=float(data["amount"]),
            period_date=data["period_date"],
            scenario=data["scenario"],
            source_location=SourceLocation(**location),
            confidence=float(data.get("confidence", 1.0)),
            raw_value=data.get("raw_value"),
        )


@dataclass
class SheetCoordinates:
    """Coordinate map of a single sheet.

    Attributes
    ----------
    metric_rows : dict[str, int]
        Metric id to 1-based row number.
    column_dates : dict[str, str]
        Column letter to ISO period date.
    actual_columns : set[str]
        Columns labelled as actuals only.
    budget_columns : set[str]
        Columns labelled as budget, forecast or plan only.
    ambiguous_columns : set[str]
        Columns labelled both ways; tagged neither and never read.
    """

    metric_rows: dict[str, int] = field(default_factory=dict)
    column_dates: dict[str, str] = field(default_factory=dict)
    actual_columns: set[str] = field(default_factory=set)
    budget_columns: set[str] = field(default_factory=set)
    ambiguous_columns: set[str] = field(default_factory=set)

    def scenario_columns(self) -> list[tuple[str, Scenario]]:
        """Return unambiguous tagged columns with their scenario, sorted by letter."""
        excluded = self.ambiguous_columns | (self.actual_columns & self.budget_columns)
        tagged: list[tuple[str, Scenario]] = [(col, "actual") for col in self.actual_columns - excluded]
        tagged += [(col, "budget") for col in self.budget_columns - excluded]
        return sorted(tagged, key=lambda item: (len(item[0]), item[0]))

    def is_empty(self) -> bool:
        return not self.metric_rows or not (self.actual_columns or self.budget_columns)


@dataclass
class CoordinateMap:
    """Per-sheet coordinates for one document."""

    sheets: dict[str, SheetCoordinates] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """``True`` when no sheet has both metric rows and tagged columns."""
        return all(coords.is_empty() for coords in self.sheets.values())

    def resolved_metrics(self) -> set[str]:
        return {metric for coords in self.sheets.values() for metric in coords.metric_rows}

    def to_dict(self) -> dict[str, Any]:
        return {
            name: {
                "metric_rows": dict(coords.metric_rows),
                "column_dates": dict(coords.column_dates),
                "actual_columns": sorted(coords.actual_columns),
                "budget_columns": sorted(coords.budget_columns),
                "ambiguous_columns": sorted(coords.ambiguous_columns),
            }
            for name, coords in self.sheets.items()
        }
