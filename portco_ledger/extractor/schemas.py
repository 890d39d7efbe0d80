"""Strict parsing of Document Understanding Service responses.

Service payloads are free-form JSON produced by a language model: fields go
missing, numbers arrive as strings, and the JSON itself is sometimes wrapped in
prose or a markdown fence. Everything that crosses into the coordinate mapper
goes through this module first.

Structural responses (schema version 1)
---------------------------------------
``{"sheets": {<name>: {...}}}`` with per-sheet fields:

* required: ``actualColumns`` (list of letters), ``budgetColumns`` (list of
  letters), ``columnDates`` (letter → date)
* optional: ``dateHeaderRow`` (int), ``scenarioLabelRow`` (int),
  ``metricRows`` (metric id → int)

Unknown fields are ignored. A sheet missing a required field is dropped, which
makes the result :attr:`StructuralKind.PARTIAL`; no valid sheet at all makes it
:attr:`StructuralKind.EMPTY`.

Matching responses
------------------
``{"matches": {<metric_id>: {"sheet": str, "row": int}}}``; a match survives
only if ``(sheet, row)`` is present in the row label index.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from portco_ledger.config import setup_logging
from portco_ledger.extractor.grid import letter_to_column
from portco_ledger.extractor.periods import parse_period

if TYPE_CHECKING:
    from portco_ledger.extractor.types import RowLabelEntry

logger = setup_logging(__name__)

__all__ = [
    "STRUCTURAL_SCHEMA_VERSION",
    "SheetStructure",
    "StructuralKind",
    "StructuralResult",
    "extract_json_object",
    "parse_matching_response",
    "parse_structural_response",
]

STRUCTURAL_SCHEMA_VERSION = 1

_REQUIRED_SHEET_FIELDS = ("actualColumns", "budgetColumns", "columnDates")
_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class StructuralKind(Enum):
    """Outcome of parsing a structural response."""

    EMPTY = "empty"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass(frozen=True)
class SheetStructure:
    """Validated structural description of one sheet."""

    actual_columns: frozenset[str]
    budget_columns: frozenset[str]
    column_dates: dict[str, str]
    date_header_row: int | None = None
    scenario_label_row: int | None = None
    metric_rows: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StructuralResult:
    """Tagged structural phase result."""

    kind: StructuralKind
    sheets: dict[str, SheetStructure] = field(default_factory=dict)
    dropped_sheets: tuple[str, ...] = ()
    version: int = STRUCTURAL_SCHEMA_VERSION

    @classmethod
    def empty(cls) -> StructuralResult:
        return cls(kind=StructuralKind.EMPTY)


# =============================================================================
# JSON Extraction
# =============================================================================


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Pull a JSON object out of a model response.

    Tries, in order: the whole text, the first fenced block, and the span
    between the first ``{`` and the last ``}``. Returns ``None`` when none of
    these parse to a JSON object.
    """
    if not text:
        return None

    candidates = [text.strip()]
    fence = _FENCE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


# =============================================================================
# Field Coercion
# =============================================================================


def _as_row(value: Any) -> int | None:
    """Coerce a 1-based row number; anything else is ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 1 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value >= 1 else None
    if isinstance(value, str) and value.strip().isdigit():
        row = int(value.strip())
        return row if row >= 1 else None
    return None


def _as_letter(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    letter = value.strip().upper()
    try:
        letter_to_column(letter)
    except ValueError:
        return None
    return letter


def _as_letters(value: Any) -> frozenset[str] | None:
    if not isinstance(value, list):
        return None
    return frozenset(letter for item in value if (letter := _as_letter(item)))


def _as_column_dates(value: Any) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    dates: dict[str, str] = {}
    for raw_letter, raw_date in value.items():
        letter = _as_letter(raw_letter)
        period = parse_period(raw_date)
        if letter and period:
            dates[letter] = period
    return dates


def _as_metric_rows(value: Any) -> dict[str, int]:
    if not isinstance(value, dict):
        return {}
    return {
        str(metric): row
        for metric, raw_row in value.items()
        if (row := _as_row(raw_row)) is not None
    }


def _parse_sheet(payload: Any) -> SheetStructure | None:
    if not isinstance(payload, dict):
        return None
    if any(name not in payload for name in _REQUIRED_SHEET_FIELDS):
        return None

    actual = _as_letters(payload["actualColumns"])
    budget = _as_letters(payload["budgetColumns"])
    dates = _as_column_dates(payload["columnDates"])
    if actual is None or budget is None or dates is None:
        return None

    return SheetStructure(
        actual_columns=actual,
        budget_columns=budget,
        column_dates=dates,
        date_header_row=_as_row(payload.get("dateHeaderRow")),
        scenario_label_row=_as_row(payload.get("scenarioLabelRow")),
        metric_rows=_as_metric_rows(payload.get("metricRows")),
    )


# =============================================================================
# Phase Parsers
# =============================================================================


def parse_structural_response(text: str | None, sheet_names: list[str] | None = None) -> StructuralResult:
    """Parse a structural response into a tagged :class:`StructuralResult`.

    Parameters
    ----------
    text : str | None
        Raw service response.
    sheet_names : list[str], optional
        Sheets present in the grid; other sheet names are dropped.
    """
    payload = extract_json_object(text)
    if payload is None or not isinstance(payload.get("sheets"), dict):
        logger.warning("Structural response missing 'sheets' object, treating as empty")
        return StructuralResult.empty()

    sheets: dict[str, SheetStructure] = {}
    dropped: list[str] = []
    for name, sheet_payload in payload["sheets"].items():
        if sheet_names is not None and name not in sheet_names:
            dropped.append(str(name))
            continue
        parsed = _parse_sheet(sheet_payload)
        if parsed is None:
            dropped.append(str(name))
        else:
            sheets[str(name)] = parsed

    if dropped:
        logger.warning("Dropped invalid structural entries for sheets: %s", ", ".join(dropped))

    if not sheets:
        kind = StructuralKind.EMPTY
    elif dropped:
        kind = StructuralKind.PARTIAL
    else:
        kind = StructuralKind.COMPLETE
    return StructuralResult(kind=kind, sheets=sheets, dropped_sheets=tuple(dropped))


def parse_matching_response(
    text: str | None,
    index: list[RowLabelEntry],
    targets: list[str] | None = None,
) -> dict[str, tuple[str, int]]:
    """Parse ``{matches: {id: {sheet, row}}}`` against the row label index.

    Returns
    -------
    dict[str, tuple[str, int]]
        Metric id to ``(sheet, row)``; unknown coordinates and, when
        ``targets`` is given, unrequested metric ids are discarded.
    """
    payload = extract_json_object(text)
    if payload is None or not isinstance(payload.get("matches"), dict):
        logger.warning("Matching response missing 'matches' object, treating as empty")
        return {}

    known = {(entry.sheet, entry.row) for entry in index}
    matches: dict[str, tuple[str, int]] = {}
    for metric_id, location in payload["matches"].items():
        if targets is not None and metric_id not in targets:
            continue
        if not isinstance(location, dict):
            continue
        sheet = location.get("sheet")
        row = _as_row(location.get("row"))
        if not isinstance(sheet, str) or row is None:
            continue
        if (sheet, row) not in known:
            logger.debug("Discarding match %s -> %s!%s (not in label index)", metric_id, sheet, row)
            continue
        matches[metric_id] = (sheet, row)
    return matches
