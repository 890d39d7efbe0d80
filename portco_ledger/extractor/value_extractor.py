"""Deterministic value extraction and the whole-document fallback.

:func:`extract_line_items` walks a :class:`CoordinateMap` and reads every
value straight out of the grid. No service call happens here, so the output is
fully determined by the grid and the map.

:func:`extract_from_summary` is the degraded path used when no coordinate map
could be built: it accepts the service's whole-document summary as-is, with
lower confidence and no cell-level provenance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from portco_ledger.config import get_decimal_comma_currencies, get_section, setup_logging
from portco_ledger.extractor.grid import letter_to_column
from portco_ledger.extractor.periods import parse_period, period_from_filename
from portco_ledger.extractor.schemas import extract_json_object
from portco_ledger.extractor.types import NormalizedLineItem, SourceLocation
from portco_ledger.utils.parsing import is_numeric_cell, parse_localized_number

if TYPE_CHECKING:
    from portco_ledger.extractor.grid import Grid
    from portco_ledger.extractor.types import CoordinateMap, Scenario

logger = setup_logging(__name__)

__all__ = [
    "ExtractionResult",
    "extract_from_summary",
    "extract_line_items",
    "read_amount",
]


@dataclass(frozen=True)
class ExtractionResult:
    """Line items from one document plus what was skipped along the way.

    Attributes
    ----------
    items : tuple[NormalizedLineItem, ...]
        Sorted by metric, period, scenario.
    method : str
        ``"coordinates"``, ``"page_scan"`` or ``"summary"``.
    skipped : tuple[str, ...]
        Locations (``Sheet!J29``) or metric names whose value did not parse.
    explanations : tuple[dict[str, str], ...]
        Variance explanations reported alongside the figures.
    period_hint : str | None
        Document-level period, when one was found.
    """

    items: tuple[NormalizedLineItem, ...] = ()
    method: str = "coordinates"
    skipped: tuple[str, ...] = ()
    explanations: tuple[dict[str, str], ...] = ()
    period_hint: str | None = None


def _sort_key(item: NormalizedLineItem) -> tuple[str, str, str, str, int, int]:
    location = item.source_location
    return (
        item.metric_id,
        item.period_date,
        item.scenario,
        location.sheet or "",
        location.page or 0,
        letter_to_column("".join(c for c in location.cell or "A" if c.isalpha())),
    )


def read_amount(
    value: Any,
    currency: str,
    decimal_comma_currencies: frozenset[str] | None = None,
) -> float | None:
    """Turn a cell value into an amount, ``None`` when it is not a number."""
    if is_numeric_cell(value):
        return float(value)
    if isinstance(value, str):
        if decimal_comma_currencies is None:
            decimal_comma_currencies = get_decimal_comma_currencies()
        return parse_localized_number(value, currency, decimal_comma_currencies)
    return None


# =============================================================================
# Deterministic Extraction
# =============================================================================


def extract_line_items(
    grid: Grid,
    cmap: CoordinateMap,
    currency: str = "USD",
    file_type: str = "xlsx",
) -> ExtractionResult:
    """Read every mapped (metric, column) cell of every sheet.

    Parameters
    ----------
    grid : Grid
        Loaded document.
    cmap : CoordinateMap
        Coordinates from :class:`~portco_ledger.extractor.coordinate_mapper.CoordinateMapper`.
    currency : str
        Currency hint for locale-ambiguous strings.
    file_type : str
        Recorded in each item's source location.

    Returns
    -------
    ExtractionResult
        One item per numeric cell. Ambiguous columns, columns without a
        period, and unparseable cells are skipped. When two sheets report the
        same (metric, period, scenario), the first sheet in workbook order wins.
    """
    decimal_comma = get_decimal_comma_currencies()
    items: dict[tuple[str, str, str], NormalizedLineItem] = {}
    skipped: list[str] = []

    for sheet in grid.sheets:
        coords = cmap.sheets.get(sheet.name)
        if coords is None:
            continue

        for letter, scenario in coords.scenario_columns():
            period = coords.column_dates.get(letter)
            if period is None:
                continue

            for metric_id, row in sorted(coords.metric_rows.items()):
                value = sheet.value_at(row, letter)
                if value is None or isinstance(value, (datetime, date)):
                    continue

                ref = f"{letter}{row}"
                amount = read_amount(value, currency, decimal_comma)
                if amount is None:
                    logger.debug("Skipping unparseable cell %s!%s: %r", sheet.name, ref, value)
                    skipped.append(f"{sheet.name}!{ref}")
                    continue

                item = NormalizedLineItem(
                    metric_id=metric_id,
                    amount=amount,
                    period_date=period,
                    scenario=scenario,
                    source_location=SourceLocation(file_type=file_type, sheet=sheet.name, cell=ref),
                    confidence=1.0,
                    raw_value=str(value),
                )
                if item.key in items:
                    logger.debug("Duplicate %s from %s!%s ignored", item.key, sheet.name, ref)
                    continue
                items[item.key] = item

    ordered = tuple(sorted(items.values(), key=_sort_key))
    logger.info(f"Extracted {len(ordered)} line items ({len(skipped)} cells skipped)")
    return ExtractionResult(items=ordered, method="coordinates", skipped=tuple(skipped))


# =============================================================================
# Whole-document Fallback
# =============================================================================


def _summary_value(value: Any) -> Any:
    """Unwrap ``{"value": x}`` shapes some responses use."""
    if isinstance(value, dict):
        return value.get("value", value.get("amount"))
    return value


def _summary_explanations(payload: dict[str, Any]) -> tuple[dict[str, str], ...]:
    raw = payload.get("explanations") or payload.get("variance_explanations") or []
    if not isinstance(raw, list):
        return ()

    explanations: list[dict[str, str]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        metric = entry.get("metric") or entry.get("metric_id")
        text = entry.get("text") or entry.get("explanation")
        if not metric or not text:
            continue
        explanations.append({
            "metric": str(metric),
            "type": str(entry.get("type") or entry.get("explanation_type") or "other"),
            "text": str(text),
        })
    return tuple(explanations)


def _resolve_summary_period(payload: dict[str, Any], filename: str) -> str | None:
    raw_period = payload.get("period")
    if raw_period:
        period = parse_period(raw_period) or period_from_filename(str(raw_period))
        if period:
            return period
    return period_from_filename(filename)


def extract_from_summary(
    summary_text: str | None,
    filename: str,
    file_type: str,
    currency: str = "USD",
    confidence: float | None = None,
) -> ExtractionResult:
    """Convert a whole-document summary into low-confidence line items.

    Parameters
    ----------
    summary_text : str | None
        Raw service response with ``actuals``, ``budget``, legacy
        ``key_metrics`` (treated as actuals), ``period``, ``currency`` and
        ``explanations``.
    filename : str
        Used for provenance and as the last resort for the period.
    file_type : str
        Recorded in each item's source location.
    currency : str
        Hint used when the summary names no currency.
    confidence : float, optional
        Defaults to ``config.json → fallback.summary_confidence``.

    Returns
    -------
    ExtractionResult
        Empty when the summary is unusable or no period can be resolved.
    """
    if confidence is None:
        confidence = float(get_section("fallback").get("summary_confidence", 0.6))

    payload = extract_json_object(summary_text)
    if payload is None:
        logger.warning("Summary for %s is not JSON, nothing extracted", filename)
        return ExtractionResult(method="summary")

    explanations = _summary_explanations(payload)
    period = _resolve_summary_period(payload, filename)
    if period is None:
        logger.warning("No period found for %s; dropping summary figures", filename)
        return ExtractionResult(method="summary", explanations=explanations)

    summary_currency = str(payload.get("currency") or currency).upper()
    decimal_comma = get_decimal_comma_currencies()
    note = f"Whole-document summary of {filename}"

    sections: list[tuple[str, Scenario]] = [("actuals", "actual"), ("budget", "budget")]
    if not isinstance(payload.get("actuals"), dict):
        sections.append(("key_metrics", "actual"))

    items: dict[tuple[str, str, str], NormalizedLineItem] = {}
    skipped: list[str] = []
    for section, scenario in sections:
        figures = payload.get(section)
        if not isinstance(figures, dict):
            continue
        for metric, raw in figures.items():
            value = _summary_value(raw)
            amount = read_amount(value, summary_currency, decimal_comma)
            if amount is None:
                skipped.append(f"{section}.{metric}")
                continue
            item = NormalizedLineItem(
                metric_id=str(metric),
                amount=amount,
                period_date=period,
                scenario=scenario,
                source_location=SourceLocation(file_type=file_type, note=note),
                confidence=confidence,
                raw_value=str(value),
            )
            items.setdefault(item.key, item)

    ordered = tuple(sorted(items.values(), key=_sort_key))
    logger.info(f"Summary fallback produced {len(ordered)} line items for {filename}")
    return ExtractionResult(
        items=ordered,
        method="summary",
        skipped=tuple(skipped),
        explanations=explanations,
        period_hint=period,
    )
