"""Coordinate mapper: (sheet, row, column) → (metric, period, scenario).

Two cooperating phases bound what the Document Understanding Service is asked:

Structural phase
    The service sees a digest (sheet names, dimensions, head and tail rows) and
    returns per-sheet date/scenario structure. When it names a scenario label
    row or a date header row, those rows are re-read from the grid so column
    tags and periods come from labelled cells, not from the model's
    transcription of them.

Matching phase
    Target metrics are first matched exactly against the row label index using
    the company guide labels and static synonyms. Only the remaining targets are
    sent to the service together with the grouped, capped index.

Matching results override structural ``metricRows`` for the same metric.
Every service failure (exception, timeout, malformed JSON) turns that phase
into an empty contribution; nothing propagates past :meth:`CoordinateMapper.build`.
"""

from __future__ import annotations

import re
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from portco_ledger.config import (
    get_canonical_metrics,
    get_default_target_metrics,
    get_merged_section,
    setup_logging,
)
from portco_ledger.extractor.grid import cell_ref, column_to_letter, letter_to_column
from portco_ledger.extractor.label_index import build_row_label_index, group_labels_for_prompt
from portco_ledger.extractor.periods import parse_period
from portco_ledger.extractor.schemas import (
    StructuralKind,
    StructuralResult,
    parse_matching_response,
    parse_structural_response,
)
from portco_ledger.extractor.types import CoordinateMap, SheetCoordinates
from portco_ledger.utils.parsing import normalize_for_matching

if TYPE_CHECKING:
    from portco_ledger.extractor.document_service import DocumentUnderstandingService
    from portco_ledger.extractor.grid import Grid, Sheet
    from portco_ledger.extractor.schemas import SheetStructure
    from portco_ledger.extractor.types import RowLabelEntry

logger = setup_logging(__name__)

__all__ = [
    "CoordinateMapper",
    "MappingOutcome",
    "build_digest",
    "build_targets",
    "classify_scenario_label",
    "default_targets",
    "match_guide_labels",
    "scan_date_row",
    "scan_scenario_row",
]

_ACTUAL_WORDS = re.compile(r"\b(actuals?|act|ist|realized|realised)\b", re.IGNORECASE)
_BUDGET_WORDS = re.compile(
    r"\b(budget|budgeted|forecast|fcst|fc|plan|planned|bud|bp|projected|projection)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class MappingOutcome:
    """Result of building a coordinate map for one document."""

    coordinate_map: CoordinateMap
    label_index: tuple[RowLabelEntry, ...] = ()
    structural_kind: StructuralKind = StructuralKind.EMPTY
    guide_matches: dict[str, dict[str, int]] = field(default_factory=dict)
    service_matches: dict[str, tuple[str, int]] = field(default_factory=dict)
    unresolved: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()


# =============================================================================
# Digest
# =============================================================================


def _digest_cell(value: Any, max_chars: int) -> str:
    if isinstance(value, datetime):
        text = value.date().isoformat()
    elif isinstance(value, date):
        text = value.isoformat()
    else:
        text = str(value)
    return text if len(text) <= max_chars else text[: max_chars - 1] + "…"


def _digest_row(sheet: Sheet, row_index: int, max_columns: int, max_chars: int) -> str | None:
    cells = [
        f"{cell_ref(row_index, col)}={_digest_cell(value, max_chars)}"
        for col, value in enumerate(sheet.rows[row_index][:max_columns])
        if value is not None
    ]
    return " | ".join(cells) if cells else None


def build_digest(grid: Grid, settings: dict[str, Any] | None = None) -> str:
    """Render sheet names, dimensions and head/tail rows as plain text.

    Parameters
    ----------
    grid : Grid
        Loaded document.
    settings : dict[str, Any], optional
        Overrides for ``config.json → grid`` (``digest_head_rows``,
        ``digest_tail_rows``, ``digest_max_columns``, ``digest_max_cell_chars``).

    Returns
    -------
    str
        One block per sheet; each non-empty row is rendered as
        ``A1=... | B1=...`` so the service can answer with real coordinates.
    """
    config = get_merged_section("grid", settings)
    head = int(config.get("digest_head_rows", 12))
    tail = int(config.get("digest_tail_rows", 5))
    max_columns = int(config.get("digest_max_columns", 40))
    max_chars = int(config.get("digest_max_cell_chars", 40))

    blocks: list[str] = []
    for sheet in grid.sheets:
        last_column = column_to_letter(max(sheet.num_columns - 1, 0))
        lines = [f"### Sheet: {sheet.name} ({sheet.num_rows} rows x {sheet.num_columns} columns, A..{last_column})"]

        head_rows = range(min(head, sheet.num_rows))
        tail_rows = range(max(head, sheet.num_rows - tail), sheet.num_rows)
        for row_index in head_rows:
            if rendered := _digest_row(sheet, row_index, max_columns, max_chars):
                lines.append(rendered)
        if tail_rows and tail_rows.start > head:
            lines.append("...")
        for row_index in tail_rows:
            if rendered := _digest_row(sheet, row_index, max_columns, max_chars):
                lines.append(rendered)
        blocks.append("\n".join(lines))

    return "\n\n".join(blocks)


# =============================================================================
# Deterministic Scans
# =============================================================================


def classify_scenario_label(text: Any) -> tuple[bool, bool] | None:
    """Return ``(is_actual, is_budget)`` for a scenario cell, ``None`` if neither.

    ``"Actual vs Budget"`` yields ``(True, True)``, which marks the column
    ambiguous.
    """
    if not isinstance(text, str):
        return None
    is_actual = bool(_ACTUAL_WORDS.search(text))
    is_budget = bool(_BUDGET_WORDS.search(text))
    if not is_actual and not is_budget:
        return None
    return is_actual, is_budget


def scan_scenario_row(
    sheet: Sheet,
    scenario_row: int,
    period_columns: set[str],
) -> tuple[set[str], set[str]]:
    """Tag columns from a labelled scenario row.

    A label carries forward across blank cells (merged header cells read back
    as one value followed by blanks) but only through columns that hold a
    period. Any other text stops the carry.

    Parameters
    ----------
    sheet : Sheet
        Sheet to scan.
    scenario_row : int
        1-based row number of the scenario labels.
    period_columns : set[str]
        Column letters known to hold a period.

    Returns
    -------
    tuple[set[str], set[str]]
        ``(actual_columns, budget_columns)``; a column may land in both.
    """
    actual: set[str] = set()
    budget: set[str] = set()
    carry: tuple[bool, bool] | None = None

    for col_index, value in enumerate(sheet.row_values(scenario_row)):
        letter = column_to_letter(col_index)
        tag = classify_scenario_label(value)
        if tag is None:
            if value is not None or letter not in period_columns:
                carry = None
                continue
            tag = carry
        else:
            carry = tag
        if tag is None:
            continue

        is_actual, is_budget = tag
        if is_actual:
            actual.add(letter)
        if is_budget:
            budget.add(letter)

    return actual, budget


def scan_date_row(sheet: Sheet, date_row: int) -> dict[str, str]:
    """Parse every cell of a 1-based header row into column → ISO period."""
    dates: dict[str, str] = {}
    for col_index, value in enumerate(sheet.row_values(date_row)):
        period = parse_period(value)
        if period:
            dates[column_to_letter(col_index)] = period
    return dates


def match_guide_labels(
    index: list[RowLabelEntry],
    targets: dict[str, list[str]],
) -> dict[str, dict[str, int]]:
    """Resolve targets whose known labels equal an index entry.

    Returns
    -------
    dict[str, dict[str, int]]
        Metric id → {sheet → first matching 1-based row}.
    """
    wanted: dict[str, str] = {}
    for metric_id, labels in targets.items():
        for label in labels:
            wanted.setdefault(normalize_for_matching(label), metric_id)

    matches: dict[str, dict[str, int]] = {}
    for entry in index:
        metric_id = wanted.get(normalize_for_matching(entry.label))
        if metric_id is None:
            continue
        matches.setdefault(metric_id, {}).setdefault(entry.sheet, entry.row)
    return matches


# =============================================================================
# Mapper
# =============================================================================


class CoordinateMapper:
    """Build a :class:`CoordinateMap` for a grid.

    Parameters
    ----------
    service : DocumentUnderstandingService | None
        Service used for both phases; ``None`` keeps the mapper deterministic
        (guide matches only, no structure).
    settings : dict[str, Any], optional
        Overrides for ``config.json → document_service`` (``timeout_seconds``,
        ``concurrent_phases``).
    """

    def __init__(
        self,
        service: DocumentUnderstandingService | None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        self.service = service
        self.settings = get_merged_section("document_service", settings)
        self.timeout_seconds = float(self.settings.get("timeout_seconds", 60))
        self.concurrent = bool(self.settings.get("concurrent_phases", True))

    def build(self, grid: Grid, targets: dict[str, list[str]]) -> MappingOutcome:
        """Map target metrics, periods and scenarios onto grid coordinates.

        Parameters
        ----------
        grid : Grid
            Loaded document.
        targets : dict[str, list[str]]
            Metric id → known source labels (guide labels plus synonyms).

        Returns
        -------
        MappingOutcome
            Coordinate map plus what each phase contributed.
        """
        index = build_row_label_index(grid)
        guide_matches = match_guide_labels(index, targets)
        errors: list[str] = []

        logger.info(
            f"Label index: {len(index)} entries; guide resolved {len(guide_matches)}/{len(targets)} targets",
        )

        structural, service_matches = self._run_phases(grid, index, targets, guide_matches, errors)

        cmap = self._merge(grid, structural, guide_matches, service_matches)
        resolved = cmap.resolved_metrics()
        unresolved = tuple(sorted(t for t in targets if t not in resolved))
        if unresolved:
            logger.info("Unresolved targets: %s", ", ".join(unresolved))

        return MappingOutcome(
            coordinate_map=cmap,
            label_index=tuple(index),
            structural_kind=structural.kind,
            guide_matches=guide_matches,
            service_matches=service_matches,
            unresolved=unresolved,
            errors=tuple(errors),
        )

    # -- phases -----------------------------------------------------------

    def _run_phases(
        self,
        grid: Grid,
        index: list[RowLabelEntry],
        targets: dict[str, list[str]],
        guide_matches: dict[str, dict[str, int]],
        errors: list[str],
    ) -> tuple[StructuralResult, dict[str, tuple[str, int]]]:
        if self.service is None:
            return StructuralResult.empty(), {}

        service = self.service
        digest = build_digest(grid)
        pending = {t: labels for t, labels in targets.items() if t not in guide_matches}

        def structural_call() -> StructuralResult:
            return parse_structural_response(service.describe_structure(digest), grid.sheet_names)

        def matching_call(remaining: dict[str, list[str]]) -> dict[str, tuple[str, int]]:
            request = {
                "targets": remaining,
                "labels": group_labels_for_prompt(index),
            }
            return parse_matching_response(service.match_metrics(request), index, list(remaining))

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="coordinate-mapper")
        try:
            structural_future = executor.submit(structural_call)
            if self.concurrent:
                matching_future = executor.submit(matching_call, pending) if pending and index else None
                structural = self._await(structural_future, "structural", StructuralResult.empty(), errors)
            else:
                structural = self._await(structural_future, "structural", StructuralResult.empty(), errors)
                from_structure = {m for s in structural.sheets.values() for m in s.metric_rows}
                pending = {t: labels for t, labels in pending.items() if t not in from_structure}
                matching_future = executor.submit(matching_call, pending) if pending and index else None

            service_matches = (
                self._await(matching_future, "matching", {}, errors) if matching_future is not None else {}
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            f"Structural phase: {structural.kind.value} ({len(structural.sheets)} sheets); "
            f"matching phase: {len(service_matches)} matches",
        )
        return structural, service_matches

    def _await(self, future: Future[Any], phase: str, empty: Any, errors: list[str]) -> Any:
        """Wait for a phase; any failure becomes ``empty``."""
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            logger.warning("%s phase timed out after %ss", phase.capitalize(), self.timeout_seconds)
            errors.append(f"{phase}: timeout")
        except Exception as e:
            logger.exception("%s phase failed", phase.capitalize())
            errors.append(f"{phase}: {e}")
        return empty

    # -- merge ------------------------------------------------------------

    def _merge(
        self,
        grid: Grid,
        structural: StructuralResult,
        guide_matches: dict[str, dict[str, int]],
        service_matches: dict[str, tuple[str, int]],
    ) -> CoordinateMap:
        cmap = CoordinateMap()
        for name, structure in structural.sheets.items():
            sheet = grid.get_sheet(name)
            if sheet is None:
                continue
            coords = self._sheet_coordinates(sheet, structure)

            for metric_id, sheets in guide_matches.items():
                if name in sheets:
                    coords.metric_rows[metric_id] = sheets[name]
            for metric_id, (match_sheet, row) in service_matches.items():
                if match_sheet == name:
                    coords.metric_rows[metric_id] = row

            if coords.ambiguous_columns:
                logger.warning(
                    "Sheet '%s': columns tagged both actual and budget are excluded: %s",
                    name,
                    ", ".join(sorted(coords.ambiguous_columns, key=letter_to_column)),
                )
            cmap.sheets[name] = coords

        orphaned = [m for m, (s, _) in service_matches.items() if s not in cmap.sheets]
        if orphaned:
            logger.info("Matches on sheets without column structure ignored: %s", ", ".join(orphaned))
        return cmap

    def _sheet_coordinates(self, sheet: Sheet, structure: SheetStructure) -> SheetCoordinates:
        """Combine service structure with what the labelled rows actually say."""
        column_dates = dict(structure.column_dates)
        if structure.date_header_row is not None:
            for letter, period in scan_date_row(sheet, structure.date_header_row).items():
                column_dates.setdefault(letter, period)

        actual = set(structure.actual_columns)
        budget = set(structure.budget_columns)
        if structure.scenario_label_row is not None:
            grid_actual, grid_budget = scan_scenario_row(
                sheet,
                structure.scenario_label_row,
                set(column_dates),
            )
            actual |= grid_actual
            budget |= grid_budget

        ambiguous = actual & budget
        return SheetCoordinates(
            metric_rows=dict(structure.metric_rows),
            column_dates=column_dates,
            actual_columns=actual - ambiguous,
            budget_columns=budget - ambiguous,
            ambiguous_columns=ambiguous,
        )


# =============================================================================
# Targets
# =============================================================================


def build_targets(
    metric_ids: list[str],
    guide_labels: dict[str, list[str]] | None = None,
    synonyms: dict[str, str] | None = None,
) -> dict[str, list[str]]:
    """Assemble metric id → known labels from guide labels and synonyms.

    Guide labels come first; synonym keys are rendered as words
    (``total_actual_mrr`` → ``total actual mrr``) and the id itself is always
    included.
    """
    if synonyms is None:
        synonyms = get_canonical_metrics().get("synonyms", {})

    guide_labels = guide_labels or {}
    targets: dict[str, list[str]] = {}
    for metric_id in dict.fromkeys([*metric_ids, *guide_labels]):
        labels = list(guide_labels.get(metric_id, []))
        labels += [alias.replace("_", " ") for alias, canonical in synonyms.items() if canonical == metric_id]
        labels.append(metric_id.replace("_", " "))
        targets[metric_id] = list(dict.fromkeys(labels))
    return targets


def default_targets(guide_labels: dict[str, list[str]] | None = None) -> dict[str, list[str]]:
    """Targets for the configured default metrics plus any guide metrics."""
    return build_targets(get_default_target_metrics(), guide_labels)
