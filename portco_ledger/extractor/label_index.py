"""Row label index: every plausible metric label in a grid.

The index guarantees that the matching request never has to ask the Document
Understanding Service to enumerate rows; it only asks which of these known
entries corresponds to a target metric.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from portco_ledger.config import get_section
from portco_ledger.extractor.grid import column_to_letter
from portco_ledger.extractor.periods import looks_like_period
from portco_ledger.extractor.types import RowLabelEntry
from portco_ledger.utils.parsing import normalize_for_matching, parse_localized_number

if TYPE_CHECKING:
    from portco_ledger.extractor.grid import Grid

__all__ = ["build_row_label_index", "group_labels_for_prompt", "is_label_text"]

_CURRENCY_TOKEN = re.compile(
    r"(?:[$€£¥₹]|usd|eur|gbp|chf|jpy|brl|sek|nok|dkk|k|m|bn|mn|%|\s)+",
    re.IGNORECASE,
)
_MONTH_HEADER = re.compile(
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
    r"|q[1-4]|h[12]|fy|ytd|mtd|qtd",
    re.IGNORECASE,
)
_NUMBER_LIKE = re.compile(r"[\s$€£¥₹%()+\-\d.,]+")


def is_label_text(text: str, min_length: int = 2, max_length: int = 80) -> bool:
    """Return ``True`` if ``text`` could name a metric row.

    Rejects bare numbers, currency-only tokens, dates and month/quarter
    header tokens.
    """
    stripped = text.strip()
    if not min_length <= len(stripped) <= max_length:
        return False
    if _NUMBER_LIKE.fullmatch(stripped) and parse_localized_number(stripped) is not None:
        return False
    if _CURRENCY_TOKEN.fullmatch(stripped):
        return False
    if _MONTH_HEADER.fullmatch(stripped):
        return False
    return not looks_like_period(stripped)


def build_row_label_index(grid: Grid, label_columns: int | None = None) -> list[RowLabelEntry]:
    """Scan the left-most columns of every sheet for label text.

    Parameters
    ----------
    grid : Grid
        Loaded document.
    label_columns : int, optional
        Number of left-most columns to scan; defaults to ``grid.label_columns``
        from ``config.json``.

    Returns
    -------
    list[RowLabelEntry]
        Entries in sheet, row, column order. Labels may repeat.
    """
    grid_config = get_section("grid")
    if label_columns is None:
        label_columns = int(grid_config.get("label_columns", 3))
    min_length = int(grid_config.get("min_label_length", 2))
    max_length = int(grid_config.get("max_label_length", 80))

    entries: list[RowLabelEntry] = []
    for sheet in grid.sheets:
        for row_index, row in enumerate(sheet.rows):
            for col_index, value in enumerate(row[:label_columns]):
                if not isinstance(value, str):
                    continue
                if is_label_text(value, min_length, max_length):
                    entries.append(
                        RowLabelEntry(
                            sheet=sheet.name,
                            row=row_index + 1,
                            label=value.strip(),
                            column=column_to_letter(col_index),
                        ),
                    )
    return entries


def group_labels_for_prompt(
    index: list[RowLabelEntry],
    max_per_sheet: int | None = None,
) -> dict[str, list[dict[str, int | str]]]:
    """Group entries per sheet, de-duplicate labels and cap each sheet.

    The first occurrence of a label (normalized) on a sheet is kept.
    """
    if max_per_sheet is None:
        max_per_sheet = int(get_section("grid").get("max_labels_per_sheet", 400))

    grouped: dict[str, list[dict[str, int | str]]] = {}
    seen: dict[str, set[str]] = {}
    for entry in index:
        labels = grouped.setdefault(entry.sheet, [])
        keys = seen.setdefault(entry.sheet, set())
        key = normalize_for_matching(entry.label)
        if key in keys or len(labels) >= max_per_sheet:
            continue
        keys.add(key)
        labels.append({"row": entry.row, "label": entry.label})
    return grouped
