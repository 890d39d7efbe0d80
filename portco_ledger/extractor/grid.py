"""In-memory grid model for sheet-structured documents.

A :class:`Grid` is an ordered collection of named :class:`Sheet` objects, each
a rectangular list of rows. Row and column indices are 0-based internally and
1-based in every reported coordinate (``cell_ref(28, 9) == "J29"``), matching
what a human sees in a spreadsheet application.
"""

from __future__ import annotations

import io
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from itertools import islice
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import load_workbook

from portco_ledger.config import get_section, setup_logging

logger = setup_logging(__name__)

__all__ = [
    "Cell",
    "Grid",
    "IngestionError",
    "Sheet",
    "cell_ref",
    "column_to_letter",
    "grid_to_text",
    "is_spreadsheet",
    "letter_to_column",
    "load_grid",
    "parse_cell_ref",
]

Cell = int | float | str | datetime | date | None

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm", ".csv")


class IngestionError(ValueError):
    """Raised when a document cannot be turned into a grid or page text."""


# =============================================================================
# Column Letters
# =============================================================================


def column_to_letter(index: int) -> str:
    """Convert a 0-based column index to a spreadsheet letter label.

    Examples
    --------
    >>> column_to_letter(0), column_to_letter(25), column_to_letter(26)
    ('A', 'Z', 'AA')
    >>> column_to_letter(701)
    'ZZ'
    """
    if index < 0:
        msg = f"Column index must be non-negative, got {index}"
        raise ValueError(msg)

    letters = ""
    n = index + 1
    while n:
        n, remainder = divmod(n - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def letter_to_column(letters: str) -> int:
    """Convert a spreadsheet letter label to a 0-based column index.

    Raises
    ------
    ValueError
        If ``letters`` is empty or contains anything other than A–Z.
    """
    label = letters.strip().upper()
    if not label or not re.fullmatch(r"[A-Z]+", label):
        msg = f"Invalid column letter: {letters!r}"
        raise ValueError(msg)

    index = 0
    for char in label:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def cell_ref(row_index: int, col_index: int) -> str:
    """Return the 1-based ``A1``-style reference for 0-based indices."""
    return f"{column_to_letter(col_index)}{row_index + 1}"


def parse_cell_ref(ref: str) -> tuple[int, int]:
    """Parse ``"J29"`` into 0-based ``(row_index, col_index)``."""
    match = re.fullmatch(r"\s*([A-Za-z]+)(\d+)\s*", ref)
    if not match or int(match.group(2)) < 1:
        msg = f"Invalid cell reference: {ref!r}"
        raise ValueError(msg)
    return int(match.group(2)) - 1, letter_to_column(match.group(1))


# =============================================================================
# Grid Model
# =============================================================================


@dataclass(frozen=True)
class Sheet:
    """A named rectangular block of cells."""

    name: str
    rows: tuple[tuple[Cell, ...], ...]

    @property
    def num_rows(self) -> int:
        return len(self.rows)

    @property
    def num_columns(self) -> int:
        return max((len(r) for r in self.rows), default=0)

    def cell(self, row_index: int, col_index: int) -> Cell:
        """Return the value at 0-based indices, ``None`` outside the sheet."""
        if row_index < 0 or col_index < 0 or row_index >= len(self.rows):
            return None
        row = self.rows[row_index]
        return row[col_index] if col_index < len(row) else None

    def value_at(self, row: int, column: str) -> Cell:
        """Return the value at a 1-based row and a column letter."""
        return self.cell(row - 1, letter_to_column(column))

    def row_values(self, row: int) -> tuple[Cell, ...]:
        """Return the cells of a 1-based row (empty tuple when out of range)."""
        if row < 1 or row > len(self.rows):
            return ()
        return self.rows[row - 1]


@dataclass(frozen=True)
class Grid:
    """Ordered collection of sheets loaded from one document."""

    sheets: tuple[Sheet, ...]
    source_name: str = ""

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]

    def get_sheet(self, name: str) -> Sheet | None:
        """Return the sheet called ``name`` or ``None``."""
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    def value_at(self, sheet: str, row: int, column: str) -> Cell:
        """Return ``grid[sheet][row][column]`` using 1-based row numbers."""
        target = self.get_sheet(sheet)
        return target.value_at(row, column) if target is not None else None

    @classmethod
    def from_rows(cls, sheets: dict[str, list[list[Any]]], source_name: str = "") -> Grid:
        """Build a grid from plain nested lists (handy for tests and fixtures)."""
        return cls(
            sheets=tuple(
                Sheet(name=name, rows=tuple(tuple(_clean_cell(v) for v in row) for row in rows))
                for name, rows in sheets.items()
            ),
            source_name=source_name,
        )


def _clean_cell(value: Any) -> Cell:
    """Map loader-specific empties (``""``, NaN) to ``None`` and trim strings."""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, (int, float, datetime, date)):
        return value
    return str(value)


def _trim_trailing_empty(rows: list[tuple[Cell, ...]]) -> list[tuple[Cell, ...]]:
    """Drop trailing empty rows so ``num_rows`` reflects real content."""
    while rows and all(v is None for v in rows[-1]):
        rows.pop()
    return rows


# =============================================================================
# Loaders
# =============================================================================


def _bounded_rows(raw_rows: Iterable[Iterable[Any]], sheet_name: str) -> list[tuple[Cell, ...]]:
    """Clean rows, keeping at most ``grid.max_rows`` rows of ``grid.max_columns`` cells."""
    config = get_section("grid")
    max_rows = int(config.get("max_rows", 5000))
    max_columns = int(config.get("max_columns", 260))

    rows: list[tuple[Cell, ...]] = []
    wide = False
    for raw in islice(raw_rows, max_rows + 1):
        values = tuple(raw)
        wide = wide or len(values) > max_columns
        rows.append(tuple(_clean_cell(v) for v in values[:max_columns]))

    if len(rows) > max_rows:
        rows.pop()
        logger.warning("Sheet '%s' truncated to the first %s rows", sheet_name, max_rows)
    if wide:
        logger.warning("Sheet '%s' truncated to the first %s columns", sheet_name, max_columns)
    return _trim_trailing_empty(rows)


def _load_xlsx(content: bytes, filename: str) -> Grid:
    """Read every worksheet of an xlsx/xlsm workbook with cached values."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        msg = f"Could not open workbook {filename}: {e}"
        raise IngestionError(msg) from e

    sheets: list[Sheet] = []
    try:
        for worksheet in workbook.worksheets:
            rows = _bounded_rows(worksheet.iter_rows(values_only=True), worksheet.title)
            sheets.append(Sheet(name=worksheet.title, rows=tuple(rows)))
            logger.debug("Sheet '%s': %s rows", worksheet.title, len(rows))
    finally:
        workbook.close()

    return Grid(sheets=tuple(sheets), source_name=filename)


def _detect_delimiter(content: bytes) -> str:
    """Pick `,`, `;` or tab by frequency in the first line."""
    first_line = content.split(b"\n", 1)[0].decode("utf-8", errors="ignore")
    counts = {sep: first_line.count(sep) for sep in (",", ";", "\t")}
    best = max(counts, key=lambda sep: counts[sep])
    return best if counts[best] else ","


def _load_csv(content: bytes, filename: str) -> Grid:
    """Read a CSV file as a single sheet named after the file stem.

    Decimal-comma locales usually export with `;`, so the delimiter is taken
    from the header line rather than assumed.
    """
    try:
        df = pd.read_csv(
            io.BytesIO(content),
            header=None,
            dtype=str,
            keep_default_na=False,
            sep=_detect_delimiter(content),
            encoding="utf-8-sig",
        )
    except Exception as e:
        msg = f"Could not parse CSV {filename}: {e}"
        raise IngestionError(msg) from e

    name = Path(filename).stem
    rows = _bounded_rows(df.itertuples(index=False, name=None), name)
    sheet = Sheet(name=name, rows=tuple(rows))
    return Grid(sheets=(sheet,), source_name=filename)


def is_spreadsheet(filename: str) -> bool:
    """Return ``True`` for file names the grid loaders understand."""
    return filename.lower().endswith(SPREADSHEET_SUFFIXES)


def load_grid(content: bytes, filename: str) -> Grid:
    """Load raw spreadsheet bytes into a :class:`Grid`.

    Parameters
    ----------
    content : bytes
        Raw document bytes.
    filename : str
        Original file name; its suffix selects the loader.

    Returns
    -------
    Grid
        Loaded grid with one :class:`Sheet` per worksheet.

    Raises
    ------
    IngestionError
        If the suffix is unsupported or the bytes cannot be parsed.
    """
    lower = filename.lower()
    logger.info("Loading grid from %s", filename)

    if lower.endswith((".xlsx", ".xlsm")):
        grid = _load_xlsx(content, filename)
    elif lower.endswith(".csv"):
        grid = _load_csv(content, filename)
    else:
        msg = f"Unsupported spreadsheet type: {filename}"
        raise IngestionError(msg)

    logger.info(f"Loaded {len(grid.sheets)} sheets from {filename}")
    return grid


def grid_to_text(grid: Grid) -> str:
    """Render every non-empty row as tab-separated text, one block per sheet."""
    blocks: list[str] = []
    for sheet in grid.sheets:
        lines = [f"### Sheet: {sheet.name}"]
        for row_index, row in enumerate(sheet.rows):
            if all(v is None for v in row):
                continue
            cells = ["" if v is None else (v.isoformat() if isinstance(v, (datetime, date)) else str(v)) for v in row]
            lines.append(f"{row_index + 1}\t" + "\t".join(cells).rstrip())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
