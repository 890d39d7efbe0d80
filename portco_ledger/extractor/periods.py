"""Period parsing for column headers, summaries and file names.

Every period in the ledger is the ISO date of the first day of the month it
starts in: ``Mar-24`` → ``2024-03-01``, ``Q3 2024`` → ``2024-07-01``,
``FY24`` → ``2024-01-01``.
"""

from __future__ import annotations

import re
from datetime import date, datetime

from openpyxl.utils.datetime import from_excel

from portco_ledger.config import setup_logging

logger = setup_logging(__name__)

__all__ = [
    "MONTHS",
    "looks_like_period",
    "parse_period",
    "period_from_filename",
]

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_MONTH_NAME = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|jul(?:y)?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

# Header patterns, tried in order against the whole (stripped, lower-cased) cell
_ISO_DATE = re.compile(r"(\d{4})-(\d{1,2})(?:-(\d{1,2}))?(?:[t ].*)?")
_MONTH_YEAR = re.compile(_MONTH_NAME + r"\.?[\s_\-/']*(\d{4}|\d{2})")
_NUMERIC_MONTH_YEAR = re.compile(r"(\d{1,2})[/.](\d{4})")
_DAY_MONTH_YEAR = re.compile(r"(\d{1,2})[/.](\d{1,2})[/.](\d{4})")
_QUARTER = re.compile(r"q([1-4])[\s_\-/']*(\d{4}|\d{2})")
_QUARTER_SUFFIX = re.compile(r"([1-4])q[\s_\-/']*(\d{4}|\d{2})")
_FISCAL_YEAR = re.compile(r"fy[\s_\-']*(\d{4}|\d{2})")

# Excel date serials for 1982-02-24 .. 2119-05-20
_SERIAL_RANGE = (30000, 80000)


def _year(token: str) -> int:
    year = int(token)
    return year + 2000 if year < 100 else year


def _iso(year: int, month: int) -> str | None:
    if not 1 <= month <= 12 or not 1900 <= year <= 2200:
        return None
    return f"{year:04d}-{month:02d}-01"


def _parse_text(text: str) -> str | None:
    """Match a header string against the supported period spellings."""
    lowered = text.strip().lower()
    # Scenario prefixes such as "Actual Mar-24" or "Budget Q1 25"
    lowered = re.sub(r"^(actuals?|budget|forecast|plan|fcst|act|bud)[\s:_\-]+", "", lowered)

    if match := _ISO_DATE.fullmatch(lowered):
        return _iso(int(match.group(1)), int(match.group(2)))

    if match := _MONTH_YEAR.fullmatch(lowered):
        return _iso(_year(match.group(2)), MONTHS[match.group(1)[:3]])

    if match := _DAY_MONTH_YEAR.fullmatch(lowered):
        # Day-first
        return _iso(int(match.group(3)), int(match.group(2)))

    if match := _NUMERIC_MONTH_YEAR.fullmatch(lowered):
        return _iso(int(match.group(2)), int(match.group(1)))

    for pattern in (_QUARTER, _QUARTER_SUFFIX):
        if match := pattern.fullmatch(lowered):
            quarter = int(match.group(1))
            return _iso(_year(match.group(2)), (quarter - 1) * 3 + 1)

    if match := _FISCAL_YEAR.fullmatch(lowered):
        return _iso(_year(match.group(1)), 1)

    return None


def parse_period(value: object) -> str | None:
    """Convert a header cell into an ISO first-of-month date.

    Parameters
    ----------
    value
        Cell value: ``datetime``/``date``, an Excel date serial, or a string
        such as ``"Mar-24"``, ``"March 2024"``, ``"2024-03"``, ``"Q1 2024"``
        or ``"FY24"``.

    Returns
    -------
    str | None
        ``YYYY-MM-01`` or ``None`` when the value is not a period.

    Examples
    --------
    >>> parse_period("Sep-24")
    '2024-09-01'
    >>> parse_period("Q3 2024")
    '2024-07-01'
    >>> parse_period("Total") is None
    True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (datetime, date)):
        return _iso(value.year, value.month)

    if isinstance(value, (int, float)):
        if _SERIAL_RANGE[0] <= value <= _SERIAL_RANGE[1]:
            converted = from_excel(value)
            if isinstance(converted, (datetime, date)):
                return _iso(converted.year, converted.month)
        return None

    return _parse_text(str(value))


def looks_like_period(text: str) -> bool:
    """Return ``True`` for strings that read as a date or period header."""
    return _parse_text(text) is not None


# =============================================================================
# File Names
# =============================================================================

_FILENAME_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(\d{4})[\s_\-]*annual[\s_\-]*budget", re.IGNORECASE), "year"),
    (re.compile(r"budget[\s_\-]*(\d{4})", re.IGNORECASE), "year"),
    (re.compile(r"q([1-4])[\s_\-]*(\d{4})", re.IGNORECASE), "quarter"),
    (re.compile(_MONTH_NAME + r"[\s_\-]*(\d{4})", re.IGNORECASE), "month_name"),
    (re.compile(r"(\d{4})(\d{2})(\d{2})"), "yyyymmdd"),
    (re.compile(r"(\d{4})[\s_\-]?(\d{2})(?!\d)"), "year_month"),
    (re.compile(r"fy[\s_\-]?(\d{4}|\d{2})", re.IGNORECASE), "fiscal_year"),
]


def _from_filename_match(kind: str, match: re.Match[str]) -> str | None:
    if kind in {"year", "fiscal_year"}:
        return _iso(_year(match.group(1)), 1)
    if kind == "quarter":
        return _iso(int(match.group(2)), (int(match.group(1)) - 1) * 3 + 1)
    if kind == "month_name":
        return _iso(int(match.group(2)), MONTHS[match.group(1).lower()[:3]])
    if kind == "yyyymmdd":
        year, month, day = (int(g) for g in match.groups())
        if 2000 <= year <= 2099 and 1 <= day <= 31:
            return _iso(year, month)
        return None
    # year_month
    year, month = int(match.group(1)), int(match.group(2))
    return _iso(year, month) if 2000 <= year <= 2100 else None


def period_from_filename(filename: str) -> str | None:
    """Infer a reporting period from a file name or a free-text period label.

    Patterns are tried in order: ``2025 Annual Budget``, ``Budget 2025``,
    ``Q3 2024``, ``Sep 2024``, ``20240930``, ``2024-09``, ``FY24``.

    Examples
    --------
    >>> period_from_filename("Acme_Q3_2024_investor_update.pdf")
    '2024-07-01'
    >>> period_from_filename("board_deck_Sept-2024.pdf")
    '2024-09-01'
    """
    for pattern, kind in _FILENAME_PATTERNS:
        match = pattern.search(filename)
        if match:
            result = _from_filename_match(kind, match)
            if result:
                logger.debug("Period %s inferred from '%s' (%s)", result, filename, kind)
                return result
    return None
