"""Shared parsing utilities for locale-ambiguous numbers and labels.

Portfolio companies report in whatever convention their finance team uses:
``1,234.56`` and ``1.234,56`` both show up, sometimes in the same upload, and
nothing in the document says which one applies. :func:`parse_localized_number`
infers the separators from the token itself and falls back to a currency hint
only when the token is genuinely ambiguous.
"""

from __future__ import annotations

import logging
import re
import unicodedata

logger = logging.getLogger(__name__)

# Currencies whose documents conventionally write ``1.234,56``.
DECIMAL_COMMA_CURRENCIES = frozenset(
    {"EUR", "BRL", "ARS", "CLP", "COP", "DKK", "NOK", "SEK", "TRY", "IDR"},
)

_NUMERIC_CHARS = re.compile(r"[^\d.,\-]")
_MINUS_VARIANTS = str.maketrans({"−": "-", "–": "-", "—": "-"})


def _is_negative(text: str) -> bool:
    """Detect accounting parentheses or a minus sign ahead of the first digit."""
    first_digit = re.search(r"\d", text)
    if first_digit is None:
        return False
    head = text[: first_digit.start()]
    if "-" in head:
        return True
    open_idx = text.find("(")
    close_idx = text.rfind(")")
    return 0 <= open_idx < first_digit.start() and close_idx > open_idx


def parse_localized_number(
    raw: str | None,
    default_currency: str = "USD",
    decimal_comma_currencies: frozenset[str] = DECIMAL_COMMA_CURRENCIES,
) -> float | None:
    """Parse a number string whose separator convention is unknown.

    Parameters
    ----------
    raw
        Raw token, possibly with currency symbols, spaces, accounting
        parentheses, and thousands/decimal separators in either convention.
    default_currency
        Currency hint used only to break ties when a single separator could
        be read either way.
    decimal_comma_currencies
        Currency codes that imply ``,`` as decimal and ``.`` as thousands.

    Returns
    -------
    float | None
        Signed value, or ``None`` when the token holds no parseable number.

    Examples
    --------
    >>> parse_localized_number("1.234,56")
    1234.56
    >>> parse_localized_number("1,234.56")
    1234.56
    >>> parse_localized_number("(1.234,56)")
    -1234.56
    >>> parse_localized_number("1,234")
    1234.0
    >>> parse_localized_number("1.234", default_currency="EUR")
    1234.0
    """
    if raw is None:
        return None

    text = str(raw).translate(_MINUS_VARIANTS).strip()
    if not text:
        return None

    is_negative = _is_negative(text)
    cleaned = _NUMERIC_CHARS.sub("", text).replace("-", "")
    if not re.search(r"\d", cleaned):
        return None

    decimal_comma = default_currency.upper() in decimal_comma_currencies
    has_comma = "," in cleaned
    has_dot = "." in cleaned

    if has_comma and has_dot:
        # Whichever separator comes last is the decimal point
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_comma:
        parts = cleaned.split(",")
        if len(parts) == 2 and (len(parts[1]) <= 2 or decimal_comma):
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_dot:
        parts = cleaned.split(".")
        if len(parts) == 2 and len(parts[1]) <= 2:
            pass
        elif len(parts) > 2 or decimal_comma:
            cleaned = cleaned.replace(".", "")

    try:
        result = float(cleaned)
    except ValueError:
        logger.debug("Could not parse number: %s", raw)
        return None

    return -result if is_negative else result


def is_numeric_cell(value: object) -> bool:
    """Return ``True`` for int/float cells (booleans are not numbers here)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# Label Normalization
# =============================================================================


def normalize_for_matching(text: str) -> str:
    """Strip accents, punctuation, and extra spaces for label comparison."""
    text = unicodedata.normalize("NFD", str(text))
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = text.lower()
    text = re.sub(r"[.,;:()\[\]/\\_\-]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def to_snake_case(name: str) -> str:
    """Normalize a metric label to a snake_case identifier.

    Examples
    --------
    >>> to_snake_case("Total actual MRR")
    'total_actual_mrr'
    >>> to_snake_case("  Cash (EUR) ")
    'cash_eur'
    """
    text = normalize_for_matching(name)
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return re.sub(r"_+", "_", text).strip("_")


def snake_to_label(metric_id: str) -> str:
    """Render a snake_case id as a human label (``cash_balance`` → ``cash balance``)."""
    return metric_id.replace("_", " ").strip()
