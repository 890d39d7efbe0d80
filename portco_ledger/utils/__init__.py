"""Shared utility functions for portco_ledger package."""

from portco_ledger.utils.parsing import (
    DECIMAL_COMMA_CURRENCIES,
    is_numeric_cell,
    normalize_for_matching,
    parse_localized_number,
    snake_to_label,
    to_snake_case,
)

__all__ = [
    "DECIMAL_COMMA_CURRENCIES",
    "is_numeric_cell",
    "normalize_for_matching",
    "parse_localized_number",
    "snake_to_label",
    "to_snake_case",
]
