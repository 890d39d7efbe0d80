"""Tests for locale-ambiguous number parsing and label normalization."""

import pytest

from portco_ledger.utils.parsing import (
    is_numeric_cell,
    normalize_for_matching,
    parse_localized_number,
    snake_to_label,
    to_snake_case,
)


class TestParseLocalizedNumber:
    """Tests for parse_localized_number."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("1.234,56", 1234.56),
            ("1,234.56", 1234.56),
            ("$1,234,567.89", 1234567.89),
            ("€ 1.234,56", 1234.56),
            ("1 234,56", 1234.56),
            ("1.234.567", 1234567.0),
            ("12,5", 12.5),
            ("42", 42.0),
        ],
    )
    def test_separator_conventions(self, raw: str, expected: float) -> None:
        """Separators are inferred from the token itself."""
        assert parse_localized_number(raw) == pytest.approx(expected)

    def test_accounting_parentheses_are_negative(self) -> None:
        """(1.234,56) is a negative amount."""
        assert parse_localized_number("(1.234,56)") == pytest.approx(-1234.56)

    @pytest.mark.parametrize("raw", ["-1,234.56", "−1,234.56", "- 1,234.56"])
    def test_minus_variants(self, raw: str) -> None:
        """ASCII and typographic minus signs both negate."""
        assert parse_localized_number(raw) == pytest.approx(-1234.56)

    def test_single_separator_uses_currency_hint(self) -> None:
        """A lone three-digit group is thousands unless the currency says otherwise."""
        assert parse_localized_number("1,234") == 1234.0
        assert parse_localized_number("1.234", default_currency="EUR") == 1234.0
        assert parse_localized_number("1,234", default_currency="EUR") == pytest.approx(1.234)
        assert parse_localized_number("1.234") == pytest.approx(1.234)

    @pytest.mark.parametrize("raw", [None, "", "   ", "n/a", "Total", "-", "()"])
    def test_unparseable_returns_none(self, raw: str | None) -> None:
        """Empty and non-numeric tokens are None, never NaN."""
        assert parse_localized_number(raw) is None


class TestIsNumericCell:
    """Tests for is_numeric_cell."""

    def test_numbers(self) -> None:
        """Ints and floats are numeric."""
        assert is_numeric_cell(3)
        assert is_numeric_cell(3.5)

    def test_non_numbers(self) -> None:
        """Booleans, strings and None are not."""
        assert not is_numeric_cell(True)
        assert not is_numeric_cell("3")
        assert not is_numeric_cell(None)


class TestLabelNormalization:
    """Tests for label normalization helpers."""

    def test_normalize_strips_punctuation_and_accents(self) -> None:
        """Accents, punctuation and repeated spaces are removed."""
        assert normalize_for_matching("  Ingresos (Año)  ") == "ingresos ano"

    def test_snake_case(self) -> None:
        """Labels become snake_case identifiers."""
        assert to_snake_case("Total actual MRR") == "total_actual_mrr"
        assert to_snake_case("  Cash (EUR) ") == "cash_eur"
        assert to_snake_case("Net-burn / month") == "net_burn_month"

    def test_snake_to_label(self) -> None:
        """Snake ids render as words."""
        assert snake_to_label("cash_balance") == "cash balance"
