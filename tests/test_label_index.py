"""Tests for the row label index."""

import pytest

from portco_ledger.extractor.grid import Grid, load_grid
from portco_ledger.extractor.label_index import build_row_label_index, group_labels_for_prompt, is_label_text


class TestIsLabelText:
    """Tests for is_label_text."""

    @pytest.mark.parametrize("text", ["Total MRR", "Marketing", "Cash at end of period", "Q3 revenue"])
    def test_labels(self, text: str) -> None:
        """Words that can name a metric are labels."""
        assert is_label_text(text)

    @pytest.mark.parametrize("text", ["1.234,56", "(500)", "EUR", "€", "k€", "Mar", "Q1", "Mar-24", "FY24", "x"])
    def test_non_labels(self, text: str) -> None:
        """Numbers, currency tokens, headers and one-character cells are not."""
        assert not is_label_text(text)

    def test_length_bounds(self) -> None:
        """Over-long cells are notes, not labels."""
        assert not is_label_text("word " * 30, max_length=80)


class TestBuildRowLabelIndex:
    """Tests for build_row_label_index."""

    def test_scans_left_columns_only(self) -> None:
        """Only the configured number of left-most columns is scanned."""
        grid = Grid.from_rows(
            {
                "P&L": [
                    ["Revenue", None, None, "Far right label"],
                    [None, "Gross margin", 0.4],
                    ["1.234", None],
                ],
            },
        )
        index = build_row_label_index(grid, label_columns=3)

        assert [(e.sheet, e.row, e.label, e.column) for e in index] == [
            ("P&L", 1, "Revenue", "A"),
            ("P&L", 2, "Gross margin", "B"),
        ]

    def test_revenue_workbook(self, revenue_workbook: bytes) -> None:
        """Total MRR is indexed at row 29 of the Revenue sheet."""
        index = build_row_label_index(load_grid(revenue_workbook, "acme_model.xlsx"))

        entries = {(e.label, e.row) for e in index}
        assert ("Total MRR", 29) in entries
        assert ("Total Customers", 10) in entries
        assert all(e.sheet == "Revenue" for e in index)


class TestGroupLabelsForPrompt:
    """Tests for group_labels_for_prompt."""

    def test_dedupes_and_caps_per_sheet(self) -> None:
        """First occurrence of a normalized label wins; each sheet is capped."""
        grid = Grid.from_rows(
            {
                "A": [["Revenue"], ["revenue"], ["Costs"], ["EBITDA"]],
                "B": [["Revenue"]],
            },
        )
        grouped = group_labels_for_prompt(build_row_label_index(grid), max_per_sheet=2)

        assert grouped["A"] == [{"row": 1, "label": "Revenue"}, {"row": 3, "label": "Costs"}]
        assert grouped["B"] == [{"row": 1, "label": "Revenue"}]
