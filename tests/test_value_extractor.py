"""Tests for deterministic value extraction and the summary fallback."""

from __future__ import annotations

import json
from typing import Any

import pytest

from portco_ledger.extractor.coordinate_mapper import CoordinateMapper
from portco_ledger.extractor.grid import Grid, load_grid
from portco_ledger.extractor.types import CoordinateMap, SheetCoordinates
from portco_ledger.extractor.value_extractor import extract_from_summary, extract_line_items, read_amount


class TestReadAmount:
    """Tests for read_amount."""

    def test_numeric_cells_pass_through(self) -> None:
        """Numbers are used as-is."""
        assert read_amount(1500, "EUR") == 1500.0

    def test_text_uses_currency_hint(self) -> None:
        """Ambiguous text follows the currency convention."""
        assert read_amount("1.234", "EUR") == 1234.0
        assert read_amount("1.234,56", "USD") == pytest.approx(1234.56)

    def test_non_values(self) -> None:
        """Booleans, None and words are not amounts."""
        assert read_amount(True, "USD") is None
        assert read_amount(None, "USD") is None
        assert read_amount("n/a", "USD") is None


class TestExtractLineItems:
    """Tests for extract_line_items."""

    def test_revenue_workbook_end_to_end(
        self,
        revenue_workbook: bytes,
        revenue_structure: dict[str, Any],
        make_service: Any,
    ) -> None:
        """J29 ("1.234,56") becomes MRR 1234.56 for Sep 2024 actuals."""
        grid = load_grid(revenue_workbook, "acme_model.xlsx")
        mapper = CoordinateMapper(make_service(structure=revenue_structure), {"concurrent_phases": False})
        cmap = mapper.build(grid, {"mrr": ["Total MRR"]}).coordinate_map

        result = extract_line_items(grid, cmap, currency="EUR")
        by_cell = {item.source_location.cell: item for item in result.items}
        j29 = by_cell["J29"]

        assert j29.metric_id == "mrr"
        assert j29.amount == pytest.approx(1234.56)
        assert j29.period_date == "2024-09-01"
        assert j29.scenario == "actual"
        assert j29.source_location.sheet == "Revenue"
        assert j29.raw_value == "1.234,56"
        assert len(result.items) == 24
        assert by_cell["P29"].scenario == "budget"
        assert by_cell["P29"].period_date == "2025-03-01"

    def test_deterministic(self, revenue_workbook: bytes, revenue_structure: dict[str, Any], make_service: Any) -> None:
        """The same grid and map always produce the same items."""
        grid = load_grid(revenue_workbook, "acme_model.xlsx")
        mapper = CoordinateMapper(make_service(structure=revenue_structure), {"concurrent_phases": False})
        cmap = mapper.build(grid, {"mrr": ["Total MRR"], "customers": ["Total Customers"]}).coordinate_map

        assert extract_line_items(grid, cmap, "EUR") == extract_line_items(grid, cmap, "EUR")

    def test_skips_untagged_ambiguous_and_unparseable(self) -> None:
        """Only tagged, dated, unambiguous columns with numbers are read."""
        grid = Grid.from_rows(
            {
                "S": [
                    ["Revenue", 10, 20, "n/a", 40, 50],
                ],
            },
        )
        coords = SheetCoordinates(
            metric_rows={"revenue": 1},
            column_dates={"B": "2024-01-01", "C": "2024-02-01", "D": "2024-03-01", "E": "2024-04-01"},
            actual_columns={"B", "C", "D", "F"},
            budget_columns={"C"},
        )
        result = extract_line_items(grid, CoordinateMap(sheets={"S": coords}))

        assert [(i.source_location.cell, i.amount) for i in result.items] == [("B1", 10.0)]
        assert result.skipped == ("S!D1",)

    def test_first_sheet_wins_on_duplicate_keys(self) -> None:
        """Two sheets reporting the same key keep the first in workbook order."""
        grid = Grid.from_rows({"Summary": [["MRR", 100]], "Detail": [["MRR", 999]]})
        coords = {
            name: SheetCoordinates(
                metric_rows={"mrr": 1},
                column_dates={"B": "2024-09-01"},
                actual_columns={"B"},
            )
            for name in ("Detail", "Summary")
        }
        result = extract_line_items(grid, CoordinateMap(sheets=coords))

        assert len(result.items) == 1
        assert result.items[0].amount == 100.0
        assert result.items[0].source_location.sheet == "Summary"


class TestExtractFromSummary:
    """Tests for extract_from_summary."""

    def test_actuals_budget_and_explanations(self) -> None:
        """Sections map to scenarios with low confidence and a note."""
        summary = json.dumps(
            {
                "period": "Sep 2024",
                "currency": "EUR",
                "actuals": {"MRR": "1.234,56", "Customers": {"value": 120}},
                "budget": {"MRR": 1300},
                "explanations": [
                    {"metric": "MRR", "type": "restatement", "text": "Reclassified one-off fees"},
                    {"metric": "MRR"},
                ],
            },
        )
        result = extract_from_summary(summary, "monthly_report.pdf", "pdf", confidence=0.6)

        assert result.method == "summary"
        assert result.period_hint == "2024-09-01"
        items = {(i.metric_id, i.scenario): i for i in result.items}
        assert items[("MRR", "actual")].amount == pytest.approx(1234.56)
        assert items[("Customers", "actual")].amount == 120.0
        assert items[("MRR", "budget")].amount == 1300.0
        assert all(i.confidence == 0.6 for i in result.items)
        assert items[("MRR", "actual")].source_location.note == "Whole-document summary of monthly_report.pdf"
        assert result.explanations == (
            {"metric": "MRR", "type": "restatement", "text": "Reclassified one-off fees"},
        )

    def test_period_from_filename(self) -> None:
        """Without a period in the summary the file name is used."""
        result = extract_from_summary('{"key_metrics": {"arr": 5}}', "Acme_Q3_2024_update.pdf", "pdf")

        assert [(i.metric_id, i.period_date, i.scenario) for i in result.items] == [("arr", "2024-07-01", "actual")]

    def test_no_period_drops_items(self) -> None:
        """Figures without any resolvable period are dropped."""
        result = extract_from_summary('{"actuals": {"arr": 5}}', "deck.pdf", "pdf")

        assert result.items == ()

    def test_not_json(self) -> None:
        """A prose answer extracts nothing."""
        assert extract_from_summary("I cannot read this", "x.pdf", "pdf").items == ()
