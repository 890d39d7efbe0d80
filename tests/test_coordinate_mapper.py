"""Tests for the coordinate mapper (structural + matching phases)."""

from __future__ import annotations

import threading
from typing import Any

import pytest

from portco_ledger.extractor.coordinate_mapper import (
    CoordinateMapper,
    build_digest,
    build_targets,
    classify_scenario_label,
    match_guide_labels,
    scan_scenario_row,
)
from portco_ledger.extractor.grid import Grid, load_grid
from portco_ledger.extractor.label_index import build_row_label_index
from portco_ledger.extractor.schemas import StructuralKind

SEQUENTIAL = {"concurrent_phases": False, "timeout_seconds": 5}


@pytest.fixture
def revenue_grid(revenue_workbook: bytes) -> Grid:
    return load_grid(revenue_workbook, "acme_model.xlsx")


class TestScenarioScan:
    """Tests for scenario label classification and row scans."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Actual", (True, False)),
            ("Actuals", (True, False)),
            ("Forecast/Budget", (False, True)),
            ("Plan 2025", (False, True)),
            ("Actual vs Budget", (True, True)),
            ("Total", None),
            (None, None),
        ],
    )
    def test_classify_scenario_label(self, text: Any, expected: tuple[bool, bool] | None) -> None:
        """Scenario words are matched as whole words."""
        assert classify_scenario_label(text) == expected

    def test_carry_forward_over_period_columns_only(self) -> None:
        """A label spans following blank period columns and stops at other text."""
        grid = Grid.from_rows(
            {
                "S": [
                    ["Metric", None, "Jan-24", "Feb-24", "Mar-24", "Notes", "Apr-24"],
                    [None, None, "Actual", None, None, None, None],
                ],
            },
        )
        period_columns = {"C", "D", "E", "G"}
        actual, budget = scan_scenario_row(grid.sheets[0], 2, period_columns)

        assert actual == {"C", "D", "E"}
        assert budget == set()

    def test_other_text_stops_carry(self) -> None:
        """Non-scenario text in the label row ends the carried label."""
        grid = Grid.from_rows({"S": [[None, "Budget", None, "Total", None]]})
        actual, budget = scan_scenario_row(grid.sheets[0], 1, {"B", "C", "D", "E"})

        assert actual == set()
        assert budget == {"B", "C"}


class TestGuideMatching:
    """Tests for exact guide label matching."""

    def test_first_row_per_sheet(self) -> None:
        """Normalized labels match; the first row on each sheet wins."""
        grid = Grid.from_rows(
            {
                "Revenue": [["Total MRR"], ["total mrr"]],
                "Summary": [[None], [None], ["Total  MRR."]],
            },
        )
        matches = match_guide_labels(build_row_label_index(grid), {"mrr": ["Total MRR"]})

        assert matches == {"mrr": {"Revenue": 1, "Summary": 3}}

    def test_build_targets_includes_synonyms(self) -> None:
        """Guide labels come first, then synonyms rendered as words, then the id."""
        targets = build_targets(["arr"], {"mrr": ["Total MRR"]}, {"total_mrr": "mrr", "total_arr": "arr"})

        assert targets == {"arr": ["total arr", "arr"], "mrr": ["Total MRR", "total mrr", "mrr"]}


class TestBuildDigest:
    """Tests for build_digest."""

    def test_head_and_tail(self, revenue_grid: Grid) -> None:
        """The digest names the sheet and shows head and tail rows with refs."""
        digest = build_digest(revenue_grid, {"digest_head_rows": 4, "digest_tail_rows": 1})

        assert digest.startswith("### Sheet: Revenue (29 rows x 27 columns, A..AA)")
        assert "D3=Mar-24" in digest
        assert "A29=Total MRR" in digest
        assert "A10=Total Customers" not in digest
        assert "..." in digest


class TestCoordinateMapper:
    """Tests for CoordinateMapper.build."""

    def test_structure_and_guide_labels(
        self,
        revenue_grid: Grid,
        revenue_structure: dict[str, Any],
        make_service: Any,
    ) -> None:
        """Scenario and date rows are re-read from the grid; guide labels give rows."""
        service = make_service(structure=revenue_structure)
        mapper = CoordinateMapper(service, SEQUENTIAL)

        outcome = mapper.build(revenue_grid, {"mrr": ["Total MRR"], "customers": ["Total Customers"]})
        coords = outcome.coordinate_map.sheets["Revenue"]

        assert outcome.structural_kind is StructuralKind.COMPLETE
        assert coords.metric_rows == {"mrr": 29, "customers": 10}
        assert coords.column_dates["J"] == "2024-09-01"
        assert coords.column_dates["AA"] == "2026-02-01"
        assert {"D", "J", "O"} <= coords.actual_columns
        assert {"P", "AA"} <= coords.budget_columns
        assert not coords.ambiguous_columns
        assert outcome.unresolved == ()
        # Everything resolved by the guide, so no matching request
        assert service.calls_to("match_metrics") == []

    def test_service_matches_override_structure(
        self,
        revenue_grid: Grid,
        revenue_structure: dict[str, Any],
        make_service: Any,
    ) -> None:
        """A matching-phase row beats a structural metricRows entry."""
        revenue_structure["sheets"]["Revenue"]["metricRows"] = {"arr": 10}
        service = make_service(
            structure=revenue_structure,
            matches={"matches": {"arr": {"sheet": "Revenue", "row": 29}}},
        )
        mapper = CoordinateMapper(service, {"concurrent_phases": True, "timeout_seconds": 5})

        outcome = mapper.build(revenue_grid, {"arr": ["annual recurring revenue"]})

        assert outcome.service_matches == {"arr": ("Revenue", 29)}
        assert outcome.coordinate_map.sheets["Revenue"].metric_rows["arr"] == 29
        request = service.calls_to("match_metrics")[0]
        assert list(request["targets"]) == ["arr"]
        assert {"row": 29, "label": "Total MRR"} in request["labels"]["Revenue"]

    def test_sequential_matching_skips_structural_rows(
        self,
        revenue_grid: Grid,
        revenue_structure: dict[str, Any],
        make_service: Any,
    ) -> None:
        """Sequential mode only asks for metrics the structural phase left open."""
        revenue_structure["sheets"]["Revenue"]["metricRows"] = {"arr": 29}
        service = make_service(structure=revenue_structure)
        mapper = CoordinateMapper(service, SEQUENTIAL)

        outcome = mapper.build(revenue_grid, {"arr": ["annual recurring revenue"], "nrr": ["net retention"]})

        (request,) = service.calls_to("match_metrics")
        assert list(request["targets"]) == ["nrr"]
        assert outcome.coordinate_map.sheets["Revenue"].metric_rows["arr"] == 29
        assert outcome.unresolved == ("nrr",)

        service = make_service(structure=revenue_structure)
        CoordinateMapper(service, SEQUENTIAL).build(revenue_grid, {"arr": ["annual recurring revenue"]})
        assert service.calls_to("match_metrics") == []

    def test_ambiguous_columns_excluded(self, make_service: Any) -> None:
        """Columns tagged both actual and budget yield no scenario columns."""
        grid = Grid.from_rows(
            {
                "S": [
                    [None, "Jan-24", "Feb-24"],
                    [None, "Actual vs Budget", "Actual"],
                    ["Revenue", 10, 20],
                ],
            },
        )
        structure = {
            "sheets": {
                "S": {
                    "scenarioLabelRow": 2,
                    "dateHeaderRow": 1,
                    "actualColumns": ["B", "C"],
                    "budgetColumns": ["B"],
                    "columnDates": {},
                },
            },
        }
        mapper = CoordinateMapper(make_service(structure=structure), SEQUENTIAL)

        cmap = mapper.build(grid, {"revenue": ["Revenue"]}).coordinate_map
        coords = cmap.sheets["S"]

        assert coords.ambiguous_columns == {"B"}
        assert coords.scenario_columns() == [("C", "actual")]
        sheet = cmap.to_dict()["S"]
        assert not set(sheet["actual_columns"]) & set(sheet["budget_columns"])
        assert sheet["actual_columns"] == ["C"]
        assert sheet["budget_columns"] == []
        assert sheet["ambiguous_columns"] == ["B"]

    def test_service_failure_is_empty(self, revenue_grid: Grid, make_service: Any) -> None:
        """Exceptions and malformed JSON become empty phase results."""
        service = make_service(structure=RuntimeError("rate limited"), matches="not json")
        mapper = CoordinateMapper(service, SEQUENTIAL)

        outcome = mapper.build(revenue_grid, {"arr": ["ARR"]})

        assert outcome.structural_kind is StructuralKind.EMPTY
        assert outcome.coordinate_map.is_empty()
        assert outcome.unresolved == ("arr",)
        assert any("rate limited" in error for error in outcome.errors)

    def test_structural_timeout(self, revenue_grid: Grid, make_service: Any, revenue_structure: dict[str, Any]) -> None:
        """A phase that outlives the timeout is treated as empty."""
        release = threading.Event()
        service = make_service(structure=revenue_structure, block=release)
        mapper = CoordinateMapper(service, {"concurrent_phases": False, "timeout_seconds": 0.2})

        try:
            outcome = mapper.build(revenue_grid, {"mrr": ["Total MRR"]})
        finally:
            release.set()

        assert outcome.structural_kind is StructuralKind.EMPTY
        assert "structural: timeout" in outcome.errors
        assert outcome.coordinate_map.is_empty()

    def test_no_service_is_deterministic(self, revenue_grid: Grid) -> None:
        """Without a service only guide matches are computed."""
        outcome = CoordinateMapper(None, SEQUENTIAL).build(revenue_grid, {"mrr": ["Total MRR"]})

        assert outcome.guide_matches == {"mrr": {"Revenue": 29}}
        assert outcome.coordinate_map.is_empty()
