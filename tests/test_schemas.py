"""Tests for Document Understanding Service response parsing."""

import json

from portco_ledger.extractor.schemas import (
    StructuralKind,
    extract_json_object,
    parse_matching_response,
    parse_structural_response,
)
from portco_ledger.extractor.types import RowLabelEntry

VALID_SHEET = {
    "actualColumns": ["d", "E"],
    "budgetColumns": ["P"],
    "columnDates": {"D": "Mar-24", "E": "2024-04-01", "P": "2025-03", "ZZZZ1": "2024-01-01"},
    "dateHeaderRow": "3",
    "scenarioLabelRow": 4,
    "metricRows": {"mrr": 29, "customers": "ten"},
    "notes": "ignored",
}


class TestExtractJsonObject:
    """Tests for extract_json_object."""

    def test_plain_json(self) -> None:
        """A bare object parses directly."""
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_json(self) -> None:
        """Markdown fences are unwrapped."""
        assert extract_json_object('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_in_prose(self) -> None:
        """The outermost brace span is tried last."""
        assert extract_json_object('Sure! {"a": {"b": 2}} Hope this helps.') == {"a": {"b": 2}}

    def test_non_object(self) -> None:
        """Arrays, garbage and empty text give None."""
        assert extract_json_object("[1, 2]") is None
        assert extract_json_object("no json here") is None
        assert extract_json_object(None) is None


class TestParseStructuralResponse:
    """Tests for parse_structural_response."""

    def test_complete(self) -> None:
        """Valid sheets are coerced and unknown fields ignored."""
        result = parse_structural_response(json.dumps({"sheets": {"Revenue": VALID_SHEET}}), ["Revenue"])

        assert result.kind is StructuralKind.COMPLETE
        sheet = result.sheets["Revenue"]
        assert sheet.actual_columns == frozenset({"D", "E"})
        assert sheet.budget_columns == frozenset({"P"})
        assert sheet.column_dates == {"D": "2024-03-01", "E": "2024-04-01", "P": "2025-03-01"}
        assert sheet.date_header_row == 3
        assert sheet.scenario_label_row == 4
        assert sheet.metric_rows == {"mrr": 29}

    def test_partial_when_a_sheet_is_invalid(self) -> None:
        """A sheet missing a required field is dropped, the rest kept."""
        payload = {"sheets": {"Revenue": VALID_SHEET, "Costs": {"actualColumns": ["D"]}}}
        result = parse_structural_response(json.dumps(payload), ["Revenue", "Costs"])

        assert result.kind is StructuralKind.PARTIAL
        assert set(result.sheets) == {"Revenue"}
        assert result.dropped_sheets == ("Costs",)

    def test_optional_rows_may_be_absent(self) -> None:
        """Date header and scenario rows are optional."""
        sheet = {"actualColumns": [], "budgetColumns": ["C"], "columnDates": {"C": "Q1 2025"}}
        result = parse_structural_response(json.dumps({"sheets": {"Plan": sheet}}), ["Plan"])

        assert result.kind is StructuralKind.COMPLETE
        assert result.sheets["Plan"].date_header_row is None
        assert result.sheets["Plan"].column_dates == {"C": "2025-01-01"}

    def test_unknown_sheet_names_dropped(self) -> None:
        """Sheets not present in the grid never reach the mapper."""
        result = parse_structural_response(json.dumps({"sheets": {"Hallucinated": VALID_SHEET}}), ["Revenue"])

        assert result.kind is StructuralKind.EMPTY
        assert result.sheets == {}

    def test_malformed_is_empty(self) -> None:
        """Non-JSON and wrong shapes are empty results, never exceptions."""
        assert parse_structural_response("I could not read the file").kind is StructuralKind.EMPTY
        assert parse_structural_response('{"sheets": []}').kind is StructuralKind.EMPTY
        assert parse_structural_response(None).kind is StructuralKind.EMPTY

    def test_wrong_field_types_drop_sheet(self) -> None:
        """Required fields of the wrong type invalidate the sheet."""
        bad = {"actualColumns": "D", "budgetColumns": [], "columnDates": {}}
        result = parse_structural_response(json.dumps({"sheets": {"Revenue": bad}}), ["Revenue"])

        assert result.kind is StructuralKind.EMPTY
        assert result.dropped_sheets == ("Revenue",)


class TestParseMatchingResponse:
    """Tests for parse_matching_response."""

    INDEX = [
        RowLabelEntry(sheet="Revenue", row=29, label="Total MRR", column="A"),
        RowLabelEntry(sheet="Revenue", row=10, label="Total Customers", column="A"),
    ]

    def test_keeps_indexed_coordinates(self) -> None:
        """Matches pointing at indexed rows survive."""
        text = json.dumps({"matches": {"mrr": {"sheet": "Revenue", "row": 29}}})
        assert parse_matching_response(text, self.INDEX) == {"mrr": ("Revenue", 29)}

    def test_discards_unknown_coordinates(self) -> None:
        """Rows absent from the index and malformed entries are dropped."""
        text = json.dumps(
            {
                "matches": {
                    "mrr": {"sheet": "Revenue", "row": 30},
                    "customers": {"sheet": "Other", "row": 10},
                    "arr": "Revenue!29",
                    "cash_balance": {"sheet": "Revenue", "row": "10"},
                },
            },
        )
        assert parse_matching_response(text, self.INDEX) == {"cash_balance": ("Revenue", 10)}

    def test_filters_to_requested_targets(self) -> None:
        """Metric ids that were not asked for are ignored."""
        text = json.dumps({"matches": {"mrr": {"sheet": "Revenue", "row": 29}}})
        assert parse_matching_response(text, self.INDEX, targets=["customers"]) == {}

    def test_malformed_is_empty(self) -> None:
        """Garbage yields no matches."""
        assert parse_matching_response("nope", self.INDEX) == {}
