"""Tests for PDF page text handling and the guide label scan."""

import pytest

from portco_ledger.extractor.grid import IngestionError
from portco_ledger.extractor.pdf_parser import (
    PdfLine,
    PdfPage,
    extract_pdf_pages,
    pages_to_text,
    scan_pages_for_labels,
)

PAGES = [
    PdfPage(number=1, text="Acme Analytics\nMonthly report September 2024"),
    PdfPage(
        number=2,
        text="",
        lines=(
            PdfLine(text="Total MRR: € 1.234,56", bbox=(50.0, 100.0, 300.0, 112.0)),
            PdfLine(text="Total MRR growth 4%", bbox=(50.0, 120.0, 300.0, 132.0)),
            PdfLine(text="Net burn (85.000)", bbox=(50.0, 140.0, 300.0, 152.0)),
        ),
    ),
    PdfPage(number=3, text="Total MRR 9.999,00\nTotal Customers 120"),
]

GUIDE = {"mrr": ["Total MRR"], "customers": ["Total Customers"], "burn_rate": ["Net burn"], "arr": ["ARR"]}


class TestScanPagesForLabels:
    """Tests for scan_pages_for_labels."""

    def test_first_hit_per_metric_with_provenance(self) -> None:
        """Each metric is read once, from its first line, with page and bbox."""
        items = scan_pages_for_labels(PAGES, GUIDE, "2024-09-01", currency="EUR", confidence=0.8)
        by_metric = {item.metric_id: item for item in items}

        assert set(by_metric) == {"mrr", "customers", "burn_rate"}
        mrr = by_metric["mrr"]
        assert mrr.amount == pytest.approx(1234.56)
        assert mrr.source_location.page == 2
        assert mrr.source_location.bbox == (50.0, 100.0, 300.0, 112.0)
        assert mrr.period_date == "2024-09-01"
        assert mrr.confidence == 0.8
        assert by_metric["burn_rate"].amount == pytest.approx(-85000.0)
        assert by_metric["customers"].source_location.page == 3
        assert by_metric["customers"].source_location.bbox is None

    def test_label_must_be_whole_words(self) -> None:
        """A label prefix that continues into another word does not match."""
        pages = [PdfPage(number=1, text="Total MRRs 500")]

        assert scan_pages_for_labels(pages, {"mrr": ["Total MRR"]}, "2024-09-01") == []

    def test_budget_scenario(self) -> None:
        """The caller decides the scenario of page figures."""
        pages = [PdfPage(number=1, text="Total MRR 1,500")]
        items = scan_pages_for_labels(pages, {"mrr": ["Total MRR"]}, "2025-01-01", scenario="budget")

        assert items[0].scenario == "budget"
        assert items[0].amount == 1500.0


class TestPageText:
    """Tests for page text helpers and loading."""

    def test_pages_to_text(self) -> None:
        """Pages are joined with numbered markers."""
        text = pages_to_text(PAGES[:1])

        assert text.startswith("--- Page 1 ---\nAcme Analytics")

    def test_unreadable_pdf(self) -> None:
        """Bytes that are not a PDF raise IngestionError."""
        with pytest.raises(IngestionError, match="Could not read PDF"):
            extract_pdf_pages(b"definitely not a pdf", "broken.pdf")
