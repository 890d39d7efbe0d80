"""Page-oriented report parsing with pdfplumber.

Reports have no grid, so the only deterministic path is a scan of page text
lines for the company guide's exact labels. Values found that way keep page
and bounding-box provenance; everything else goes to the whole-document
summary fallback.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pdfplumber

from portco_ledger.config import get_decimal_comma_currencies, get_section, setup_logging
from portco_ledger.extractor.grid import IngestionError
from portco_ledger.extractor.types import NormalizedLineItem, SourceLocation
from portco_ledger.utils.parsing import normalize_for_matching, parse_localized_number

if TYPE_CHECKING:
    from portco_ledger.extractor.types import Scenario

logger = setup_logging(__name__)

__all__ = ["PdfLine", "PdfPage", "extract_pdf_pages", "pages_to_text", "scan_pages_for_labels"]

_AMOUNT = re.compile(r"\(?\s*[-−]?\s*[$€£¥]?\s*\d[\d.,]*(?:\s\d{3})*\s*\)?")


@dataclass(frozen=True)
class PdfLine:
    """A text line and its bounding box ``(x0, top, x1, bottom)``."""

    text: str
    bbox: tuple[float, float, float, float] | None = None


@dataclass(frozen=True)
class PdfPage:
    """Text of one page, 1-indexed."""

    number: int
    text: str
    lines: tuple[PdfLine, ...] = field(default_factory=tuple)


def extract_pdf_pages(content: bytes, filename: str) -> list[PdfPage]:
    """Extract text and text lines from every page of a PDF.

    Raises
    ------
    IngestionError
        If pdfplumber cannot open the document.
    """
    logger.info("Extracting text from PDF: %s", filename)
    pages: list[PdfPage] = []

    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            logger.debug("PDF has %s pages", len(pdf.pages))
            for idx, page in enumerate(pdf.pages):
                text = page.extract_text() or ""
                lines = tuple(
                    PdfLine(
                        text=line["text"],
                        bbox=(float(line["x0"]), float(line["top"]), float(line["x1"]), float(line["bottom"])),
                    )
                    for line in page.extract_text_lines()
                )
                pages.append(PdfPage(number=idx + 1, text=text, lines=lines))
                logger.debug(f"Page {idx + 1}: {len(text)} characters")
    except IngestionError:
        raise
    except Exception as e:
        msg = f"Could not read PDF {filename}: {e}"
        raise IngestionError(msg) from e

    logger.info(f"Extracted text from {len(pages)} pages")
    return pages


def pages_to_text(pages: list[PdfPage]) -> str:
    """Join page texts with page markers for the summary request."""
    return "\n\n".join(f"--- Page {page.number} ---\n{page.text}" for page in pages)


def _lines(page: PdfPage) -> tuple[PdfLine, ...]:
    if page.lines:
        return page.lines
    return tuple(PdfLine(text=line) for line in page.text.splitlines())


def _amount_after_label(line: str, label: str) -> str | None:
    """Return the first amount token after ``label`` when the line starts with it."""
    normalized_line = normalize_for_matching(line)
    normalized_label = normalize_for_matching(label)
    if not normalized_label or not normalized_line.startswith(normalized_label):
        return None
    if normalized_line[len(normalized_label) : len(normalized_label) + 1] not in {"", " "}:
        return None

    words = line.split()
    remainder = " ".join(words[len(label.split()) :]).lstrip(" :")
    match = _AMOUNT.match(remainder)
    return match.group(0).strip() if match else None


def scan_pages_for_labels(
    pages: list[PdfPage],
    guide_labels: dict[str, list[str]],
    period_date: str,
    currency: str = "USD",
    scenario: Scenario = "actual",
    confidence: float | None = None,
) -> list[NormalizedLineItem]:
    """Find guide labels at the start of page lines and read the amount after them.

    The first hit per metric wins (pages in order, lines top to bottom).

    Parameters
    ----------
    pages : list[PdfPage]
        Pages from :func:`extract_pdf_pages`.
    guide_labels : dict[str, list[str]]
        Metric id → exact labels from the company guide.
    period_date : str
        ISO period the report covers.
    currency : str
        Hint for locale-ambiguous numbers.
    scenario : Scenario
        Scenario of the figures, ``actual`` unless the file is a budget.
    confidence : float, optional
        Defaults to ``config.json → fallback.page_scan_confidence``.
    """
    if confidence is None:
        confidence = float(get_section("fallback").get("page_scan_confidence", 0.8))
    decimal_comma = get_decimal_comma_currencies()

    items: list[NormalizedLineItem] = []
    found: set[str] = set()
    # Longest labels first
    candidates = sorted(
        ((metric_id, label) for metric_id, labels in guide_labels.items() for label in labels),
        key=lambda pair: -len(pair[1]),
    )

    for page in pages:
        for line in _lines(page):
            for metric_id, label in candidates:
                if metric_id in found:
                    continue
                token = _amount_after_label(line.text, label)
                if token is None:
                    continue
                amount = parse_localized_number(token, currency, decimal_comma)
                if amount is None:
                    continue
                found.add(metric_id)
                items.append(
                    NormalizedLineItem(
                        metric_id=metric_id,
                        amount=amount,
                        period_date=period_date,
                        scenario=scenario,
                        source_location=SourceLocation(
                            file_type="pdf",
                            page=page.number,
                            bbox=line.bbox,
                            note=f'Label "{label}"',
                        ),
                        confidence=confidence,
                        raw_value=token,
                    ),
                )
                break

    logger.info(f"Page scan found {len(items)} of {len(guide_labels)} guide metrics")
    return sorted(items, key=lambda item: item.metric_id)
