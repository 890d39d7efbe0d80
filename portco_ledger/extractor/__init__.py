"""Extractor module: documents in, normalized line items out.

Key exports:
    load_grid: Spreadsheet bytes (xlsx/csv) to an in-memory Grid
    build_row_label_index: Deterministic scan of label columns
    CoordinateMapper: Structural + matching phases into a CoordinateMap
    extract_line_items: Deterministic cell reads with provenance
    extract_from_summary: Low-confidence whole-document fallback
    scan_pages_for_labels: Guide-label scan of PDF page text
    LLMDocumentService: Hosted-model Document Understanding Service
"""

from portco_ledger.extractor.coordinate_mapper import (
    CoordinateMapper,
    MappingOutcome,
    build_digest,
    build_targets,
    default_targets,
)
from portco_ledger.extractor.document_service import (
    DocumentServiceError,
    DocumentUnderstandingService,
    LLMDocumentService,
)
from portco_ledger.extractor.grid import (
    Grid,
    IngestionError,
    Sheet,
    cell_ref,
    column_to_letter,
    letter_to_column,
    load_grid,
)
from portco_ledger.extractor.label_index import build_row_label_index, group_labels_for_prompt
from portco_ledger.extractor.pdf_parser import extract_pdf_pages, scan_pages_for_labels
from portco_ledger.extractor.periods import parse_period, period_from_filename
from portco_ledger.extractor.schemas import StructuralKind, StructuralResult
from portco_ledger.extractor.strategies import Strategy, StrategyResult, StrategyStatus, run_strategies
from portco_ledger.extractor.types import (
    CoordinateMap,
    NormalizedLineItem,
    RowLabelEntry,
    SheetCoordinates,
    SourceLocation,
)
from portco_ledger.extractor.value_extractor import (
    ExtractionResult,
    extract_from_summary,
    extract_line_items,
)

__all__ = [
    "CoordinateMap",
    # Coordinate mapping
    "CoordinateMapper",
    "DocumentServiceError",
    # Document Understanding Service
    "DocumentUnderstandingService",
    "ExtractionResult",
    # Grid model
    "Grid",
    "IngestionError",
    "LLMDocumentService",
    "MappingOutcome",
    "NormalizedLineItem",
    "RowLabelEntry",
    "Sheet",
    "SheetCoordinates",
    "SourceLocation",
    # Strategy chain
    "Strategy",
    "StrategyResult",
    "StrategyStatus",
    "StructuralKind",
    "StructuralResult",
    "build_digest",
    "build_row_label_index",
    "build_targets",
    "cell_ref",
    "column_to_letter",
    "default_targets",
    "extract_from_summary",
    "extract_line_items",
    "extract_pdf_pages",
    "group_labels_for_prompt",
    "letter_to_column",
    "load_grid",
    "parse_period",
    "period_from_filename",
    "run_strategies",
    "scan_pages_for_labels",
]
