"""Document-to-ledger pipeline.

Per document (sequential, no shared state):

1. Load the document: spreadsheets into a Grid, PDFs into page text.
2. Run the extraction strategies in order, stopping at the first that yields
   line items:

   * ``coordinates``: coordinate mapper + deterministic value extractor
   * ``page_scan``: guide labels in PDF page text
   * ``summary``: whole-document summary from the Document Understanding Service

3. Canonicalize metric labels; items whose label is pending review or
   unresolved are held back from the ledger and reported.

Per batch, documents are extracted in parallel and reconciled into the ledger
one document at a time, in input order. Each stage returns an immutable
summary; :class:`BatchResult` folds them.

Extraction results are cached under ``CACHE_DIR`` by company and SHA-256 of the
document bytes, so re-ingesting a file skips every service call.
"""

from __future__ import annotations

import hashlib
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from portco_ledger.config import CACHE_DIR, setup_logging
from portco_ledger.extractor.coordinate_mapper import CoordinateMapper, default_targets
from portco_ledger.extractor.grid import IngestionError, grid_to_text, is_spreadsheet, load_grid
from portco_ledger.extractor.pdf_parser import extract_pdf_pages, pages_to_text, scan_pages_for_labels
from portco_ledger.extractor.periods import period_from_filename
from portco_ledger.extractor.strategies import Strategy, StrategyResult, run_strategies
from portco_ledger.extractor.types import NormalizedLineItem
from portco_ledger.extractor.value_extractor import ExtractionResult, extract_from_summary, extract_line_items
from portco_ledger.guide import CompanyGuide, load_guide
from portco_ledger.ledger.priority import PriorityRules
from portco_ledger.ledger.types import (
    FactCandidate,
    ReconciliationResult,
    ReconciliationSummary,
    VarianceExplanation,
)
from portco_ledger.transformer.canonicalizer import MetricCanonicalizer

if TYPE_CHECKING:
    from portco_ledger.extractor.document_service import DocumentUnderstandingService
    from portco_ledger.extractor.grid import Grid
    from portco_ledger.extractor.pdf_parser import PdfPage
    from portco_ledger.ledger.store import JsonLedgerStore
    from portco_ledger.transformer.canonicalizer import CanonicalizationResult

logger = setup_logging(__name__)

__all__ = [
    "BatchResult",
    "DocumentInput",
    "DocumentResult",
    "ExtractionSummary",
    "IngestionPipeline",
    "document_cache_key",
]


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class DocumentInput:
    """Raw document bytes with their original file name."""

    filename: str
    content: bytes

    @classmethod
    def from_path(cls, path: Path) -> DocumentInput:
        return cls(filename=path.name, content=path.read_bytes())


@dataclass(frozen=True)
class ExtractionSummary:
    """Counts of one document's extraction; summaries add up."""

    documents: int = 0
    failed_documents: int = 0
    line_items: int = 0
    skipped_values: int = 0
    unmapped_items: int = 0
    fallback_documents: int = 0
    cached_documents: int = 0

    def __add__(self, other: ExtractionSummary) -> ExtractionSummary:
        return ExtractionSummary(
            documents=self.documents + other.documents,
            failed_documents=self.failed_documents + other.failed_documents,
            line_items=self.line_items + other.line_items,
            skipped_values=self.skipped_values + other.skipped_values,
            unmapped_items=self.unmapped_items + other.unmapped_items,
            fallback_documents=self.fallback_documents + other.fallback_documents,
            cached_documents=self.cached_documents + other.cached_documents,
        )


@dataclass(frozen=True)
class DocumentResult:
    """Everything extracted from one document, before reconciliation."""

    filename: str
    success: bool
    method: str | None = None
    line_items: tuple[NormalizedLineItem, ...] = ()
    unmapped: tuple[NormalizedLineItem, ...] = ()
    mapping_suggestions: tuple[CanonicalizationResult, ...] = ()
    explanations: tuple[VarianceExplanation, ...] = ()
    skipped: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    from_cache: bool = False

    @property
    def summary(self) -> ExtractionSummary:
        return ExtractionSummary(
            documents=1,
            failed_documents=0 if self.success else 1,
            line_items=len(self.line_items),
            skipped_values=len(self.skipped),
            unmapped_items=len(self.unmapped),
            fallback_documents=1 if self.method == "summary" else 0,
            cached_documents=1 if self.from_cache else 0,
        )

    def candidates(self) -> list[FactCandidate]:
        return [
            FactCandidate(
                metric_id=item.metric_id,
                period_date=item.period_date,
                scenario=item.scenario,
                amount=item.amount,
                source_file=self.filename,
                source_location=item.source_location.to_dict(),
            )
            for item in self.line_items
        ]


@dataclass(frozen=True)
class BatchResult:
    """Documents of a batch and the folded reconciliation outcome."""

    company: str
    documents: tuple[DocumentResult, ...] = ()
    reconciliation: ReconciliationResult = field(default_factory=ReconciliationResult)

    @property
    def extraction_summary(self) -> ExtractionSummary:
        total = ExtractionSummary()
        for document in self.documents:
            total = total + document.summary
        return total

    @property
    def summary(self) -> dict[str, Any]:
        return {
            "company": self.company,
            **vars(self.extraction_summary),
            **self.reconciliation.summary.to_dict(),
        }


def _fold(results: list[ReconciliationResult]) -> ReconciliationResult:
    """Combine per-document reconciliations; facts come from the last one."""
    if not results:
        return ReconciliationResult()
    summary = ReconciliationSummary()
    for result in results:
        summary = summary + result.summary
    return ReconciliationResult(
        facts=results[-1].facts,
        changes=tuple(change for result in results for change in result.changes),
        conflicts=tuple(conflict for result in results for conflict in result.conflicts),
        summary=summary,
    )


def document_cache_key(content: bytes, filename: str, guide: CompanyGuide) -> str:
    """SHA-256 hex digest of the document bytes, its file name and the guide."""
    digest = hashlib.sha256(content)
    digest.update(Path(filename).name.encode("utf-8"))
    digest.update(json.dumps(asdict(guide), sort_keys=True).encode("utf-8"))
    return digest.hexdigest()


# =============================================================================
# Pipeline
# =============================================================================


class IngestionPipeline:
    """Ingest documents for a company into its ledger.

    Parameters
    ----------
    service : DocumentUnderstandingService | None
        Injected service; ``None`` runs deterministic stages only.
    ledger_store : JsonLedgerStore
        Where facts are reconciled and persisted.
    canonicalizer : MetricCanonicalizer, optional
        Defaults to one built on ``service``.
    mapper : CoordinateMapper, optional
        Defaults to one built on ``service``.
    cache_dir : Path | None
        Extraction cache directory; ``None`` disables caching.
    max_workers : int
        Documents extracted in parallel per batch.
    """

    def __init__(
        self,
        service: DocumentUnderstandingService | None,
        ledger_store: JsonLedgerStore,
        canonicalizer: MetricCanonicalizer | None = None,
        mapper: CoordinateMapper | None = None,
        cache_dir: Path | None = CACHE_DIR,
        max_workers: int = 4,
    ) -> None:
        self.service = service
        self.ledger_store = ledger_store
        self.canonicalizer = canonicalizer or MetricCanonicalizer(service)
        self.mapper = mapper or CoordinateMapper(service)
        self.cache_dir = cache_dir
        self.max_workers = max(1, max_workers)
        self.rules = ledger_store.rules or PriorityRules.from_config()

    # -- public entry points ----------------------------------------------

    def ingest_document(
        self,
        content: bytes,
        filename: str,
        company: str,
        guide: CompanyGuide | None = None,
    ) -> BatchResult:
        """Extract one document and reconcile it into the company ledger."""
        return self.ingest_batch([DocumentInput(filename=filename, content=content)], company, guide)

    def ingest_batch(
        self,
        documents: list[DocumentInput],
        company: str,
        guide: CompanyGuide | None = None,
    ) -> BatchResult:
        """Extract documents in parallel, then reconcile them in input order.

        A document that fails to load is reported with ``success=False``; the
        rest of the batch is unaffected.
        """
        guide = guide or load_guide(company)
        logger.info(f"Ingesting {len(documents)} documents for {company}")

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ingest") as executor:
            results = list(executor.map(lambda doc: self._safe_extract(doc, company, guide), documents))

        reconciliations = [
            self.ledger_store.apply(company, result.candidates(), result.explanations)
            for result in results
            if result.line_items
        ]
        batch = BatchResult(company=company, documents=tuple(results), reconciliation=_fold(reconciliations))
        logger.info("Batch summary: %s", batch.summary)
        return batch

    def extract_document(self, document: DocumentInput, company: str, guide: CompanyGuide) -> DocumentResult:
        """Run extraction strategies and canonicalization for one document.

        Raises
        ------
        IngestionError
            If the document type is unsupported or the file is unreadable.
        """
        cache_key = document_cache_key(document.content, document.filename, guide)
        cached = self._load_cache(company, cache_key)
        if cached is not None:
            logger.info("Using cached extraction for %s", document.filename)
            extraction, from_cache = cached, True
        else:
            extraction, from_cache = self._extract(document, guide), False
            if extraction.items:
                self._save_cache(company, cache_key, document.filename, extraction)

        return self._canonicalize(document.filename, company, guide, extraction, from_cache)

    # -- extraction -------------------------------------------------------

    def _safe_extract(self, document: DocumentInput, company: str, guide: CompanyGuide) -> DocumentResult:
        try:
            return self.extract_document(document, company, guide)
        except IngestionError as e:
            logger.error("Could not ingest %s: %s", document.filename, e)
            return DocumentResult(filename=document.filename, success=False, errors=(str(e),))
        except Exception as e:
            logger.exception("Unexpected failure ingesting %s", document.filename)
            return DocumentResult(filename=document.filename, success=False, errors=(f"{type(e).__name__}: {e}",))

    def _extract(self, document: DocumentInput, guide: CompanyGuide) -> ExtractionResult:
        filename = document.filename
        strategies: list[Strategy[ExtractionResult]] = []

        if is_spreadsheet(filename):
            grid = load_grid(document.content, filename)
            file_type = Path(filename).suffix.lstrip(".").lower()
            strategies.append(Strategy("coordinates", lambda: self._coordinates_strategy(grid, guide, file_type)))
            document_text = grid_to_text(grid)
        elif filename.lower().endswith(".pdf"):
            pages = extract_pdf_pages(document.content, filename)
            file_type = "pdf"
            strategies.append(Strategy("page_scan", lambda: self._page_scan_strategy(pages, filename, guide)))
            document_text = pages_to_text(pages)
        else:
            msg = f"Unsupported document type: {filename}"
            raise IngestionError(msg)

        strategies.append(
            Strategy("summary", lambda: self._summary_strategy(document_text, filename, file_type, guide)),
        )

        outcome = run_strategies(strategies)
        if outcome.ok and outcome.result.data is not None:
            return outcome.result.data
        logger.warning("No line items extracted from %s: %s", filename, outcome.result.error)
        return ExtractionResult(method="none")

    def _coordinates_strategy(
        self,
        grid: Grid,
        guide: CompanyGuide,
        file_type: str,
    ) -> StrategyResult[ExtractionResult]:
        mapping = self.mapper.build(grid, default_targets(guide.metrics))
        if mapping.coordinate_map.is_empty():
            return StrategyResult.retryable("coordinate map is empty")
        extraction = extract_line_items(grid, mapping.coordinate_map, guide.currency, file_type)
        if not extraction.items:
            return StrategyResult.retryable("coordinate map produced no numeric cells")
        return StrategyResult.success(extraction)

    def _page_scan_strategy(
        self,
        pages: list[PdfPage],
        filename: str,
        guide: CompanyGuide,
    ) -> StrategyResult[ExtractionResult]:
        if not guide.metrics:
            return StrategyResult.retryable("no guide labels to scan for")
        period = period_from_filename(filename)
        if period is None:
            return StrategyResult.retryable("no period in file name")
        scenario = "budget" if self.rules.detect_document_type(filename) == "budget_file" else "actual"
        items = scan_pages_for_labels(pages, guide.metrics, period, guide.currency, scenario)
        if not items:
            return StrategyResult.retryable("no guide labels found on any page")
        return StrategyResult.success(ExtractionResult(items=tuple(items), method="page_scan", period_hint=period))

    def _summary_strategy(
        self,
        text: str,
        filename: str,
        file_type: str,
        guide: CompanyGuide,
    ) -> StrategyResult[ExtractionResult]:
        if self.service is None:
            return StrategyResult.fatal("no document service configured")
        try:
            response = self.service.summarize_document(text, filename)
        except Exception as e:
            logger.exception("Summary request failed for %s", filename)
            return StrategyResult.fatal(f"summary request failed: {e}")
        extraction = extract_from_summary(response, filename, file_type, guide.currency)
        if not extraction.items:
            return StrategyResult.fatal("summary contained no usable figures")
        return StrategyResult.success(extraction)

    # -- canonicalization -------------------------------------------------

    def _canonicalize(
        self,
        filename: str,
        company: str,
        guide: CompanyGuide,
        extraction: ExtractionResult,
        from_cache: bool,
    ) -> DocumentResult:
        labels = [item.metric_id for item in extraction.items]
        labels += [e["metric"] for e in extraction.explanations]
        context = {"business_model": guide.business_model, "currency": guide.currency, "filename": filename}
        resolved = self.canonicalizer.canonicalize_many(labels, company, context)

        items: dict[tuple[str, str, str], NormalizedLineItem] = {}
        unmapped: list[NormalizedLineItem] = []
        for item in extraction.items:
            result = resolved[item.metric_id]
            if not result.applied:
                unmapped.append(item)
                continue
            canonical = replace(item, metric_id=result.metric_id)
            items.setdefault(canonical.key, canonical)

        explanations = tuple(
            VarianceExplanation(
                metric_id=resolved[e["metric"]].metric_id,
                explanation_type=e["type"],
                explanation=e["text"],
            )
            for e in extraction.explanations
            if resolved[e["metric"]].applied
        )
        suggestions = tuple(r for r in resolved.values() if r.status in {"pending", "auto_approved"})

        if unmapped:
            logger.info(f"{len(unmapped)} items from {filename} held back pending metric mapping review")

        return DocumentResult(
            filename=filename,
            success=extraction.method != "none",
            method=extraction.method,
            line_items=tuple(items.values()),
            unmapped=tuple(unmapped),
            mapping_suggestions=suggestions,
            explanations=explanations,
            skipped=extraction.skipped,
            errors=() if extraction.method != "none" else ("no line items extracted",),
            from_cache=from_cache,
        )

    # -- cache ------------------------------------------------------------

    def _cache_path(self, company: str, cache_key: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / company / f"{cache_key}.json"

    def _load_cache(self, company: str, cache_key: str) -> ExtractionResult | None:
        path = self._cache_path(company, cache_key)
        if path is None or not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as f:
                payload = json.load(f)
            return ExtractionResult(
                items=tuple(NormalizedLineItem.from_dict(item) for item in payload["items"]),
                method=payload["method"],
                skipped=tuple(payload.get("skipped", [])),
                explanations=tuple(payload.get("explanations", [])),
                period_hint=payload.get("period_hint"),
            )
        except (OSError, KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, e)
            return None

    def _save_cache(self, company: str, cache_key: str, filename: str, extraction: ExtractionResult) -> None:
        path = self._cache_path(company, cache_key)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "filename": filename,
            "method": extraction.method,
            "items": [item.to_dict() for item in extraction.items],
            "skipped": list(extraction.skipped),
            "explanations": list(extraction.explanations),
            "period_hint": extraction.period_hint,
        }
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.debug("Extraction cached: %s", path)
