#!/usr/bin/env python3
"""Ingestion entry point: documents in, company ledger updated.

Usage (from project root):
    python -m portco_ledger.main_ingest --company acme reports/*.xlsx reports/*.pdf
    python -m portco_ledger.main_ingest --company acme board_deck_2024_09.pdf --export
    python -m portco_ledger.main_ingest --company acme --offline budget_2025.xlsx

    # Mapping review:
    python -m portco_ledger.main_ingest --company acme --pending
    python -m portco_ledger.main_ingest --company acme --approve recurring_subscriptions --as mrr
    python -m portco_ledger.main_ingest --company acme --reject other_income

CLI Flags:
    --company, -c       Company slug (required); selects guide, ledger and mappings
    --offline           Deterministic stages only, no Document Understanding Service
    --no-cache          Ignore and do not write the extraction cache
    --workers           Documents extracted in parallel (default: 4)
    --export            Write <company>_ledger.xlsx after ingestion
    --csv               Also write ledger and conflict CSVs
    --pending           List mapping suggestions awaiting review
    --approve LABEL     Approve a suggestion (optionally --as CANONICAL_ID)
    --reject LABEL      Reject a suggestion
    --fail-on-conflict  Exit with error code if a high-severity conflict was raised
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from portco_ledger.config import CACHE_DIR, setup_logging, validate_api_keys
from portco_ledger.extractor.document_service import LLMDocumentService
from portco_ledger.ledger.store import JsonLedgerStore
from portco_ledger.pipeline import BatchResult, DocumentInput, IngestionPipeline
from portco_ledger.transformer.mapping_store import MappingStore
from portco_ledger.writer.ledger_export import write_conflicts_csv, write_ledger_csv, write_ledger_workbook

logger = setup_logging(__name__)


def print_batch_report(batch: BatchResult) -> None:
    """Print a per-document and per-conflict overview of a batch."""
    print(f"\n{'=' * 70}")
    print(f"Ingestion report: {batch.company}")
    print("=" * 70)

    for document in batch.documents:
        status = "OK  " if document.success else "FAIL"
        cached = " (cached)" if document.from_cache else ""
        print(f"[{status}] {document.filename}: {len(document.line_items)} items via {document.method}{cached}")
        for error in document.errors:
            print(f"       error: {error}")
        for suggestion in document.mapping_suggestions:
            print(
                f"       mapping {suggestion.status}: {suggestion.label} -> "
                f"{suggestion.metric_id} ({suggestion.confidence:.2f})",
            )

    summary = batch.reconciliation.summary
    print(
        f"\nLedger: {summary.inserted} inserted, {summary.updated} updated, "
        f"{summary.ignored} ignored, {summary.unchanged} unchanged",
    )

    if batch.reconciliation.conflicts:
        print(f"\nConflicts ({len(batch.reconciliation.conflicts)}):")
        for conflict in batch.reconciliation.conflicts:
            print(
                f"  [{conflict.severity.upper():6}] {conflict.metric_id} {conflict.period} {conflict.scenario}: "
                f"{conflict.existing_value:,.2f} ({conflict.existing_source}) -> "
                f"{conflict.new_value:,.2f} ({conflict.new_source}) => {conflict.recommendation}",
            )


def _review_mappings(args: argparse.Namespace) -> int:
    store = MappingStore(args.company)

    if args.approve:
        try:
            mapping = store.approve(args.approve, args.as_id)
        except KeyError as e:
            logger.error("%s", e)
            return 1
        print(f"Approved {mapping.raw_label} -> {mapping.canonical_id}")
    if args.reject:
        try:
            mapping = store.reject(args.reject)
        except KeyError as e:
            logger.error("%s", e)
            return 1
        print(f"Rejected {mapping.raw_label}")
    if args.pending:
        pending = store.pending()
        if not pending:
            print(f"No pending mapping suggestions for {args.company}")
        for mapping in pending:
            print(f"{mapping.raw_label:40} -> {mapping.canonical_id:25} {mapping.confidence:.2f}  {mapping.reasoning}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse CLI flags, ingest documents and optionally export the ledger.

    Returns
    -------
    int
        ``0`` on success; ``1`` when a document failed, a review action
        failed, or ``--fail-on-conflict`` saw a high-severity conflict.
    """
    parser = argparse.ArgumentParser(
        description="Ingest portfolio company documents into the metric ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m portco_ledger.main_ingest -c acme monthly_report_2024_09.pdf
  python -m portco_ledger.main_ingest -c acme model.xlsx board_deck.pdf --export
  python -m portco_ledger.main_ingest -c acme --pending
        """,
    )
    parser.add_argument("files", nargs="*", type=Path, help="Documents to ingest (.xlsx, .xlsm, .csv, .pdf)")
    parser.add_argument("--company", "-c", required=True, help="Company slug (e.g., acme)")
    parser.add_argument("--offline", action="store_true", help="Skip the Document Understanding Service")
    parser.add_argument("--no-cache", action="store_true", help="Do not use the extraction cache")
    parser.add_argument("--workers", type=int, default=4, help="Parallel document extractions (default: 4)")
    parser.add_argument("--export", action="store_true", help="Write the ledger workbook after ingestion")
    parser.add_argument("--csv", action="store_true", help="Also write ledger and conflict CSVs")
    parser.add_argument("--quiet", action="store_true", help="Don't print report")
    parser.add_argument("--fail-on-conflict", action="store_true", help="Exit with error on high-severity conflicts")

    review = parser.add_argument_group("mapping review")
    review.add_argument("--pending", action="store_true", help="List pending mapping suggestions")
    review.add_argument("--approve", metavar="LABEL", help="Approve the suggestion for LABEL")
    review.add_argument("--as", dest="as_id", metavar="CANONICAL_ID", help="Canonical id to approve LABEL as")
    review.add_argument("--reject", metavar="LABEL", help="Reject the suggestion for LABEL")

    args = parser.parse_args(argv)

    if args.pending or args.approve or args.reject:
        return _review_mappings(args)

    if not args.files and not args.export:
        parser.error("no files given")

    missing = [str(p) for p in args.files if not p.exists()]
    if missing:
        logger.error("Files not found: %s", ", ".join(missing))
        return 1

    service = None
    if not args.offline:
        keys = validate_api_keys()
        if any(keys.values()):
            service = LLMDocumentService()
        else:
            logger.warning("No API keys configured; running deterministic stages only")

    store = JsonLedgerStore()
    pipeline = IngestionPipeline(
        service=service,
        ledger_store=store,
        cache_dir=None if args.no_cache else CACHE_DIR,
        max_workers=args.workers,
    )

    batch = pipeline.ingest_batch([DocumentInput.from_path(p) for p in args.files], args.company)

    if not args.quiet and args.files:
        print_batch_report(batch)

    if args.export or args.csv:
        facts = store.snapshot(args.company)
        if args.export:
            write_ledger_workbook(args.company, facts, batch.reconciliation.conflicts)
        if args.csv:
            write_ledger_csv(args.company, facts)
            write_conflicts_csv(args.company, batch.reconciliation.conflicts)

    if any(not d.success for d in batch.documents):
        return 1
    if args.fail_on_conflict and any(c.severity == "high" for c in batch.reconciliation.conflicts):
        logger.error("High-severity conflicts found and --fail-on-conflict is set")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
