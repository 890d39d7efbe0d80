"""portco-ledger: financial metric ledger for portfolio company documents.

The package turns spreadsheets and page-oriented reports submitted by portfolio
companies into a normalized, versioned ledger of metrics per company, period
and scenario (actual vs budget).

Architecture
------------
* ``extractor``: grid loading (openpyxl/pandas), row label index, coordinate
  mapping with the Document Understanding Service, deterministic value reads,
  PDF page scans (pdfplumber) and the whole-document fallback.
* ``transformer``: metric canonicalization and company mapping review.
* ``ledger``: source priorities, fact reconciliation and JSON persistence.
* ``writer``: ledger and conflict exports to Excel/CSV.
* ``pipeline``: per-document strategies and batch ingestion.

Configuration and credentials
-----------------------------
Paths default to the ``data/``, ``audit/`` and ``logs/`` trees but respect
``DATA_DIR``, ``AUDIT_DIR``, ``LOGS_DIR`` and ``CACHE_DIR`` overrides. The
Document Understanding Service uses ``OPENROUTER_API_KEY`` (OpenAI-compatible)
with ``MISTRAL_API_KEY`` as fallback.

Examples
--------
Ingest a month of documents for one company:

    >>> python -m portco_ledger.main_ingest --company acme report.pdf model.xlsx
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
