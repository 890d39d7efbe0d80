"""Shared fixtures for portco_ledger tests.

This module provides:
- ``FakeDocumentService``: scripted Document Understanding Service double
- A month-by-month revenue workbook (actuals D..O, budget P..AA)
- Ledger and mapping stores rooted in ``tmp_path``
"""

from __future__ import annotations

import io
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from dotenv import load_dotenv
from openpyxl import Workbook

from portco_ledger.guide import CompanyGuide
from portco_ledger.ledger.priority import PriorityRules
from portco_ledger.ledger.store import JsonLedgerStore
from portco_ledger.transformer.canonicalizer import MetricCanonicalizer
from portco_ledger.transformer.mapping_store import MappingStore

PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")

ACTUAL_MONTHS = [(2024, m) for m in range(3, 13)] + [(2025, 1), (2025, 2)]
BUDGET_MONTHS = [(2025, m) for m in range(3, 13)] + [(2026, 1), (2026, 2)]


class FakeDocumentService:
    """Document Understanding Service double with canned responses.

    Each response may be a string (returned as-is), a dict (returned as JSON),
    or an exception instance (raised). ``block`` makes the structural call wait
    on an event, which lets tests drive the phase timeout.
    """

    def __init__(
        self,
        structure: Any = None,
        matches: Any = None,
        summary: Any = None,
        classifications: dict[str, Any] | None = None,
        block: threading.Event | None = None,
    ) -> None:
        self.structure = structure if structure is not None else {"sheets": {}}
        self.matches = matches if matches is not None else {"matches": {}}
        self.summary = summary if summary is not None else {}
        self.classifications = classifications or {}
        self.block = block
        self.calls: list[tuple[str, Any]] = []
        self._lock = threading.Lock()

    def _record(self, name: str, payload: Any) -> None:
        with self._lock:
            self.calls.append((name, payload))

    def calls_to(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]

    @staticmethod
    def _respond(response: Any) -> str:
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return response
        return json.dumps(response)

    def describe_structure(self, digest: str) -> str:
        self._record("describe_structure", digest)
        if self.block is not None:
            self.block.wait(timeout=5)
        return self._respond(self.structure)

    def match_metrics(self, request: dict[str, Any]) -> str:
        self._record("match_metrics", request)
        return self._respond(self.matches)

    def summarize_document(self, content: str, filename: str) -> str:
        self._record("summarize_document", filename)
        return self._respond(self.summary)

    def classify_metric(self, label: str, vocabulary: list[str], context: dict[str, Any]) -> str:
        self._record("classify_metric", label)
        return self._respond(self.classifications.get(label, {"canonical": "", "confidence": 0.0}))


def month_header(year: int, month: int) -> str:
    """``(2024, 3)`` → ``"Mar-24"``."""
    return datetime(year, month, 1).strftime("%b-%y")


def build_revenue_workbook() -> bytes:
    """Workbook with one ``Revenue`` sheet laid out like a monthly model.

    * row 3: period headers (``Mar-24`` in D through ``Feb-26`` in AA)
    * row 4: ``Actual`` over D (carried through O), ``Forecast/Budget`` over P
    * row 10: Total Customers
    * row 29: Total MRR; J29 holds the text ``"1.234,56"``
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Revenue"

    ws["A1"] = "Acme Analytics - Revenue"
    ws["A3"] = "Month"
    ws["A4"] = "Scenario"
    for offset, (year, month) in enumerate(ACTUAL_MONTHS + BUDGET_MONTHS):
        ws.cell(row=3, column=4 + offset, value=month_header(year, month))
    ws["D4"] = "Actual"
    ws["P4"] = "Forecast/Budget"

    ws["A10"] = "Total Customers"
    ws["A29"] = "Total MRR"
    for offset in range(len(ACTUAL_MONTHS) + len(BUDGET_MONTHS)):
        ws.cell(row=10, column=4 + offset, value=100 + offset)
        ws.cell(row=29, column=4 + offset, value=1000.0 + offset * 10)
    ws["J29"] = "1.234,56"

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


REVENUE_STRUCTURE = {
    "sheets": {
        "Revenue": {
            "dateHeaderRow": 3,
            "scenarioLabelRow": 4,
            "actualColumns": ["D"],
            "budgetColumns": ["P"],
            "columnDates": {"D": "2024-03-01", "P": "2025-03-01"},
        },
    },
}


@pytest.fixture
def revenue_workbook() -> bytes:
    """Bytes of the monthly revenue workbook."""
    return build_revenue_workbook()


@pytest.fixture
def revenue_structure() -> dict[str, Any]:
    """Structural response describing the revenue workbook."""
    return json.loads(json.dumps(REVENUE_STRUCTURE))


@pytest.fixture
def acme_guide() -> CompanyGuide:
    """EUR guide knowing the ``Total MRR`` and ``Total Customers`` labels."""
    return CompanyGuide.from_dict(
        {
            "company": "acme",
            "currency": "EUR",
            "business_model": "saas",
            "metrics": {"mrr": ["Total MRR"], "customers": ["Total Customers"]},
        },
    )


@pytest.fixture
def rules() -> PriorityRules:
    """Priority rules with built-in defaults."""
    return PriorityRules()


@pytest.fixture
def ledger_store(tmp_path: Path, rules: PriorityRules) -> JsonLedgerStore:
    """Ledger store writing under ``tmp_path``."""
    return JsonLedgerStore(base_dir=tmp_path, rules=rules)


@pytest.fixture
def store_factory(tmp_path: Path) -> Any:
    """Mapping store factory writing under ``tmp_path``."""
    return lambda company: MappingStore(company, base_dir=tmp_path)


@pytest.fixture
def canonicalizer_factory(store_factory: Any) -> Any:
    """Build a canonicalizer around a given service with tmp mapping stores."""

    def build(service: Any = None) -> MetricCanonicalizer:
        return MetricCanonicalizer(service, store_factory=store_factory, auto_approve_confidence=0.9)

    return build


@pytest.fixture
def fixed_clock() -> Any:
    """Deterministic change-log timestamps."""
    return lambda: "2024-10-01T00:00:00+00:00"


@pytest.fixture
def make_service() -> type[FakeDocumentService]:
    """The scripted service class, for tests that configure their own responses."""
    return FakeDocumentService
