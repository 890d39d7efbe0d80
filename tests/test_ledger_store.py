"""Tests for JSON ledger persistence."""

from __future__ import annotations

import json
import threading
from typing import Any

from portco_ledger.ledger.store import JsonLedgerStore, key_to_string, string_to_key
from portco_ledger.ledger.types import FactCandidate, VarianceExplanation


def candidate(amount: float, source: str, period: str = "2024-09-01") -> FactCandidate:
    return FactCandidate(
        metric_id="mrr",
        period_date=period,
        scenario="actual",
        amount=amount,
        source_file=source,
        source_location={"file_type": "xlsx", "sheet": "Revenue", "cell": "J29"},
    )


class TestKeys:
    """Tests for fact key serialization."""

    def test_round_trip(self) -> None:
        """Keys serialize with a pipe separator."""
        key = ("mrr", "2024-09-01", "actual")

        assert key_to_string(key) == "mrr|2024-09-01|actual"
        assert string_to_key(key_to_string(key)) == key


class TestJsonLedgerStore:
    """Tests for JsonLedgerStore."""

    def test_missing_ledger_is_empty(self, ledger_store: JsonLedgerStore) -> None:
        """A company without a file has no facts."""
        assert ledger_store.load("acme") == {}
        assert ledger_store.snapshot("acme") == []

    def test_apply_persists_facts_and_logs(self, ledger_store: JsonLedgerStore, fixed_clock: Any) -> None:
        """Applied changes survive a reload, including provenance and history."""
        ledger_store.apply("acme", [candidate(100000, "monthly_report.pdf")], clock=fixed_clock)
        explanation = VarianceExplanation("mrr", "correction", "Fixed FX rate")
        ledger_store.apply("acme", [candidate(98500, "board_deck.pdf")], [explanation], clock=fixed_clock)

        reloaded = JsonLedgerStore(base_dir=ledger_store.root.parent).load("acme")
        fact = reloaded[("mrr", "2024-09-01", "actual")]

        assert fact.amount == 98500
        assert fact.priority == 140
        assert fact.explanation == "Fixed FX rate"
        assert fact.source_location == {"file_type": "xlsx", "sheet": "Revenue", "cell": "J29"}
        assert [e.new_value for e in fact.change_log] == [100000, 98500]
        assert fact.change_log[0].timestamp == "2024-10-01T00:00:00+00:00"

    def test_file_layout(self, ledger_store: JsonLedgerStore, fixed_clock: Any) -> None:
        """One JSON document per company keyed by metric|period|scenario."""
        ledger_store.apply("acme", [candidate(1, "board_deck.pdf")], clock=fixed_clock)

        payload = json.loads(ledger_store.path("acme").read_text(encoding="utf-8"))

        assert payload["company"] == "acme"
        assert list(payload["facts"]) == ["mrr|2024-09-01|actual"]
        assert not ledger_store.path("acme").with_suffix(".json.tmp").exists()

    def test_no_changes_no_write(self, ledger_store: JsonLedgerStore, fixed_clock: Any) -> None:
        """A run without changes leaves the file untouched."""
        ledger_store.apply("acme", [candidate(1, "board_deck.pdf")], clock=fixed_clock)
        before = ledger_store.path("acme").read_text(encoding="utf-8")

        result = ledger_store.apply("acme", [candidate(1, "board_deck.pdf")], clock=fixed_clock)

        assert result.changes == ()
        assert ledger_store.path("acme").read_text(encoding="utf-8") == before

    def test_companies_are_isolated(self, ledger_store: JsonLedgerStore, fixed_clock: Any) -> None:
        """Each company has its own ledger."""
        ledger_store.apply("acme", [candidate(1, "board_deck.pdf")], clock=fixed_clock)
        ledger_store.apply("globex", [candidate(2, "board_deck.pdf")], clock=fixed_clock)

        assert ledger_store.snapshot("acme")[0].amount == 1
        assert ledger_store.snapshot("globex")[0].amount == 2

    def test_concurrent_applies_keep_every_fact(self, ledger_store: JsonLedgerStore, fixed_clock: Any) -> None:
        """Parallel writers for one company never lose each other's facts."""
        periods = [f"2024-{month:02d}-01" for month in range(1, 13)]

        def apply(period: str) -> None:
            ledger_store.apply("acme", [candidate(1, "board_deck.pdf", period)], clock=fixed_clock)

        threads = [threading.Thread(target=apply, args=(p,)) for p in periods]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(f.period_date for f in ledger_store.snapshot("acme")) == periods
