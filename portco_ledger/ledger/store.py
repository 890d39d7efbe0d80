"""JSON ledger persistence with per-company write serialization.

Layout: ``DATA_DIR/ledger/<company>.json``::

    {
      "company": "acme",
      "updated_at": "2024-10-01T12:00:00+00:00",
      "facts": {
        "mrr|2024-09-01|actual": {"metric_id": "mrr", ..., "change_log": [...]}
      }
    }

:meth:`JsonLedgerStore.apply` holds the company lock across
load → reconcile → save, so concurrent batches for the same company never
interleave and the one-fact-per-key invariant holds.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from portco_ledger.config import DATA_DIR, setup_logging
from portco_ledger.ledger.reconciliation import reconcile_facts
from portco_ledger.ledger.types import FactRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from portco_ledger.ledger.priority import PriorityRules
    from portco_ledger.ledger.types import FactCandidate, FactKey, ReconciliationResult, VarianceExplanation

logger = setup_logging(__name__)

__all__ = ["JsonLedgerStore", "key_to_string", "string_to_key"]

_KEY_SEPARATOR = "|"


def key_to_string(key: FactKey) -> str:
    return _KEY_SEPARATOR.join(key)


def string_to_key(text: str) -> FactKey:
    metric_id, period_date, scenario = text.split(_KEY_SEPARATOR)
    return (metric_id, period_date, scenario)


class JsonLedgerStore:
    """File-backed ledger, one JSON document per company.

    Parameters
    ----------
    base_dir : Path, optional
        Directory holding ``ledger/``; defaults to ``DATA_DIR``.
    rules : PriorityRules, optional
        Passed to :func:`reconcile_facts`.
    """

    def __init__(self, base_dir: Path | None = None, rules: PriorityRules | None = None) -> None:
        self.root = (base_dir or DATA_DIR) / "ledger"
        self.rules = rules
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def path(self, company: str) -> Path:
        return self.root / f"{company}.json"

    def lock(self, company: str) -> threading.Lock:
        """Return the write lock of ``company``, creating it on first use."""
        with self._locks_guard:
            return self._locks.setdefault(company, threading.Lock())

    def load(self, company: str) -> dict[FactKey, FactRecord]:
        """Read the ledger of ``company``; a missing file is an empty ledger."""
        path = self.path(company)
        if not path.exists():
            return {}
        with path.open(encoding="utf-8") as f:
            payload = json.load(f)
        return {string_to_key(k): FactRecord.from_dict(v) for k, v in payload.get("facts", {}).items()}

    def save(self, company: str, facts: dict[FactKey, FactRecord]) -> Path:
        """Write the full ledger atomically (temp file + rename)."""
        path = self.path(company)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload: dict[str, Any] = {
            "company": company,
            "updated_at": datetime.now(UTC).isoformat(),
            "facts": {key_to_string(key): facts[key].to_dict() for key in sorted(facts)},
        }
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)
        logger.debug("Ledger saved: %s (%s facts)", path, len(facts))
        return path

    def snapshot(self, company: str) -> list[FactRecord]:
        """Current facts sorted by metric, period, scenario."""
        facts = self.load(company)
        return [facts[key] for key in sorted(facts)]

    def apply(
        self,
        company: str,
        candidates: Iterable[FactCandidate],
        explanations: Iterable[VarianceExplanation] = (),
        clock: Callable[[], str] | None = None,
    ) -> ReconciliationResult:
        """Reconcile candidates into the stored ledger under the company lock.

        The file is rewritten only when at least one change was applied.
        """
        with self.lock(company):
            existing = self.load(company)
            kwargs: dict[str, Any] = {"rules": self.rules}
            if clock is not None:
                kwargs["clock"] = clock
            result = reconcile_facts(list(candidates), existing, list(explanations), **kwargs)
            if result.changes:
                self.save(company, result.facts)
        return result
