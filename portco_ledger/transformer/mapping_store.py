"""Persistence of company-specific metric label mappings.

Each company has one JSON file under ``DATA_DIR/mappings/<company>.json``::

    {
      "company": "acme",
      "mappings": {
        "recurring_subscriptions": {
          "canonical_id": "mrr",
          "confidence": 0.72,
          "status": "pending",
          "reasoning": "...",
          "created_at": "...",
          "updated_at": "..."
        }
      }
    }

Statuses: ``auto_approved`` (high-confidence, applied), ``approved`` (applied
after review), ``pending`` (awaiting review, not applied), ``rejected``.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from portco_ledger.config import DATA_DIR, setup_logging

logger = setup_logging(__name__)

__all__ = ["APPLIED_STATUSES", "MappingStatus", "MappingStore", "MetricMapping"]

MappingStatus = Literal["pending", "approved", "auto_approved", "rejected"]
APPLIED_STATUSES = frozenset({"approved", "auto_approved"})


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class MetricMapping:
    """A label → canonical id suggestion or decision."""

    raw_label: str
    canonical_id: str
    confidence: float
    status: MappingStatus
    reasoning: str = ""
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def applied(self) -> bool:
        return self.status in APPLIED_STATUSES


class MappingStore:
    """JSON-backed mapping table for one company.

    Parameters
    ----------
    company : str
        Company slug; names the file.
    base_dir : Path, optional
        Directory holding ``mappings/``; defaults to ``DATA_DIR``.
    """

    def __init__(self, company: str, base_dir: Path | None = None) -> None:
        self.company = company
        self.path = (base_dir or DATA_DIR) / "mappings" / f"{company}.json"
        self._lock = threading.Lock()

    def _read(self) -> dict[str, MetricMapping]:
        if not self.path.exists():
            return {}
        with self.path.open(encoding="utf-8") as f:
            payload = json.load(f)
        return {
            raw: MetricMapping(raw_label=raw, **entry)
            for raw, entry in payload.get("mappings", {}).items()
        }

    def _write(self, mappings: dict[str, MetricMapping]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload: dict[str, Any] = {
            "company": self.company,
            "mappings": {
                raw: {k: v for k, v in asdict(m).items() if k != "raw_label"}
                for raw, m in sorted(mappings.items())
            },
        }
        tmp_path = self.path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.path)

    def get(self, raw_label: str) -> MetricMapping | None:
        with self._lock:
            return self._read().get(raw_label)

    def all(self) -> list[MetricMapping]:
        with self._lock:
            return list(self._read().values())

    def applied_targets(self) -> set[str]:
        """Canonical ids that approved or auto-approved mappings resolve to."""
        return {m.canonical_id for m in self.all() if m.applied}

    def pending(self) -> list[MetricMapping]:
        """Suggestions awaiting review, most confident first."""
        return sorted(
            (m for m in self.all() if m.status == "pending"),
            key=lambda m: (-m.confidence, m.raw_label),
        )

    def put(self, mapping: MetricMapping) -> MetricMapping:
        """Insert or replace a mapping, keeping its original ``created_at``."""
        with self._lock:
            mappings = self._read()
            previous = mappings.get(mapping.raw_label)
            if previous is not None:
                mapping = replace(mapping, created_at=previous.created_at, updated_at=_now())
            mappings[mapping.raw_label] = mapping
            self._write(mappings)
        logger.debug("Stored mapping %s -> %s (%s)", mapping.raw_label, mapping.canonical_id, mapping.status)
        return mapping

    def _set_status(self, raw_label: str, status: MappingStatus, canonical_id: str | None) -> MetricMapping:
        with self._lock:
            mappings = self._read()
            if raw_label not in mappings:
                msg = f"No mapping for '{raw_label}' in {self.company}"
                raise KeyError(msg)
            updated = replace(
                mappings[raw_label],
                status=status,
                canonical_id=canonical_id or mappings[raw_label].canonical_id,
                updated_at=_now(),
            )
            mappings[raw_label] = updated
            self._write(mappings)
        logger.info("Mapping %s -> %s marked %s", raw_label, updated.canonical_id, status)
        return updated

    def approve(self, raw_label: str, canonical_id: str | None = None) -> MetricMapping:
        """Approve a suggestion, optionally correcting its canonical id.

        Raises
        ------
        KeyError
            If no mapping exists for ``raw_label``.
        """
        return self._set_status(raw_label, "approved", canonical_id)

    def reject(self, raw_label: str) -> MetricMapping:
        """Reject a suggestion so it is never applied or re-asked.

        Raises
        ------
        KeyError
            If no mapping exists for ``raw_label``.
        """
        return self._set_status(raw_label, "rejected", None)
