"""Metric canonicalization: arbitrary labels to the fixed metric vocabulary.

Resolution order
----------------
1. The label (snake_case) is already a canonical id, or a static synonym from
   ``config/canonical_metrics.json``.
2. A company mapping with status ``approved`` or ``auto_approved``.
3. One ``classify_metric`` call to the Document Understanding Service.

Classifications at or above ``canonicalization.auto_approve_confidence`` are
stored as ``auto_approved`` and applied. Anything less confident is stored as a
``pending`` suggestion and not applied; the caller gets the snake_case label
back with ``status="pending"``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from portco_ledger.config import get_canonical_metrics, get_section, setup_logging
from portco_ledger.extractor.schemas import extract_json_object
from portco_ledger.transformer.mapping_store import MappingStore, MetricMapping
from portco_ledger.utils.parsing import to_snake_case

if TYPE_CHECKING:
    from portco_ledger.extractor.document_service import DocumentUnderstandingService

logger = setup_logging(__name__)

__all__ = ["CanonicalizationResult", "MetricCanonicalizer", "ResolutionStatus"]

ResolutionStatus = Literal[
    "canonical",
    "static",
    "company_mapping",
    "auto_approved",
    "pending",
    "rejected",
    "unresolved",
]
_APPLIED = frozenset({"canonical", "static", "company_mapping", "auto_approved"})


@dataclass(frozen=True)
class CanonicalizationResult:
    """Outcome of canonicalizing one label."""

    label: str
    metric_id: str
    status: ResolutionStatus
    confidence: float = 1.0
    reasoning: str = ""

    @property
    def applied(self) -> bool:
        """``True`` when ``metric_id`` is a canonical id."""
        return self.status in _APPLIED


class MetricCanonicalizer:
    """Map extracted metric labels to canonical ids.

    Parameters
    ----------
    service : DocumentUnderstandingService | None
        Used for step 3; ``None`` leaves unknown labels unresolved.
    store_factory : Callable[[str], MappingStore], optional
        Returns the mapping store of a company; defaults to :class:`MappingStore`.
    auto_approve_confidence : float, optional
        Defaults to ``config.json → canonicalization.auto_approve_confidence``.
    metrics : dict[str, Any], optional
        ``{"vocabulary": ..., "synonyms": ...}``; defaults to
        ``config/canonical_metrics.json``.
    """

    def __init__(
        self,
        service: DocumentUnderstandingService | None = None,
        store_factory: Callable[[str], MappingStore] | None = None,
        auto_approve_confidence: float | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> None:
        metrics = metrics or get_canonical_metrics()
        self.service = service
        self.store_factory = store_factory or MappingStore
        self.vocabulary = sorted({m for ids in metrics.get("vocabulary", {}).values() for m in ids})
        self._vocabulary_set = frozenset(self.vocabulary)
        self.synonyms: dict[str, str] = dict(metrics.get("synonyms", {}))
        if auto_approve_confidence is None:
            auto_approve_confidence = float(get_section("canonicalization").get("auto_approve_confidence", 0.9))
        self.auto_approve_confidence = auto_approve_confidence
        self._stores: dict[str, MappingStore] = {}

    def _store(self, company: str) -> MappingStore:
        if company not in self._stores:
            self._stores[company] = self.store_factory(company)
        return self._stores[company]

    def is_canonical(self, metric_id: str) -> bool:
        """Vocabulary ids and ``<vocabulary id>_<detail>`` sub-metrics."""
        if metric_id in self._vocabulary_set:
            return True
        return any(metric_id.startswith(f"{base}_") and len(metric_id) > len(base) + 1 for base in self.vocabulary)

    def static_lookup(self, label: str) -> str | None:
        """Resolve through the vocabulary and synonym table only."""
        snake = to_snake_case(label)
        if snake in self._vocabulary_set:
            return snake
        return self.synonyms.get(snake)

    def canonicalize(self, label: str, company: str, context: dict[str, Any] | None = None) -> CanonicalizationResult:
        """Resolve one label for ``company``.

        Never raises for service failures: a failed classification leaves the
        label unresolved.
        """
        snake = to_snake_case(label)
        if not snake:
            return CanonicalizationResult(label=label, metric_id=snake, status="unresolved", confidence=0.0)

        if snake in self._vocabulary_set:
            return CanonicalizationResult(label=label, metric_id=snake, status="canonical")
        if snake in self.synonyms:
            return CanonicalizationResult(label=label, metric_id=self.synonyms[snake], status="static")

        store = self._store(company)
        existing = store.get(snake)
        if existing is not None:
            return self._from_mapping(label, snake, existing)
        if snake in store.applied_targets():
            return CanonicalizationResult(label=label, metric_id=snake, status="canonical")

        return self._classify(label, snake, company, store, context or {})

    def canonicalize_many(
        self,
        labels: list[str],
        company: str,
        context: dict[str, Any] | None = None,
    ) -> dict[str, CanonicalizationResult]:
        """Canonicalize distinct labels, one classification per unknown label."""
        return {label: self.canonicalize(label, company, context) for label in dict.fromkeys(labels)}

    # -- internals --------------------------------------------------------

    def _from_mapping(self, label: str, snake: str, mapping: MetricMapping) -> CanonicalizationResult:
        if mapping.applied:
            return CanonicalizationResult(
                label=label,
                metric_id=mapping.canonical_id,
                status="company_mapping",
                confidence=mapping.confidence,
                reasoning=mapping.reasoning,
            )
        status: ResolutionStatus = "rejected" if mapping.status == "rejected" else "pending"
        return CanonicalizationResult(
            label=label,
            metric_id=snake,
            status=status,
            confidence=mapping.confidence,
            reasoning=mapping.reasoning,
        )

    def _classify(
        self,
        label: str,
        snake: str,
        company: str,
        store: MappingStore,
        context: dict[str, Any],
    ) -> CanonicalizationResult:
        if self.service is None:
            return CanonicalizationResult(label=label, metric_id=snake, status="unresolved", confidence=0.0)

        try:
            response = self.service.classify_metric(label, self.vocabulary, {"company": company, **context})
        except Exception as e:
            logger.exception("Classification of '%s' failed: %s", label, e)
            return CanonicalizationResult(label=label, metric_id=snake, status="unresolved", confidence=0.0)

        payload = extract_json_object(response) or {}
        canonical = to_snake_case(str(payload.get("canonical") or ""))
        try:
            confidence = min(max(float(payload.get("confidence", 0.0)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.0
        reasoning = str(payload.get("reasoning") or "")

        if not canonical:
            logger.warning("Classification of '%s' returned no canonical id", label)
            return CanonicalizationResult(label=label, metric_id=snake, status="unresolved", confidence=0.0)

        if not self.is_canonical(canonical):
            # Outside the vocabulary: suggestion only
            confidence = min(confidence, round(self.auto_approve_confidence - 0.01, 2))

        if confidence >= self.auto_approve_confidence:
            store.put(MetricMapping(snake, canonical, confidence, "auto_approved", reasoning))
            logger.info(f"Auto-approved mapping {snake} -> {canonical} ({confidence:.2f})")
            return CanonicalizationResult(
                label=label,
                metric_id=canonical,
                status="auto_approved",
                confidence=confidence,
                reasoning=reasoning,
            )

        store.put(MetricMapping(snake, canonical, confidence, "pending", reasoning))
        logger.info(f"Pending mapping suggestion {snake} -> {canonical} ({confidence:.2f})")
        return CanonicalizationResult(
            label=label,
            metric_id=snake,
            status="pending",
            confidence=confidence,
            reasoning=reasoning,
        )
