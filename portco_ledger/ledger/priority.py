"""Source priorities for fact reconciliation.

Document types are detected from the file name, first match wins:

==================  ========  ===============================================
type                priority  detected by
==================  ========  ===============================================
board_deck          100       "board", "deck", "presentation"
investor_report     80        "investor", "report", "monthly"
budget_file         60 / 120  "budget", "plan", "forecast" (120 for budget)
financial_model     40        "model", "financials"
raw_export          20        .xlsx / .xls / .csv extension
unknown             10        anything else
==================  ========  ===============================================

Explanation boosts are added on top: restatement +50, correction +40,
forecast_revision +20, one_time +10, commentary and other +0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from portco_ledger.config import get_section

if TYPE_CHECKING:
    from portco_ledger.ledger.types import VarianceExplanation

__all__ = ["AUTHORITATIVE_EXPLANATIONS", "DocumentTypeRule", "PriorityRules"]

AUTHORITATIVE_EXPLANATIONS = frozenset({"restatement", "correction"})


@dataclass(frozen=True)
class DocumentTypeRule:
    """Detection rule and base priority of one document type."""

    name: str
    priority: int
    keywords: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()

    def matches(self, filename: str) -> bool:
        lower = filename.lower()
        if any(keyword in lower for keyword in self.keywords):
            return True
        return any(lower.endswith(ext) for ext in self.extensions)


DEFAULT_DOCUMENT_TYPES = (
    DocumentTypeRule("board_deck", 100, ("board", "deck", "presentation")),
    DocumentTypeRule("investor_report", 80, ("investor", "report", "monthly")),
    DocumentTypeRule("budget_file", 60, ("budget", "plan", "forecast")),
    DocumentTypeRule("financial_model", 40, ("model", "financials")),
    DocumentTypeRule("raw_export", 20, extensions=(".xlsx", ".xls", ".csv")),
    DocumentTypeRule("unknown", 10),
)

DEFAULT_EXPLANATION_BOOSTS = {
    "restatement": 50,
    "correction": 40,
    "forecast_revision": 20,
    "one_time": 10,
    "commentary": 0,
    "other": 0,
}


@dataclass(frozen=True)
class PriorityRules:
    """Document-type priorities, explanation boosts and rounding tolerance."""

    document_types: tuple[DocumentTypeRule, ...] = DEFAULT_DOCUMENT_TYPES
    budget_scenario_priority: int = 120
    explanation_boosts: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_EXPLANATION_BOOSTS))
    rounding_tolerance: float = 0.01

    @classmethod
    def from_config(cls, section: dict[str, Any] | None = None) -> PriorityRules:
        """Build rules from ``config.json → priorities`` (or a given section)."""
        config = section if section is not None else get_section("priorities")
        types = tuple(
            DocumentTypeRule(
                name=name,
                priority=int(rule.get("priority", 10)),
                keywords=tuple(k.lower() for k in rule.get("keywords", [])),
                extensions=tuple(e.lower() for e in rule.get("extensions", [])),
            )
            for name, rule in config.get("document_types", {}).items()
        )
        return cls(
            document_types=types or DEFAULT_DOCUMENT_TYPES,
            budget_scenario_priority=int(config.get("budget_scenario_priority", 120)),
            explanation_boosts={
                **DEFAULT_EXPLANATION_BOOSTS,
                **{k: int(v) for k, v in config.get("explanation_boosts", {}).items()},
            },
            rounding_tolerance=float(config.get("rounding_tolerance", 0.01)),
        )

    def detect_document_type(self, filename: str) -> str:
        for rule in self.document_types:
            if rule.matches(filename):
                return rule.name
        return "unknown"

    def base_priority(self, filename: str, scenario: str) -> int:
        """Priority of a source file for a scenario, before explanation boosts."""
        doc_type = self.detect_document_type(filename)
        if doc_type == "budget_file" and scenario == "budget":
            return self.budget_scenario_priority
        for rule in self.document_types:
            if rule.name == doc_type:
                return rule.priority
        return 10

    def explanation_boost(self, explanation: VarianceExplanation | None) -> int:
        if explanation is None:
            return 0
        return self.explanation_boosts.get(explanation.explanation_type, 0)

    def effective_priority(self, filename: str, scenario: str, explanation: VarianceExplanation | None) -> int:
        return self.base_priority(filename, scenario) + self.explanation_boost(explanation)
