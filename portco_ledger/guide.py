"""Company extraction guides.

A guide is a JSON file under ``config/guides/<company>.json``::

    {
      "company": "acme",
      "name": "Acme Analytics GmbH",
      "currency": "EUR",
      "business_model": "saas",
      "metrics": {"mrr": ["Total MRR", "Total actual MRR"], ...}
    }

``metrics`` maps canonical metric ids to the exact labels the company uses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from portco_ledger.config import get_default_currency, get_guide_path, setup_logging

if TYPE_CHECKING:
    from pathlib import Path

logger = setup_logging(__name__)

__all__ = ["CompanyGuide", "load_guide", "load_guide_file"]


@dataclass(frozen=True)
class CompanyGuide:
    """Company-specific hints for extraction."""

    company: str
    currency: str
    name: str = ""
    business_model: str | None = None
    metrics: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], company: str | None = None) -> CompanyGuide:
        """Validate a parsed guide; single-label strings become one-item lists.

        Raises
        ------
        ValueError
            If ``metrics`` is not an object of label lists.
        """
        raw_metrics = data.get("metrics", {})
        if not isinstance(raw_metrics, dict):
            msg = "Guide 'metrics' must map metric ids to label lists"
            raise ValueError(msg)

        metrics: dict[str, list[str]] = {}
        for metric_id, labels in raw_metrics.items():
            if isinstance(labels, str):
                labels = [labels]
            if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
                msg = f"Guide labels for '{metric_id}' must be strings"
                raise ValueError(msg)
            metrics[str(metric_id)] = [label.strip() for label in labels if label.strip()]

        slug = company or str(data.get("company") or "")
        return cls(
            company=slug,
            currency=str(data.get("currency") or get_default_currency()).upper(),
            name=str(data.get("name") or slug),
            business_model=data.get("business_model"),
            metrics=metrics,
        )

    @classmethod
    def default(cls, company: str) -> CompanyGuide:
        """Guide used when a company ships none: default currency, no labels."""
        return cls(company=company, currency=get_default_currency(), name=company)


def load_guide_file(path: Path) -> CompanyGuide:
    """Load a guide from an explicit path.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    """
    if not path.exists():
        msg = f"Guide not found: {path}"
        raise FileNotFoundError(msg)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    return CompanyGuide.from_dict(data, company=data.get("company") or path.stem)


def load_guide(company: str) -> CompanyGuide:
    """Load ``config/guides/<company>.json``, or the default guide if absent."""
    path = get_guide_path(company)
    if not path.exists():
        logger.info("No guide for %s, using defaults", company)
        return CompanyGuide.default(company)
    guide = load_guide_file(path)
    logger.debug("Loaded guide for %s: %s metrics, currency %s", company, len(guide.metrics), guide.currency)
    return guide
