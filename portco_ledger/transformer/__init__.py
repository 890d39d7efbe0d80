"""Transformer module: metric labels to canonical ids.

Submodules
----------
canonicalizer
    Static synonyms, approved company mappings, then a single classification.
mapping_store
    JSON persistence of company mappings and review (pending/approve/reject).
"""

from portco_ledger.transformer.canonicalizer import CanonicalizationResult, MetricCanonicalizer
from portco_ledger.transformer.mapping_store import MappingStore, MetricMapping

__all__ = [
    "CanonicalizationResult",
    "MappingStore",
    "MetricCanonicalizer",
    "MetricMapping",
]
