"""Evidence items, hypothesis links and evidence statistics."""

from thesis_validator.evidence.schemas import (
    SOURCE_TYPE_COUNT,
    Evidence,
    EvidenceCreate,
    EvidenceFilters,
    EvidenceStats,
    EvidenceUpdate,
    HypothesisLink,
    Sentiment,
    SourceType,
)
from thesis_validator.evidence.store import EvidenceStore

__all__ = [
    "SOURCE_TYPE_COUNT",
    "Evidence",
    "EvidenceCreate",
    "EvidenceFilters",
    "EvidenceStats",
    "EvidenceStore",
    "EvidenceUpdate",
    "HypothesisLink",
    "Sentiment",
    "SourceType",
]
