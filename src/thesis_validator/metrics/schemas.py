"""
Pydantic schemas for research-quality metrics.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class MetricType(str, Enum):
    """Kinds of derived quality metric."""

    EVIDENCE_CREDIBILITY_AVG = "evidence_credibility_avg"
    SOURCE_DIVERSITY_SCORE = "source_diversity_score"
    HYPOTHESIS_COVERAGE = "hypothesis_coverage"
    CONTRADICTION_RESOLUTION_RATE = "contradiction_resolution_rate"
    OVERALL_CONFIDENCE = "overall_confidence"
    STRESS_TEST_VULNERABILITY = "stress_test_vulnerability"
    RESEARCH_COMPLETENESS = "research_completeness"


class MetricRecord(BaseModel):
    """Input for appending one metric value."""

    metric_type: MetricType = Field(..., description="Metric kind")
    value: float = Field(..., allow_inf_nan=False, description="Metric value")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class QualityMetric(BaseModel):
    """A stored metric value."""

    id: int
    engagement_id: UUID
    metric_type: MetricType
    value: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime


class QualitySnapshot(BaseModel):
    """Raw counts the quality metrics are derived from."""

    evidence_count: int = 0
    credibility_avg: float | None = None
    distinct_source_types: int = 0
    total_hypotheses: int = 0
    covered_hypotheses: int = 0
    confidence_avg: float | None = None
    contradiction_total: int = 0
    contradiction_resolved: int = 0
    latest_risk_score: int | None = Field(
        default=None,
        description="Risk score of the most recent completed stress test",
    )


class QualityScores(BaseModel):
    """Metric values computed from one snapshot."""

    evidence_credibility_avg: float
    source_diversity_score: float
    hypothesis_coverage: float
    contradiction_resolution_rate: float
    overall_confidence: float
    research_completeness: float
    stress_test_vulnerability: float | None = None

    def as_records(self) -> list[MetricRecord]:
        """One record per metric; vulnerability only when a stress test completed."""
        records = []
        for metric_type in MetricType:
            value = getattr(self, metric_type.value)
            if value is not None:
                records.append(MetricRecord(metric_type=metric_type, value=value))
        return records


class ResearchQuality(BaseModel):
    """Latest value of each metric, 0 where nothing was recorded yet."""

    evidence_credibility_avg: float = 0.0
    source_diversity_score: float = 0.0
    hypothesis_coverage: float = 0.0
    contradiction_resolution_rate: float = 0.0
    overall_confidence: float = 0.0
    stress_test_vulnerability: float = 0.0
    research_completeness: float = 0.0
    last_updated: datetime | None = None
