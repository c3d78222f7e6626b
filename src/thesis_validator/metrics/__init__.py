"""Research-quality metrics: history store and aggregator."""

from thesis_validator.metrics.aggregator import MetricsAggregator, compute_quality
from thesis_validator.metrics.schemas import (
    MetricRecord,
    MetricType,
    QualityMetric,
    QualityScores,
    QualitySnapshot,
    ResearchQuality,
)
from thesis_validator.metrics.store import MetricsStore

__all__ = [
    "MetricRecord",
    "MetricType",
    "MetricsAggregator",
    "MetricsStore",
    "QualityMetric",
    "QualityScores",
    "QualitySnapshot",
    "ResearchQuality",
    "compute_quality",
]
