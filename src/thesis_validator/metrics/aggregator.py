"""
Metrics aggregator.

Reads the current graph, evidence, contradiction and stress-test state of an
engagement, derives the quality metrics from it and appends one record per
metric. The derivation itself (``compute_quality``) is a pure function of a
``QualitySnapshot``.
"""

import logging
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from thesis_validator.contradictions.state_machine import TERMINAL_STATUSES
from thesis_validator.db.models import (
    ContradictionModel,
    EvidenceHypothesisModel,
    EvidenceModel,
    HypothesisModel,
)
from thesis_validator.evidence.schemas import SOURCE_TYPE_COUNT
from thesis_validator.metrics.schemas import QualityScores, QualitySnapshot
from thesis_validator.metrics.store import MetricsStore
from thesis_validator.stress_tests.store import StressTestStore

logger = logging.getLogger(__name__)

# Used when an engagement has no hypotheses yet
DEFAULT_CONFIDENCE = 0.5


def compute_quality(snapshot: QualitySnapshot) -> QualityScores:
    """
    Derive quality metrics from raw counts.

    Hypothesis coverage is 0 for an engagement without hypotheses while the
    contradiction resolution rate is 1 for one without contradictions.

    Args:
        snapshot: Counts and averages read from the stores.

    Returns:
        The metric values.
    """
    credibility = snapshot.credibility_avg if snapshot.credibility_avg is not None else 0.0
    diversity = snapshot.distinct_source_types / SOURCE_TYPE_COUNT
    coverage = (
        snapshot.covered_hypotheses / snapshot.total_hypotheses
        if snapshot.total_hypotheses > 0
        else 0.0
    )
    resolution = (
        snapshot.contradiction_resolved / snapshot.contradiction_total
        if snapshot.contradiction_total > 0
        else 1.0
    )
    confidence = (
        snapshot.confidence_avg if snapshot.confidence_avg is not None else DEFAULT_CONFIDENCE
    )
    vulnerability = (
        snapshot.latest_risk_score / 100 if snapshot.latest_risk_score is not None else None
    )
    return QualityScores(
        evidence_credibility_avg=credibility,
        source_diversity_score=diversity,
        hypothesis_coverage=coverage,
        contradiction_resolution_rate=resolution,
        overall_confidence=confidence,
        research_completeness=(coverage + diversity + resolution) / 3,
        stress_test_vulnerability=vulnerability,
    )


class MetricsAggregator:
    """Recomputes and records quality metrics for an engagement."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._metrics = MetricsStore(session)

    async def snapshot(self, engagement_id: UUID) -> QualitySnapshot:
        """Read the raw counts the metrics depend on."""
        evidence_scope = EvidenceModel.engagement_id == engagement_id
        evidence_count, credibility_avg, source_types = (
            await self._session.execute(
                select(
                    func.count(EvidenceModel.id),
                    func.avg(EvidenceModel.credibility),
                    func.count(distinct(EvidenceModel.source_type)),
                ).where(evidence_scope)
            )
        ).one()

        total_hypotheses, covered_hypotheses = (
            await self._session.execute(
                select(
                    func.count(distinct(HypothesisModel.id)),
                    func.count(distinct(EvidenceHypothesisModel.hypothesis_id)),
                )
                .select_from(HypothesisModel)
                .outerjoin(
                    EvidenceHypothesisModel,
                    EvidenceHypothesisModel.hypothesis_id == HypothesisModel.id,
                )
                .where(HypothesisModel.engagement_id == engagement_id)
            )
        ).one()
        confidence_avg = (
            await self._session.execute(
                select(func.avg(HypothesisModel.confidence)).where(
                    HypothesisModel.engagement_id == engagement_id
                )
            )
        ).scalar_one()

        contradiction_scope = ContradictionModel.engagement_id == engagement_id
        contradiction_total = (
            await self._session.execute(
                select(func.count(ContradictionModel.id)).where(contradiction_scope)
            )
        ).scalar_one()
        contradiction_resolved = (
            await self._session.execute(
                select(func.count(ContradictionModel.id)).where(
                    contradiction_scope,
                    ContradictionModel.status.in_([s.value for s in TERMINAL_STATUSES]),
                )
            )
        ).scalar_one()

        latest_test = await StressTestStore(self._session).latest_completed(engagement_id)
        return QualitySnapshot(
            evidence_count=int(evidence_count or 0),
            credibility_avg=float(credibility_avg) if credibility_avg is not None else None,
            distinct_source_types=int(source_types or 0),
            total_hypotheses=int(total_hypotheses or 0),
            covered_hypotheses=int(covered_hypotheses or 0),
            confidence_avg=float(confidence_avg) if confidence_avg is not None else None,
            contradiction_total=int(contradiction_total or 0),
            contradiction_resolved=int(contradiction_resolved or 0),
            latest_risk_score=(
                latest_test.results.overall_risk_score
                if latest_test is not None and latest_test.results is not None
                else None
            ),
        )

    async def recompute_and_record(self, engagement_id: UUID) -> QualityScores:
        """
        Recompute every metric and append one record per metric type.

        History is never overwritten; each call adds a new row per metric.
        """
        snapshot = await self.snapshot(engagement_id)
        scores = compute_quality(snapshot)
        await self._metrics.record_batch(engagement_id, scores.as_records())
        logger.info(
            f"Recorded quality metrics for engagement {engagement_id}: "
            f"coverage={scores.hypothesis_coverage:.2f}, "
            f"resolution={scores.contradiction_resolution_rate:.2f}"
        )
        return scores
