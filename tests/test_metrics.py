"""
Tests for quality metric derivation and the append-only metric history.
"""

import pytest

from thesis_validator.contradictions import ContradictionStore
from thesis_validator.evidence import EvidenceCreate, EvidenceStore
from thesis_validator.graph import GraphStore
from thesis_validator.metrics import (
    MetricsAggregator,
    MetricsStore,
    MetricType,
    QualitySnapshot,
    compute_quality,
)
from thesis_validator.stress_tests import StressTestStore, Vulnerability, build_results


class TestComputeQuality:
    """Tests for the pure metric derivation."""

    def test_empty_engagement(self) -> None:
        scores = compute_quality(QualitySnapshot())

        assert scores.evidence_credibility_avg == 0.0
        assert scores.source_diversity_score == 0.0
        assert scores.hypothesis_coverage == 0.0
        assert scores.contradiction_resolution_rate == 1.0
        assert scores.overall_confidence == 0.5
        assert scores.stress_test_vulnerability is None
        assert scores.research_completeness == pytest.approx(1 / 3)

    def test_populated_snapshot(self) -> None:
        scores = compute_quality(
            QualitySnapshot(
                evidence_count=4,
                credibility_avg=0.8,
                distinct_source_types=3,
                total_hypotheses=4,
                covered_hypotheses=1,
                confidence_avg=0.7,
                contradiction_total=4,
                contradiction_resolved=3,
                latest_risk_score=45,
            )
        )

        assert scores.source_diversity_score == pytest.approx(0.5)
        assert scores.hypothesis_coverage == pytest.approx(0.25)
        assert scores.contradiction_resolution_rate == pytest.approx(0.75)
        assert scores.research_completeness == pytest.approx(0.5)
        assert scores.stress_test_vulnerability == pytest.approx(0.45)

    def test_vulnerability_only_recorded_after_stress_test(self) -> None:
        without = compute_quality(QualitySnapshot()).as_records()
        with_test = compute_quality(QualitySnapshot(latest_risk_score=10)).as_records()

        assert MetricType.STRESS_TEST_VULNERABILITY not in {r.metric_type for r in without}
        assert len(with_test) == len(MetricType)


class TestMetricsStore:
    @pytest.mark.asyncio
    async def test_history_is_append_only(self, session, engagement_id) -> None:
        store = MetricsStore(session)
        await store.record(engagement_id, {"metric_type": "hypothesis_coverage", "value": 0.2})
        await store.record(engagement_id, {"metric_type": "hypothesis_coverage", "value": 0.6})

        history = await store.history(engagement_id, MetricType.HYPOTHESIS_COVERAGE)
        latest = await store.latest(engagement_id, "hypothesis_coverage")

        assert [m.value for m in history] == [0.6, 0.2]
        assert latest is not None and latest.value == 0.6

    @pytest.mark.asyncio
    async def test_research_quality_defaults_to_zero(self, session, engagement_id) -> None:
        store = MetricsStore(session)
        await store.record(engagement_id, {"metric_type": "overall_confidence", "value": 0.7})

        quality = await store.research_quality(engagement_id)

        assert quality.overall_confidence == 0.7
        assert quality.hypothesis_coverage == 0.0
        assert quality.last_updated is not None


class TestAggregator:
    @pytest.mark.asyncio
    async def test_zero_state_is_well_defined(self, session, engagement_id) -> None:
        scores = await MetricsAggregator(session).recompute_and_record(engagement_id)

        assert scores.hypothesis_coverage == 0.0
        assert scores.contradiction_resolution_rate == 1.0
        recorded = await MetricsStore(session).all_latest(engagement_id)
        assert recorded[MetricType.STRESS_TEST_VULNERABILITY] is None
        assert recorded[MetricType.CONTRADICTION_RESOLUTION_RATE].value == 1.0

    @pytest.mark.asyncio
    async def test_recompute_reads_current_state(self, session, engagement_id) -> None:
        graph = GraphStore(session)
        evidence = EvidenceStore(session)
        contradictions = ContradictionStore(session)
        stress_tests = StressTestStore(session)

        lever = await graph.create_node(engagement_id, {"type": "lever", "content": "L", "confidence": 0.9})
        await graph.create_node(engagement_id, {"type": "risk", "content": "R", "confidence": 0.3})
        a = await evidence.create(engagement_id, EvidenceCreate(content="a", source_type="filing", credibility=0.9))
        await evidence.create(engagement_id, EvidenceCreate(content="b", source_type="web", credibility=0.5))
        await evidence.link(engagement_id, a.id, lever.id, 0.8)
        c = await contradictions.create(engagement_id, {"description": "x", "severity": "high"})
        await contradictions.create(engagement_id, {"description": "y", "severity": "low"})
        await contradictions.resolve(
            engagement_id, c.id, {"status": "explained", "resolution_notes": "", "resolved_by": "me"}
        )
        test = await stress_tests.create(engagement_id)
        await stress_tests.mark_running(engagement_id, test.id)
        await stress_tests.mark_completed(
            engagement_id,
            test.id,
            build_results([], [Vulnerability(area="a", description="d", severity="high")]),
        )

        aggregator = MetricsAggregator(session)
        first = await aggregator.recompute_and_record(engagement_id)
        await aggregator.recompute_and_record(engagement_id)

        assert first.evidence_credibility_avg == pytest.approx(0.7)
        assert first.source_diversity_score == pytest.approx(2 / 6)
        assert first.hypothesis_coverage == pytest.approx(0.5)
        assert first.contradiction_resolution_rate == pytest.approx(0.5)
        assert first.overall_confidence == pytest.approx(0.6)
        assert first.stress_test_vulnerability == pytest.approx(0.25)

        history = await MetricsStore(session).history(engagement_id, MetricType.HYPOTHESIS_COVERAGE)
        assert len(history) == 2
