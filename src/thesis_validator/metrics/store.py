"""
Metrics store: append-only time series of quality metrics.

Rows are only ever inserted. The current value of a metric is the most
recently recorded row for its type.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thesis_validator.db.models import QualityMetricModel
from thesis_validator.metrics.schemas import (
    MetricRecord,
    MetricType,
    QualityMetric,
    ResearchQuality,
)
from thesis_validator.validation import parse_input

logger = logging.getLogger(__name__)


def _to_metric(model: QualityMetricModel) -> QualityMetric:
    return QualityMetric(
        id=model.id,
        engagement_id=model.engagement_id,
        metric_type=MetricType(model.metric_type),
        value=model.value,
        metadata=model.metadata_ or {},
        recorded_at=model.recorded_at,
    )


class MetricsStore:
    """Repository for quality metric history."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        engagement_id: UUID,
        data: MetricRecord | Mapping[str, Any],
    ) -> QualityMetric:
        """Append one metric value."""
        payload = parse_input(MetricRecord, data)
        model = QualityMetricModel(
            engagement_id=engagement_id,
            metric_type=payload.metric_type.value,
            value=payload.value,
            metadata_=payload.metadata,
        )
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return _to_metric(model)

    async def record_batch(
        self,
        engagement_id: UUID,
        records: Iterable[MetricRecord | Mapping[str, Any]],
    ) -> list[QualityMetric]:
        """Append several metric values in order."""
        stored = [await self.record(engagement_id, r) for r in records]
        logger.debug(f"Recorded {len(stored)} metrics for engagement {engagement_id}")
        return stored

    async def latest(
        self,
        engagement_id: UUID,
        metric_type: MetricType | str,
    ) -> QualityMetric | None:
        stmt = (
            select(QualityMetricModel)
            .where(
                QualityMetricModel.engagement_id == engagement_id,
                QualityMetricModel.metric_type == MetricType(metric_type).value,
            )
            .order_by(QualityMetricModel.recorded_at.desc(), QualityMetricModel.id.desc())
            .limit(1)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_metric(model) if model else None

    async def history(
        self,
        engagement_id: UUID,
        metric_type: MetricType | str,
        limit: int = 50,
    ) -> list[QualityMetric]:
        """Values of one metric, newest first."""
        stmt = (
            select(QualityMetricModel)
            .where(
                QualityMetricModel.engagement_id == engagement_id,
                QualityMetricModel.metric_type == MetricType(metric_type).value,
            )
            .order_by(QualityMetricModel.recorded_at.desc(), QualityMetricModel.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_metric(m) for m in result.scalars().all()]

    async def all_latest(self, engagement_id: UUID) -> dict[MetricType, QualityMetric | None]:
        return {t: await self.latest(engagement_id, t) for t in MetricType}

    async def research_quality(self, engagement_id: UUID) -> ResearchQuality:
        """
        Summarize the latest value of every metric.

        Metrics never recorded read as 0; ``last_updated`` is the newest
        recording time across all types.
        """
        latest = await self.all_latest(engagement_id)
        values = {t.value: m.value for t, m in latest.items() if m is not None}
        stamps = [m.recorded_at for m in latest.values() if m is not None]
        return ResearchQuality(**values, last_updated=max(stamps) if stamps else None)
