"""
Stress-test store and lifecycle.

    pending -> running -> completed | failed

``completed`` is written together with its results and ``failed`` together
with its error message, in one UPDATE each.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select

from thesis_validator.db.models import HypothesisModel, StressTestModel
from thesis_validator.db.repository import BaseRepository
from thesis_validator.errors import ConflictError, NotFoundError, ValidationError
from thesis_validator.stress_tests.schemas import (
    Intensity,
    StressTest,
    StressTestCreate,
    StressTestResults,
    StressTestStats,
    StressTestStatus,
)
from thesis_validator.validation import parse_input

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _to_stress_test(model: StressTestModel) -> StressTest:
    return StressTest(
        id=model.id,
        engagement_id=model.engagement_id,
        intensity=Intensity(model.intensity),
        hypothesis_ids=[UUID(h) for h in model.hypothesis_ids or []],
        status=StressTestStatus(model.status),
        results=StressTestResults.model_validate(model.results) if model.results else None,
        error_message=model.error_message,
        started_at=model.started_at,
        completed_at=model.completed_at,
        created_at=model.created_at,
    )


class StressTestStore(BaseRepository[StressTestModel]):
    """Repository for stress-test runs."""

    entity_name = "stress_test"

    @property
    def _model_class(self) -> type[StressTestModel]:
        return StressTestModel

    async def create(
        self,
        engagement_id: UUID,
        data: StressTestCreate | Mapping[str, Any] | None = None,
    ) -> StressTest:
        """
        Create a ``pending`` stress test.

        Raises:
            NotFoundError: If a targeted hypothesis is not in the engagement.
        """
        payload = parse_input(StressTestCreate, data or {})
        if payload.hypothesis_ids:
            stmt = select(HypothesisModel.id).where(
                HypothesisModel.engagement_id == engagement_id,
                HypothesisModel.id.in_(payload.hypothesis_ids),
            )
            found = set((await self._session.execute(stmt)).scalars().all())
            for hypothesis_id in payload.hypothesis_ids:
                if hypothesis_id not in found:
                    raise NotFoundError("hypothesis", hypothesis_id, engagement_id)

        model = StressTestModel(
            engagement_id=engagement_id,
            intensity=payload.intensity.value,
            hypothesis_ids=[str(h) for h in payload.hypothesis_ids],
            status=StressTestStatus.PENDING.value,
        )
        model = await self._add(model)
        logger.info(f"Created {payload.intensity.value} stress test {model.id}")
        return _to_stress_test(model)

    async def get(self, engagement_id: UUID, stress_test_id: UUID) -> StressTest:
        return _to_stress_test(await self._get_or_raise(engagement_id, stress_test_id))

    async def list_stress_tests(
        self,
        engagement_id: UUID,
        status: StressTestStatus | str | None = None,
        limit: int = 20,
    ) -> list[StressTest]:
        """List stress tests newest first."""
        stmt = select(StressTestModel).where(StressTestModel.engagement_id == engagement_id)
        if status is not None:
            stmt = stmt.where(StressTestModel.status == StressTestStatus(status).value)
        stmt = stmt.order_by(StressTestModel.created_at.desc(), StressTestModel.id.desc())
        stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_to_stress_test(m) for m in result.scalars().all()]

    async def latest_completed(self, engagement_id: UUID) -> StressTest | None:
        items = await self.list_stress_tests(engagement_id, StressTestStatus.COMPLETED, limit=1)
        return items[0] if items else None

    async def mark_running(self, engagement_id: UUID, stress_test_id: UUID) -> StressTest:
        model = await self._compare_and_set_status(
            engagement_id,
            stress_test_id,
            allowed_from=[StressTestStatus.PENDING.value],
            target=StressTestStatus.RUNNING.value,
            values={"started_at": _now_utc()},
        )
        return _to_stress_test(model)

    async def mark_completed(
        self,
        engagement_id: UUID,
        stress_test_id: UUID,
        results: StressTestResults | Mapping[str, Any],
    ) -> StressTest:
        """
        Finish a running stress test with its results.

        Raises:
            ValidationError: If the results are malformed.
            InvalidTransitionError: If the test is not running.
        """
        payload = parse_input(StressTestResults, results)
        model = await self._compare_and_set_status(
            engagement_id,
            stress_test_id,
            allowed_from=[StressTestStatus.RUNNING.value],
            target=StressTestStatus.COMPLETED.value,
            values={
                "results": payload.model_dump(mode="json"),
                "completed_at": _now_utc(),
            },
        )
        return _to_stress_test(model)

    async def mark_failed(
        self,
        engagement_id: UUID,
        stress_test_id: UUID,
        error_message: str,
    ) -> StressTest:
        """Fail a pending or running stress test. The error message is required."""
        if not error_message or not error_message.strip():
            raise ValidationError(
                message="A failed stress test needs an error message",
                details={"id": str(stress_test_id)},
            )
        model = await self._compare_and_set_status(
            engagement_id,
            stress_test_id,
            allowed_from=[StressTestStatus.PENDING.value, StressTestStatus.RUNNING.value],
            target=StressTestStatus.FAILED.value,
            values={"error_message": error_message, "completed_at": _now_utc()},
        )
        return _to_stress_test(model)

    async def delete(self, engagement_id: UUID, stress_test_id: UUID) -> None:
        """
        Delete a stress test that is not running.

        Raises:
            ConflictError: If the test is running.
        """
        result = await self._session.execute(
            delete(StressTestModel).where(
                StressTestModel.id == stress_test_id,
                StressTestModel.engagement_id == engagement_id,
                StressTestModel.status != StressTestStatus.RUNNING.value,
            )
        )
        if result.rowcount == 0:
            existing = await self._reload(engagement_id, stress_test_id)
            if existing is None:
                raise NotFoundError(self.entity_name, stress_test_id, engagement_id)
            logger.warning(f"Rejected delete of running stress test {stress_test_id}")
            raise ConflictError(
                message="Cannot delete a running stress test",
                details={"id": str(stress_test_id), "current_status": existing.status},
            )

    async def stats(self, engagement_id: UUID) -> StressTestStats:
        """Counts by status and intensity plus duration and risk averages."""
        scoped = StressTestModel.engagement_id == engagement_id
        by_status = dict(
            (
                await self._session.execute(
                    select(StressTestModel.status, func.count())
                    .where(scoped)
                    .group_by(StressTestModel.status)
                )
            ).all()
        )
        by_intensity = dict(
            (
                await self._session.execute(
                    select(StressTestModel.intensity, func.count())
                    .where(scoped)
                    .group_by(StressTestModel.intensity)
                )
            ).all()
        )
        last_run_at = (
            await self._session.execute(select(func.max(StressTestModel.started_at)).where(scoped))
        ).scalar_one()

        completed = (
            await self._session.execute(
                select(StressTestModel).where(
                    scoped,
                    StressTestModel.status == StressTestStatus.COMPLETED.value,
                )
            )
        ).scalars().all()
        durations = [
            (m.completed_at - m.started_at).total_seconds() * 1000
            for m in completed
            if m.started_at is not None and m.completed_at is not None
        ]
        scores = [
            m.results["overall_risk_score"]
            for m in completed
            if m.results and "overall_risk_score" in m.results
        ]

        status_counts = {s.value: int(by_status.get(s.value, 0)) for s in StressTestStatus}
        return StressTestStats(
            total_count=sum(status_counts.values()),
            by_status=status_counts,
            by_intensity={i.value: int(by_intensity.get(i.value, 0)) for i in Intensity},
            average_duration_ms=sum(durations) / len(durations) if durations else None,
            average_risk_score=sum(scores) / len(scores) if scores else None,
            last_run_at=last_run_at,
        )
