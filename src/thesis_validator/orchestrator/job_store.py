"""
Durable job table.

Admission relies on the partial unique index over active jobs: at most one
row per engagement can be ``queued`` or ``running``, whatever the number of
concurrent submitters. Status changes are compare-and-swap updates.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from thesis_validator.db.models import ResearchJobModel, _now_utc
from thesis_validator.db.repository import BaseRepository
from thesis_validator.errors import ActiveJobExistsError, ValidationError
from thesis_validator.orchestrator.schemas import (
    ACTIVE_JOB_STATUSES,
    JobStatus,
    JobType,
    ResearchJob,
)

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_JOB_STATUSES]


def _to_job(model: ResearchJobModel) -> ResearchJob:
    return ResearchJob(
        id=model.id,
        engagement_id=model.engagement_id,
        type=JobType(model.job_type),
        status=JobStatus(model.status),
        progress=model.progress,
        config=model.config or {},
        result=model.results,
        error=model.error_message,
        started_at=model.started_at,
        completed_at=model.completed_at,
        created_at=model.created_at,
    )


class JobStore(BaseRepository[ResearchJobModel]):
    """Repository for research and stress-test jobs."""

    entity_name = "research_job"

    @property
    def _model_class(self) -> type[ResearchJobModel]:
        return ResearchJobModel

    async def get(self, engagement_id: UUID, job_id: UUID) -> ResearchJob:
        return _to_job(await self._get_or_raise(engagement_id, job_id))

    async def get_active(self, engagement_id: UUID) -> ResearchJob | None:
        """The queued or running job of an engagement, if any."""
        stmt = (
            select(ResearchJobModel)
            .where(
                ResearchJobModel.engagement_id == engagement_id,
                ResearchJobModel.status.in_(_ACTIVE),
            )
            .order_by(ResearchJobModel.created_at.desc())
            .limit(1)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_job(model) if model else None

    async def create_queued(
        self,
        engagement_id: UUID,
        job_type: JobType,
        config: dict[str, Any],
    ) -> ResearchJob:
        """
        Insert a new ``queued`` job.

        Raises:
            ActiveJobExistsError: If the engagement already has an active
                job. When the conflict is only detected by the unique index
                the session must be rolled back by the caller.
        """
        existing = await self.get_active(engagement_id)
        if existing is not None:
            raise ActiveJobExistsError(engagement_id, existing.id)

        model = ResearchJobModel(
            engagement_id=engagement_id,
            job_type=JobType(job_type).value,
            status=JobStatus.QUEUED.value,
            config=config,
            progress=0,
        )
        try:
            model = await self._add(model)
        except IntegrityError as e:
            logger.info(f"Concurrent admission for engagement {engagement_id} lost the race")
            raise ActiveJobExistsError(engagement_id) from e
        return _to_job(model)

    async def list_jobs(
        self,
        engagement_id: UUID,
        status: JobStatus | str | None = None,
        limit: int = 20,
    ) -> list[ResearchJob]:
        """Jobs of an engagement, newest first."""
        stmt = select(ResearchJobModel).where(ResearchJobModel.engagement_id == engagement_id)
        if status is not None:
            stmt = stmt.where(ResearchJobModel.status == JobStatus(status).value)
        stmt = stmt.order_by(ResearchJobModel.created_at.desc(), ResearchJobModel.id.desc())
        stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_to_job(m) for m in result.scalars().all()]

    async def list_by_status(self, status: JobStatus) -> list[ResearchJob]:
        """Jobs in one status across all engagements, oldest first."""
        stmt = (
            select(ResearchJobModel)
            .where(ResearchJobModel.status == JobStatus(status).value)
            .order_by(ResearchJobModel.created_at)
        )
        result = await self._session.execute(stmt)
        return [_to_job(m) for m in result.scalars().all()]

    async def mark_running(self, engagement_id: UUID, job_id: UUID) -> ResearchJob:
        model = await self._compare_and_set_status(
            engagement_id,
            job_id,
            allowed_from=[JobStatus.QUEUED.value],
            target=JobStatus.RUNNING.value,
            values={"started_at": _now_utc(), "progress": 0},
        )
        return _to_job(model)

    async def update_progress(self, engagement_id: UUID, job_id: UUID, progress: int) -> bool:
        """
        Raise the progress of a running job.

        Progress never moves backwards. Returns whether the row changed.
        """
        progress = max(0, min(100, int(progress)))
        result = await self._session.execute(
            update(ResearchJobModel)
            .where(
                ResearchJobModel.id == job_id,
                ResearchJobModel.engagement_id == engagement_id,
                ResearchJobModel.status == JobStatus.RUNNING.value,
                ResearchJobModel.progress < progress,
            )
            .values(progress=progress)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_finished(
        self,
        engagement_id: UUID,
        job_id: UUID,
        results: dict[str, Any],
        status: JobStatus = JobStatus.COMPLETED,
        error: str | None = None,
    ) -> ResearchJob:
        """
        Finish a running job with its results.

        Args:
            engagement_id: Owning engagement.
            job_id: Job to finish.
            results: Result blob stored with the status.
            status: ``completed`` or ``partial``.
            error: What went missing, for ``partial`` jobs.
        """
        status = JobStatus(status)
        if status not in (JobStatus.COMPLETED, JobStatus.PARTIAL):
            raise ValidationError(
                message="A finished job is either completed or partial",
                details={"status": status.value},
            )
        model = await self._compare_and_set_status(
            engagement_id,
            job_id,
            allowed_from=[JobStatus.RUNNING.value],
            target=status.value,
            values={
                "results": results,
                "progress": 100,
                "error_message": error,
                "completed_at": _now_utc(),
            },
        )
        return _to_job(model)

    async def mark_failed(self, engagement_id: UUID, job_id: UUID, error: str) -> ResearchJob:
        """Fail a queued or running job with an error message."""
        model = await self._compare_and_set_status(
            engagement_id,
            job_id,
            allowed_from=_ACTIVE,
            target=JobStatus.FAILED.value,
            values={"error_message": error or "unknown error", "completed_at": _now_utc()},
        )
        return _to_job(model)
