"""
Research job orchestrator.

Admits jobs (at most one queued or running job per engagement), queues them,
runs them through their phases on a pool of worker tasks, persists every state
transition and fans progress out to subscribers.
"""

import asyncio
import logging
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesis_validator.config import Settings, get_settings
from thesis_validator.db.session import UnitOfWork
from thesis_validator.errors import (
    ActiveJobExistsError,
    InvalidTransitionError,
    JobCancelledError,
    ThesisValidatorError,
)
from thesis_validator.metrics.aggregator import MetricsAggregator
from thesis_validator.orchestrator.job_store import JobStore
from thesis_validator.orchestrator.progress import JobReporter, ProgressBroker, Subscription
from thesis_validator.orchestrator.schemas import (
    JobStatus,
    JobSubmission,
    JobType,
    ProgressEventType,
    ResearchConfig,
    ResearchJob,
    StressTestConfig,
)
from thesis_validator.orchestrator.workflows import ResearchWorkflow, StressTestWorkflow, Workflow
from thesis_validator.providers.market_data import MarketDataProvider
from thesis_validator.providers.reasoning import ReasoningProvider
from thesis_validator.stress_tests.schemas import StressTestCreate
from thesis_validator.stress_tests.store import StressTestStore
from thesis_validator.validation import parse_input

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"
ORPHANED_MESSAGE = "worker stopped while the job was running"

_CONFIG_SCHEMAS = {
    JobType.RESEARCH: ResearchConfig,
    JobType.STRESS_TEST: StressTestConfig,
}


class ResearchOrchestrator:
    """
    Drives research and stress-test jobs end to end.

    Submission is non-blocking: ``start_job`` persists a ``queued`` row and
    returns a receipt. Jobs are executed by worker tasks started with
    ``start`` or drained inline with ``run_until_idle``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reasoning: ReasoningProvider,
        market_data: MarketDataProvider | None = None,
        broker: ProgressBroker | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            session_factory: Factory for database sessions.
            reasoning: Reasoning provider used by every phase.
            market_data: Optional market data provider for ticker enrichment.
            broker: Progress broker (creates one if None).
            settings: Settings (uses config if not provided).
        """
        self._session_factory = session_factory
        self._reasoning = reasoning
        self._market_data = market_data
        self._settings = settings or get_settings()
        self._broker = broker or ProgressBroker(self._settings.progress_buffer_size)
        self._queue: asyncio.Queue[tuple[UUID, UUID]] = asyncio.Queue()
        self._enqueued: set[UUID] = set()
        self._cancel_requested: set[UUID] = set()
        self._in_flight: set[UUID] = set()
        self._workers: list[asyncio.Task] = []
        self._running = False

    @property
    def broker(self) -> ProgressBroker:
        return self._broker

    @property
    def pending_count(self) -> int:
        """Jobs waiting in the in-process queue."""
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Submission and queries
    # ------------------------------------------------------------------

    async def start_job(
        self,
        engagement_id: UUID,
        job_type: JobType | str,
        config: ResearchConfig | StressTestConfig | Mapping[str, Any] | None = None,
    ) -> JobSubmission:
        """
        Submit a job for an engagement.

        If the engagement already has a queued or running job, that job is
        returned with ``created=False`` instead of creating a duplicate.

        Args:
            engagement_id: Engagement to research.
            job_type: ``research`` or ``stress_test``.
            config: Job configuration.

        Returns:
            Receipt with the job id and its status URL.

        Raises:
            ValidationError: If the configuration is malformed.
            NotFoundError: If a stress test targets unknown hypotheses.
        """
        job_type = JobType(job_type)
        schema = _CONFIG_SCHEMAS[job_type]
        if isinstance(config, (ResearchConfig, StressTestConfig)):
            config = config.model_dump()
        payload = parse_input(schema, config or {})

        try:
            async with UnitOfWork(self._session_factory) as uow:
                jobs = JobStore(uow.session)
                active = await jobs.get_active(engagement_id)
                if active is not None:
                    return self._deduplicated(active)

                if job_type == JobType.STRESS_TEST:
                    stress_test = await StressTestStore(uow.session).create(
                        engagement_id,
                        StressTestCreate(
                            intensity=payload.intensity,
                            hypothesis_ids=payload.hypothesis_ids,
                        ),
                    )
                    payload = payload.model_copy(update={"stress_test_id": stress_test.id})

                job = await jobs.create_queued(engagement_id, job_type, payload.model_dump(mode="json"))
        except ActiveJobExistsError:
            async with UnitOfWork(self._session_factory) as uow:
                active = await JobStore(uow.session).get_active(engagement_id)
            if active is None:
                raise
            return self._deduplicated(active)

        self._enqueue(engagement_id, job.id)
        logger.info(f"Queued {job_type.value} job {job.id} for engagement {engagement_id}")
        return JobSubmission(
            job_id=job.id,
            status_url=self._status_url(job),
            status=job.status,
            created=True,
        )

    def _deduplicated(self, active: ResearchJob) -> JobSubmission:
        logger.info(
            f"Engagement {active.engagement_id} already has active job {active.id}; "
            "returning it instead of creating a new one"
        )
        return JobSubmission(
            job_id=active.id,
            status_url=self._status_url(active),
            status=active.status,
            created=False,
        )

    def _status_url(self, job: ResearchJob) -> str:
        return self._settings.status_url_template.format(
            engagement_id=job.engagement_id,
            job_id=job.id,
        )

    async def get_status(self, engagement_id: UUID, job_id: UUID) -> ResearchJob:
        """Pollable job status. Raises NotFoundError outside the engagement."""
        async with UnitOfWork(self._session_factory) as uow:
            return await JobStore(uow.session).get(engagement_id, job_id)

    async def list_jobs(
        self,
        engagement_id: UUID,
        status: JobStatus | str | None = None,
        limit: int = 20,
    ) -> list[ResearchJob]:
        async with UnitOfWork(self._session_factory) as uow:
            return await JobStore(uow.session).list_jobs(engagement_id, status, limit)

    async def subscribe(self, engagement_id: UUID, job_id: UUID) -> Subscription:
        """
        Subscribe to the progress events of a job.

        Only events emitted after this call are delivered. Subscribing to a
        job that has already finished yields a stream that ends immediately.
        """
        subscription = self._broker.subscribe(job_id)
        job = await self.get_status(engagement_id, job_id)
        if not job.is_active:
            subscription.close()
        return subscription

    async def cancel_job(self, engagement_id: UUID, job_id: UUID) -> ResearchJob:
        """
        Cancel a job cooperatively.

        A queued job fails immediately. A running job fails at its next phase
        boundary; in-flight provider calls are not interrupted.

        Raises:
            NotFoundError: If the job does not exist in the engagement.
            InvalidTransitionError: If the job has already finished, or is
                running but not in this orchestrator's workers.
        """
        async with UnitOfWork(self._session_factory) as uow:
            job = await JobStore(uow.session).get(engagement_id, job_id)
            if job.status == JobStatus.RUNNING:
                if job_id not in self._in_flight:
                    raise InvalidTransitionError(
                        "research_job",
                        job_id,
                        current=job.status.value,
                        target=CANCELLED_MESSAGE,
                        message="Job is not running in this worker",
                    )
                self._cancel_requested.add(job_id)
                logger.info(f"Cancellation requested for running job {job_id}")
                return job
            if job.status != JobStatus.QUEUED:
                raise InvalidTransitionError(
                    "research_job",
                    job_id,
                    current=job.status.value,
                    target=CANCELLED_MESSAGE,
                )
            job = await JobStore(uow.session).mark_failed(engagement_id, job_id, CANCELLED_MESSAGE)

        await self._fail_stress_test(job, CANCELLED_MESSAGE)
        self._publish_failed(job)
        return job

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def recover(self) -> int:
        """
        Restore the durable queue after a restart.

        ``running`` jobs left by a stopped worker are failed, then persisted
        ``queued`` jobs are enqueued.

        Returns:
            Number of jobs enqueued.
        """
        async with UnitOfWork(self._session_factory) as uow:
            jobs = JobStore(uow.session)
            orphaned = [
                await jobs.mark_failed(job.engagement_id, job.id, ORPHANED_MESSAGE)
                for job in await jobs.list_by_status(JobStatus.RUNNING)
            ]
            for job in orphaned:
                logger.warning(f"Failed orphaned running job {job.id}")

        for job in orphaned:
            await self._fail_stress_test(job, ORPHANED_MESSAGE)
            self._publish_failed(job)
        enqueued = await self.enqueue_persisted()
        logger.info(f"Recovered {enqueued} queued job(s), failed {len(orphaned)} orphaned job(s)")
        return enqueued

    async def enqueue_persisted(self) -> int:
        """
        Enqueue ``queued`` jobs found in the job table.

        Picks up jobs submitted by other processes. Jobs already waiting in
        this process are not enqueued twice.

        Returns:
            Number of jobs newly enqueued.
        """
        async with UnitOfWork(self._session_factory) as uow:
            queued = await JobStore(uow.session).list_by_status(JobStatus.QUEUED)
        return sum(1 for job in queued if self._enqueue(job.engagement_id, job.id))

    def _enqueue(self, engagement_id: UUID, job_id: UUID) -> bool:
        if job_id in self._enqueued:
            return False
        self._enqueued.add(job_id)
        self._queue.put_nowait((engagement_id, job_id))
        return True

    async def _take(self, engagement_id: UUID, job_id: UUID) -> None:
        self._enqueued.discard(job_id)
        await self._process(engagement_id, job_id)

    async def start(self, workers: int | None = None) -> None:
        """Start worker tasks that drain the queue."""
        if self._running:
            return
        count = workers or self._settings.worker_concurrency
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"job-worker-{i}") for i in range(count)
        ]
        logger.info(f"Orchestrator started with {count} worker(s)")

    async def stop(self) -> None:
        """Stop worker tasks. Jobs in flight are cancelled."""
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("Orchestrator stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed by the workers."""
        await self._queue.join()

    async def run_until_idle(self) -> int:
        """
        Run queued jobs inline, one after another, until the queue is empty.

        Returns:
            Number of jobs taken from the queue.
        """
        processed = 0
        while not self._queue.empty():
            engagement_id, job_id = self._queue.get_nowait()
            try:
                await self._take(engagement_id, job_id)
            finally:
                self._queue.task_done()
            processed += 1
        return processed

    async def _worker_loop(self, index: int) -> None:
        while self._running:
            engagement_id, job_id = await self._queue.get()
            try:
                await self._take(engagement_id, job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Worker {index} crashed on job {job_id}")
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _process(self, engagement_id: UUID, job_id: UUID) -> ResearchJob | None:
        """Run one job from ``queued`` to a terminal status."""
        self._in_flight.add(job_id)
        try:
            try:
                async with UnitOfWork(self._session_factory) as uow:
                    job = await JobStore(uow.session).mark_running(engagement_id, job_id)
            except InvalidTransitionError:
                logger.info(f"Skipping job {job_id}: no longer queued")
                return None
            return await self._execute(job)
        finally:
            self._in_flight.discard(job_id)
            self._cancel_requested.discard(job_id)
            self._broker.close_job(job_id)

    async def _execute(self, job: ResearchJob) -> ResearchJob:
        engagement_id, job_id = job.engagement_id, job.id
        reporter = JobReporter(
            job,
            self._session_factory,
            self._broker,
            is_cancelled=lambda: job_id in self._cancel_requested,
        )
        reporter.emit(ProgressEventType.STARTED, type=job.type.value, progress=0)
        logger.info(f"Running {job.type.value} job {job.id} for engagement {engagement_id}")

        try:
            outcome = await self._workflow(reporter).run()
        except JobCancelledError as e:
            logger.info(f"Job {job_id} cancelled before phase {e.phase}")
            return await self._finish_failed(job, CANCELLED_MESSAGE, phase=e.phase)
        except ThesisValidatorError as e:
            logger.error(f"Job {job_id} failed: {e.message}")
            return await self._finish_failed(job, e.message, phase=getattr(e, "phase", None))
        except Exception as e:
            logger.exception(f"Job {job_id} crashed")
            return await self._finish_failed(job, f"{type(e).__name__}: {e}")

        status = JobStatus.PARTIAL if outcome.partial_error else JobStatus.COMPLETED
        try:
            async with UnitOfWork(self._session_factory) as uow:
                job = await JobStore(uow.session).mark_finished(
                    engagement_id,
                    job_id,
                    outcome.result,
                    status=status,
                    error=outcome.partial_error,
                )
        except ThesisValidatorError as e:
            logger.error(f"Could not persist the result of job {job_id}: {e.message}")
            return await self._finish_failed(job, e.message)
        await self._record_metrics(engagement_id)
        logger.info(f"Job {job_id} finished as {status.value}")

        reporter.emit(
            ProgressEventType.COMPLETED,
            status=status.value,
            progress=100,
            error=outcome.partial_error,
        )
        return job

    def _workflow(self, reporter: JobReporter) -> Workflow:
        if reporter.job.type == JobType.STRESS_TEST:
            return StressTestWorkflow(reporter, self._session_factory, self._reasoning, self._settings)
        return ResearchWorkflow(
            reporter,
            self._session_factory,
            self._reasoning,
            self._settings,
            market_data=self._market_data,
        )

    async def _finish_failed(self, job: ResearchJob, error: str, phase: str | None = None) -> ResearchJob:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                failed = await JobStore(uow.session).mark_failed(job.engagement_id, job.id, error)
        except ThesisValidatorError:
            logger.exception(f"Could not mark job {job.id} failed; it stays {job.status.value}")
            raise
        await self._fail_stress_test(job, error)
        self._publish_failed(failed, phase)
        return failed

    def _publish_failed(self, job: ResearchJob, phase: str | None = None) -> None:
        reporter = JobReporter(job, self._session_factory, self._broker)
        reporter.emit(ProgressEventType.FAILED, error=job.error, phase=phase, progress=job.progress)
        self._broker.close_job(job.id)

    async def _fail_stress_test(self, job: ResearchJob, error: str) -> None:
        """Fail the stress test driven by a failed job, if it is still open."""
        stress_test_id = job.config.get("stress_test_id") if job.type == JobType.STRESS_TEST else None
        if not stress_test_id:
            return
        try:
            async with UnitOfWork(self._session_factory) as uow:
                await StressTestStore(uow.session).mark_failed(
                    job.engagement_id,
                    UUID(str(stress_test_id)),
                    error,
                )
        except InvalidTransitionError:
            logger.info(f"Stress test {stress_test_id} already finished; leaving it as is")

    async def _record_metrics(self, engagement_id: UUID) -> None:
        try:
            async with UnitOfWork(self._session_factory) as uow:
                await MetricsAggregator(uow.session).recompute_and_record(engagement_id)
        except ThesisValidatorError:
            logger.exception(f"Metrics recompute failed for engagement {engagement_id}")
