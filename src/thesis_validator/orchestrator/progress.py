"""
Progress fan-out for running jobs.

The persisted job row is the source of truth; events published here are a
best-effort broadcast derived from it. Publishing never blocks the worker:
each subscriber owns a bounded queue and the oldest buffered event is dropped
when that queue is full.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesis_validator.config import get_settings
from thesis_validator.db.session import UnitOfWork
from thesis_validator.errors import JobCancelledError
from thesis_validator.orchestrator.job_store import JobStore
from thesis_validator.orchestrator.schemas import (
    ProgressEvent,
    ProgressEventType,
    ResearchJob,
)

logger = logging.getLogger(__name__)


class Subscription:
    """
    An ordered stream of progress events for one job.

    Iterate with ``async for``; iteration ends after the terminal event
    (``job.completed`` or ``job.failed``) or when the subscription is closed.
    """

    def __init__(self, broker: "ProgressBroker", job_id: UUID, queue: asyncio.Queue) -> None:
        self._broker = broker
        self._queue = queue
        self._finished = False
        self.job_id = job_id

    @property
    def closed(self) -> bool:
        return self._finished

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            self.close()
            raise StopAsyncIteration
        if event.is_terminal:
            self.close()
        return event

    async def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Wait for the next event; ``None`` once the stream has ended."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout=timeout)
        except StopAsyncIteration:
            return None

    def close(self) -> None:
        """Detach from the broker. Buffered events are discarded."""
        if not self._finished:
            self._finished = True
            self._broker.unsubscribe(self.job_id, self._queue)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ProgressBroker:
    """In-process publish/subscribe channel keyed by job id."""

    def __init__(self, buffer_size: int | None = None) -> None:
        """
        Initialize the broker.

        Args:
            buffer_size: Events buffered per subscriber (uses config if not provided).
        """
        self._buffer_size = buffer_size or get_settings().progress_buffer_size
        self._subscribers: dict[UUID, set[asyncio.Queue]] = {}

    def subscribe(self, job_id: UUID) -> Subscription:
        """Attach to a job. Events published before this call are not replayed."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._buffer_size)
        self._subscribers.setdefault(job_id, set()).add(queue)
        logger.debug(f"Subscriber attached to job {job_id}")
        return Subscription(self, job_id, queue)

    def unsubscribe(self, job_id: UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[job_id]
        logger.debug(f"Subscriber detached from job {job_id}")

    def subscriber_count(self, job_id: UUID) -> int:
        return len(self._subscribers.get(job_id, ()))

    def publish(self, event: ProgressEvent) -> int:
        """
        Deliver an event to every current subscriber of its job.

        Never blocks. A full subscriber queue loses its oldest event.

        Returns:
            Number of subscribers the event was delivered to.
        """
        queues = list(self._subscribers.get(event.job_id, ()))
        for queue in queues:
            if queue.full():
                queue.get_nowait()
                logger.warning(f"Dropped oldest progress event for slow subscriber of job {event.job_id}")
            queue.put_nowait(event)
        return len(queues)

    def close_job(self, job_id: UUID) -> None:
        """End every subscription of a job that will publish nothing more."""
        for queue in list(self._subscribers.pop(job_id, ())):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)


class JobReporter:
    """
    Reports the progress of one running job.

    Every update is persisted on the job row first and then published, so a
    poller never sees less progress than a subscriber has been told about.
    """

    def __init__(
        self,
        job: ResearchJob,
        session_factory: async_sessionmaker[AsyncSession],
        broker: ProgressBroker,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> None:
        self._job = job
        self._session_factory = session_factory
        self._broker = broker
        self._is_cancelled = is_cancelled or (lambda: False)
        self._progress = job.progress

    @property
    def job(self) -> ResearchJob:
        return self._job

    @property
    def progress(self) -> int:
        return self._progress

    def emit(self, event_type: ProgressEventType, **data: Any) -> ProgressEvent:
        event = ProgressEvent(type=event_type, job_id=self._job.id, data=data)
        self._broker.publish(event)
        return event

    async def progress_to(self, percent: int, phase: str, message: str | None = None) -> None:
        """Persist a progress milestone and publish ``job.progress``."""
        percent = max(self._progress, min(100, percent))
        async with UnitOfWork(self._session_factory) as uow:
            await JobStore(uow.session).update_progress(self._job.engagement_id, self._job.id, percent)
        self._progress = percent
        data: dict[str, Any] = {"progress": percent, "phase": phase}
        if message:
            data["message"] = message
        self.emit(ProgressEventType.PROGRESS, **data)

    async def phase_completed(self, phase: str, percent: int, **summary: Any) -> None:
        """Persist the end-of-phase progress and publish ``job.phase_completed``."""
        percent = max(self._progress, min(100, percent))
        async with UnitOfWork(self._session_factory) as uow:
            await JobStore(uow.session).update_progress(self._job.engagement_id, self._job.id, percent)
        self._progress = percent
        logger.info(f"Job {self._job.id} finished phase {phase} ({percent}%)")
        self.emit(ProgressEventType.PHASE_COMPLETED, phase=phase, progress=percent, **summary)

    def checkpoint(self, phase: str) -> None:
        """
        Honour a pending cancellation request.

        Raises:
            JobCancelledError: If the job was asked to stop.
        """
        if self._is_cancelled():
            raise JobCancelledError(self._job.id, phase)
