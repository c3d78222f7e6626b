"""
Pydantic schemas for the job orchestrator.

Defines job configuration, the job status view, submission receipts and
progress events.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from thesis_validator.stress_tests.schemas import Intensity


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    RESEARCH = "research"
    STRESS_TEST = "stress_test"


class JobStatus(str, Enum):
    """Lifecycle of a job: queued -> running -> completed | partial | failed."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PARTIAL})


class ResearchDepth(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


class ResearchConfig(BaseModel):
    """Configuration of a research job."""

    thesis: str = Field(..., min_length=10, description="Investment thesis to research")
    depth: ResearchDepth = Field(default=ResearchDepth.STANDARD, description="Research depth")
    focus_areas: list[str] = Field(default_factory=list, description="Areas to emphasize")
    include_comparables: bool = Field(default=True, description="Consider comparable companies")
    max_sources: int = Field(default=20, ge=1, le=100, description="Evidence items to request")
    ticker: str | None = Field(
        default=None,
        description="Ticker symbol; enables market data enrichment",
    )


class StressTestConfig(BaseModel):
    """Configuration of a stress-test job."""

    intensity: Intensity = Field(default=Intensity.MODERATE, description="Intensity")
    hypothesis_ids: list[UUID] = Field(
        default_factory=list,
        description="Hypotheses to target; empty means the whole graph",
    )
    devil_advocate_mode: bool = Field(default=True, description="Argue the bear case")
    search_contrarian_sources: bool = Field(
        default=False,
        description="Ask for contrarian sources while synthesizing vulnerabilities",
    )
    stress_test_id: UUID | None = Field(
        default=None,
        description="Stress-test record driven by the job; set on submission",
    )


class ResearchJob(BaseModel):
    """Pollable status of a job."""

    id: UUID
    engagement_id: UUID
    type: JobType
    status: JobStatus
    progress: int = Field(default=0, ge=0, le=100)
    config: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


class JobSubmission(BaseModel):
    """Receipt returned immediately on submission."""

    job_id: UUID
    status_url: str
    status: JobStatus
    created: bool = Field(
        ...,
        description="False when an already-active job was returned instead of a new one",
    )


class ProgressEventType(str, Enum):
    STARTED = "job.started"
    PROGRESS = "job.progress"
    PHASE_COMPLETED = "job.phase_completed"
    COMPLETED = "job.completed"
    FAILED = "job.failed"


TERMINAL_EVENT_TYPES = frozenset({ProgressEventType.COMPLETED, ProgressEventType.FAILED})


class ProgressEvent(BaseModel):
    """A progress notification pushed to subscribers of a job."""

    type: ProgressEventType
    job_id: UUID
    timestamp: datetime = Field(default_factory=_now_utc)
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES
