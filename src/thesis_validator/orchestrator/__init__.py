"""Job orchestration: admission, workers, workflows and progress events."""

from thesis_validator.orchestrator.job_store import JobStore
from thesis_validator.orchestrator.orchestrator import ResearchOrchestrator
from thesis_validator.orchestrator.progress import JobReporter, ProgressBroker, Subscription
from thesis_validator.orchestrator.schemas import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    JobStatus,
    JobSubmission,
    JobType,
    ProgressEvent,
    ProgressEventType,
    ResearchConfig,
    ResearchDepth,
    ResearchJob,
    StressTestConfig,
)
from thesis_validator.orchestrator.workflows import (
    ResearchWorkflow,
    StressTestWorkflow,
    Workflow,
    WorkflowOutcome,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
    "JobReporter",
    "JobStatus",
    "JobStore",
    "JobSubmission",
    "JobType",
    "ProgressBroker",
    "ProgressEvent",
    "ProgressEventType",
    "ResearchConfig",
    "ResearchDepth",
    "ResearchJob",
    "ResearchOrchestrator",
    "StressTestConfig",
    "StressTestWorkflow",
    "ResearchWorkflow",
    "Subscription",
    "Workflow",
    "WorkflowOutcome",
]
