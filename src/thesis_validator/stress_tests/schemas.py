"""
Pydantic schemas for stress tests and their structured results.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from thesis_validator.contradictions.schemas import Severity


class Intensity(str, Enum):
    """How hard the adversarial pass pushes; controls the scenario count."""

    LIGHT = "light"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class StressTestStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Assessment(str, Enum):
    """Score band of the overall risk score."""

    ROBUST = "robust"
    MODERATE = "moderate"
    VULNERABLE = "vulnerable"
    CRITICAL = "critical"


class Scenario(BaseModel):
    """One adversarial scenario the thesis was run against."""

    name: str = Field(..., description="Short scenario name")
    description: str = Field(default="", description="What happens in the scenario")
    outcome: str = Field(default="", description="How the thesis fares")
    impact_score: float = Field(default=0.5, ge=0.0, le=1.0, description="Impact in [0, 1]")


class Vulnerability(BaseModel):
    """A weakness of the thesis exposed by the scenarios."""

    area: str = Field(..., description="Thesis area affected")
    description: str = Field(..., description="The weakness")
    severity: Severity = Field(..., description="Severity")
    mitigation: str | None = Field(default=None, description="Suggested mitigation")


class StressTestResults(BaseModel):
    """Structured outcome of a completed stress test."""

    scenarios: list[Scenario] = Field(default_factory=list)
    vulnerabilities: list[Vulnerability] = Field(default_factory=list)
    overall_risk_score: int = Field(..., ge=0, le=100, description="Risk score 0-100")
    overall_assessment: Assessment = Field(..., description="Band of the risk score")
    summary: str = Field(default="", description="Free-text summary")
    recommendations: list[str] = Field(default_factory=list)


class StressTestCreate(BaseModel):
    intensity: Intensity = Field(default=Intensity.MODERATE, description="Intensity")
    hypothesis_ids: list[UUID] = Field(
        default_factory=list,
        description="Hypotheses to target; empty means the whole graph",
    )


class StressTest(BaseModel):
    """A stored stress-test run."""

    id: UUID
    engagement_id: UUID
    intensity: Intensity
    hypothesis_ids: list[UUID] = Field(default_factory=list)
    status: StressTestStatus
    results: StressTestResults | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class StressTestStats(BaseModel):
    total_count: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_intensity: dict[str, int] = Field(default_factory=dict)
    average_duration_ms: float | None = Field(
        default=None,
        description="Mean run time of completed tests",
    )
    average_risk_score: float | None = None
    last_run_at: datetime | None = None
