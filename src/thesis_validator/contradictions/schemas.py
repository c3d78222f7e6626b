"""
Pydantic schemas for contradictions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from thesis_validator.contradictions.state_machine import ContradictionStatus


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Lower rank sorts first
SEVERITY_RANK = {Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}


class ContradictionCreate(BaseModel):
    """Input for flagging a contradiction."""

    description: str = Field(..., min_length=1, description="What conflicts with what")
    severity: Severity = Field(..., description="Severity")
    hypothesis_id: UUID | None = Field(default=None, description="Contradicted hypothesis")
    evidence_id: UUID | None = Field(default=None, description="Contradicting evidence")
    bear_case_theme: str | None = Field(default=None, description="Bear-case theme tag")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class ContradictionUpdate(BaseModel):
    """Field update. Status is changed only through resolve/mark_critical."""

    description: str | None = Field(default=None, min_length=1)
    severity: Severity | None = None
    bear_case_theme: str | None = None
    metadata: dict[str, Any] | None = None


class ResolveRequest(BaseModel):
    status: Literal["explained", "dismissed"] = Field(..., description="Terminal status")
    resolution_notes: str = Field(..., description="How the contradiction was settled")
    resolved_by: str = Field(..., min_length=1, description="Who settled it")


class Contradiction(BaseModel):
    """A stored contradiction."""

    id: UUID
    engagement_id: UUID
    hypothesis_id: UUID | None = None
    evidence_id: UUID | None = None
    description: str
    severity: Severity
    status: ContradictionStatus
    bear_case_theme: str | None = None
    resolution_notes: str | None = None
    resolved_by: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    found_at: datetime
    resolved_at: datetime | None = None


class ContradictionFilters(BaseModel):
    severity: Severity | None = None
    status: ContradictionStatus | None = None
    hypothesis_id: UUID | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)


class ContradictionStats(BaseModel):
    """Counts and resolution rate for one engagement."""

    total_count: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    unresolved_count: int = 0
    critical_count: int = 0
    resolution_rate: float = Field(
        default=1.0,
        description="(explained + dismissed) / total; 1.0 when there are none",
    )
