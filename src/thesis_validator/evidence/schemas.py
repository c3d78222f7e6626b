"""
Pydantic schemas for evidence and its links to hypotheses.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

# Number of SourceType members; the denominator of source diversity
SOURCE_TYPE_COUNT = 6


class SourceType(str, Enum):
    """Where a piece of evidence came from."""

    WEB = "web"
    DOCUMENT = "document"
    EXPERT = "expert"
    DATA = "data"
    FILING = "filing"
    FINANCIAL = "financial"


class Sentiment(str, Enum):
    """Direction of evidence relative to the thesis."""

    SUPPORTING = "supporting"
    NEUTRAL = "neutral"
    CONTRADICTING = "contradicting"


class EvidenceCreate(BaseModel):
    """Input for recording a piece of evidence."""

    content: str = Field(..., min_length=1, description="The observation itself")
    source_type: SourceType = Field(..., description="Source category")
    sentiment: Sentiment = Field(default=Sentiment.NEUTRAL, description="Sentiment")
    credibility: float = Field(default=0.5, ge=0.0, le=1.0, description="Credibility in [0, 1]")
    source_url: str | None = Field(default=None, description="Source URL")
    source_title: str | None = Field(default=None, description="Source title")
    source_author: str | None = Field(default=None, description="Source author")
    source_publication_date: date | None = Field(default=None, description="Publication date")
    document_id: UUID | None = Field(default=None, description="Originating document")
    provenance: dict[str, Any] = Field(default_factory=dict, description="How it was obtained")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")
    retrieved_at: datetime | None = Field(default=None, description="When it was retrieved")


class EvidenceUpdate(BaseModel):
    """Partial update; only content, credibility, sentiment and metadata change."""

    content: str | None = Field(default=None, min_length=1)
    credibility: float | None = Field(default=None, ge=0.0, le=1.0)
    sentiment: Sentiment | None = None
    metadata: dict[str, Any] | None = None


class HypothesisLink(BaseModel):
    """A link from evidence to one hypothesis."""

    hypothesis_id: UUID
    relevance_score: float = Field(..., ge=0.0, le=1.0)


class Evidence(BaseModel):
    """A stored piece of evidence."""

    id: UUID
    engagement_id: UUID
    content: str
    source_type: SourceType
    sentiment: Sentiment
    credibility: float
    source_url: str | None = None
    source_title: str | None = None
    source_author: str | None = None
    source_publication_date: date | None = None
    document_id: UUID | None = None
    provenance: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    retrieved_at: datetime | None = None
    created_at: datetime
    linked_hypotheses: list[HypothesisLink] | None = Field(
        default=None,
        description="Populated by single-item fetches only",
    )


class EvidenceFilters(BaseModel):
    """
    List filters.

    ``hypothesis_id`` is applied after ``limit``/``offset``: a page is cut from
    the otherwise-filtered rows first, then narrowed to evidence linked to the
    hypothesis. A page can therefore come back shorter than ``limit`` even
    when more linked evidence exists.
    """

    source_type: SourceType | None = None
    sentiment: Sentiment | None = None
    min_credibility: float | None = Field(default=None, ge=0.0, le=1.0)
    max_credibility: float | None = Field(default=None, ge=0.0, le=1.0)
    hypothesis_id: UUID | None = None
    document_id: UUID | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)


class EvidenceStats(BaseModel):
    """Aggregate view of an engagement's evidence."""

    total_count: int = 0
    by_source_type: dict[str, int] = Field(default_factory=dict)
    by_sentiment: dict[str, int] = Field(default_factory=dict)
    average_credibility: float = 0.0
    hypothesis_coverage: float = Field(
        default=0.0,
        description="Linked hypotheses / total hypotheses; 0 when there are none",
    )
