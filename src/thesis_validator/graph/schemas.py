"""
Pydantic schemas for the hypothesis graph.

Nodes are hypotheses scoped to an engagement; edges are typed, weighted,
directed causal relationships between them.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class HypothesisType(str, Enum):
    """Role of a node in the thesis graph."""

    THESIS = "thesis"
    LEVER = "lever"
    ASSUMPTION = "assumption"
    RISK = "risk"
    DEPENDENCY = "dependency"


class HypothesisStatus(str, Enum):
    """Validation status of a hypothesis."""

    PROPOSED = "proposed"
    TESTING = "testing"
    VALIDATED = "validated"
    INVALIDATED = "invalidated"
    DEFERRED = "deferred"


class Importance(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Testability(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    DIFFICULT = "difficult"


class RelationshipType(str, Enum):
    """Semantics of a causal edge, read as ``source <relationship> target``."""

    SUPPORTS = "supports"
    CONTRADICTS = "contradicts"
    DEPENDS_ON = "depends_on"
    LEADS_TO = "leads_to"
    MITIGATES = "mitigates"


class HypothesisCreate(BaseModel):
    """Input for creating a hypothesis node."""

    type: HypothesisType = Field(..., description="Node type")
    content: str = Field(..., min_length=1, description="The hypothesis statement")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="Confidence in [0, 1]")
    status: HypothesisStatus = Field(
        default=HypothesisStatus.PROPOSED,
        description="Initial validation status",
    )
    importance: Importance = Field(default=Importance.MEDIUM, description="Importance")
    testability: Testability = Field(default=Testability.MODERATE, description="Testability")
    parent_id: UUID | None = Field(default=None, description="Declared display parent")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class HypothesisUpdate(BaseModel):
    """
    Partial update of a hypothesis node.

    Only fields explicitly provided are written; passing ``parent_id=None``
    detaches the node from its parent.
    """

    type: HypothesisType | None = None
    content: str | None = Field(default=None, min_length=1)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    status: HypothesisStatus | None = None
    importance: Importance | None = None
    testability: Testability | None = None
    parent_id: UUID | None = None
    metadata: dict[str, Any] | None = None


class Hypothesis(BaseModel):
    """A stored hypothesis node."""

    id: UUID
    engagement_id: UUID
    type: HypothesisType
    content: str
    confidence: float
    status: HypothesisStatus
    importance: Importance
    testability: Testability
    parent_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class EdgeCreate(BaseModel):
    """Input for creating a causal edge."""

    source_id: UUID = Field(..., description="Edge origin")
    target_id: UUID = Field(..., description="Edge destination")
    relationship: RelationshipType = Field(..., description="Relationship type")
    strength: float = Field(default=0.5, ge=0.0, le=1.0, description="Strength in [0, 1]")
    reasoning: str | None = Field(default=None, description="Why the relationship holds")


class CausalEdge(BaseModel):
    """A stored causal edge."""

    id: UUID
    engagement_id: UUID
    source_id: UUID
    target_id: UUID
    relationship: RelationshipType
    strength: float
    reasoning: str | None = None
    created_at: datetime


class GraphSnapshot(BaseModel):
    """Nodes and edges of one engagement, returned together."""

    engagement_id: UUID
    nodes: list[Hypothesis] = Field(default_factory=list)
    edges: list[CausalEdge] = Field(default_factory=list)


class TreeNode(BaseModel):
    """A node of the display tree projected from the graph."""

    hypothesis: Hypothesis
    children: list["TreeNode"] = Field(default_factory=list)
    # How this node was attached: "root", "parent" or "edge"
    attached_by: str = "root"


TreeNode.model_rebuild()
