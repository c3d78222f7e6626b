"""
Graph store: persistence of hypothesis nodes and causal edges.

All lookups are scoped by engagement id. Deleting a node removes the edges
touching it and nulls references held by child nodes and contradictions;
evidence link rows are left in place.
"""

import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from thesis_validator.db.models import CausalEdgeModel, ContradictionModel, HypothesisModel
from thesis_validator.db.repository import BaseRepository
from thesis_validator.errors import ConflictError, NotFoundError, ValidationError
from thesis_validator.graph.schemas import (
    CausalEdge,
    EdgeCreate,
    GraphSnapshot,
    Hypothesis,
    HypothesisCreate,
    HypothesisStatus,
    HypothesisType,
    HypothesisUpdate,
)
from thesis_validator.validation import parse_input

logger = logging.getLogger(__name__)


def _to_hypothesis(model: HypothesisModel) -> Hypothesis:
    return Hypothesis(
        id=model.id,
        engagement_id=model.engagement_id,
        type=HypothesisType(model.node_type),
        content=model.content,
        confidence=model.confidence,
        status=HypothesisStatus(model.status),
        importance=model.importance,
        testability=model.testability,
        parent_id=model.parent_id,
        metadata=model.metadata_ or {},
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_edge(model: CausalEdgeModel) -> CausalEdge:
    return CausalEdge(
        id=model.id,
        engagement_id=model.engagement_id,
        source_id=model.source_id,
        target_id=model.target_id,
        relationship=model.relationship_type,
        strength=model.strength,
        reasoning=model.reasoning,
        created_at=model.created_at,
    )


class GraphStore(BaseRepository[HypothesisModel]):
    """Repository for hypothesis nodes and causal edges."""

    entity_name = "hypothesis"

    @property
    def _model_class(self) -> type[HypothesisModel]:
        return HypothesisModel

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def create_node(
        self,
        engagement_id: UUID,
        data: HypothesisCreate | Mapping[str, Any],
    ) -> Hypothesis:
        """
        Create a hypothesis node.

        Args:
            engagement_id: Owning engagement.
            data: Node fields.

        Returns:
            The stored node.

        Raises:
            ValidationError: On malformed input.
            NotFoundError: If ``parent_id`` is not a node of the engagement.
            ConflictError: If a second thesis node is created.
        """
        payload = parse_input(HypothesisCreate, data)
        if payload.parent_id is not None:
            await self._get_or_raise(engagement_id, payload.parent_id)
        if payload.type == HypothesisType.THESIS:
            await self._ensure_no_thesis(engagement_id)

        model = HypothesisModel(
            engagement_id=engagement_id,
            node_type=payload.type.value,
            content=payload.content,
            confidence=payload.confidence,
            status=payload.status.value,
            importance=payload.importance.value,
            testability=payload.testability.value,
            parent_id=payload.parent_id,
            metadata_=payload.metadata,
        )
        try:
            model = await self._add(model)
        except IntegrityError as e:
            raise ConflictError(
                message="Engagement already has a thesis node",
                details={"engagement_id": str(engagement_id)},
            ) from e
        logger.info(f"Created {payload.type.value} node {model.id} for engagement {engagement_id}")
        return _to_hypothesis(model)

    async def get_node(self, engagement_id: UUID, node_id: UUID) -> Hypothesis:
        """Fetch one node. Raises NotFoundError outside the engagement."""
        return _to_hypothesis(await self._get_or_raise(engagement_id, node_id))

    async def update_node(
        self,
        engagement_id: UUID,
        node_id: UUID,
        data: HypothesisUpdate | Mapping[str, Any],
    ) -> Hypothesis:
        """
        Apply a partial update to a node.

        Args:
            engagement_id: Owning engagement.
            node_id: Node to update.
            data: Fields to change; unset fields are left alone.

        Returns:
            The updated node.
        """
        payload = parse_input(HypothesisUpdate, data)
        model = await self._get_or_raise(engagement_id, node_id)
        changes = payload.model_dump(exclude_unset=True)

        if "parent_id" in changes and changes["parent_id"] is not None:
            if changes["parent_id"] == node_id:
                raise ValidationError(
                    message="A hypothesis cannot be its own parent",
                    details={"id": str(node_id)},
                )
            await self._get_or_raise(engagement_id, changes["parent_id"])
        if changes.get("type") == HypothesisType.THESIS and model.node_type != "thesis":
            await self._ensure_no_thesis(engagement_id)

        for field, value in changes.items():
            if field == "type":
                if value is not None:
                    model.node_type = value.value
            elif field == "metadata":
                model.metadata_ = value or {}
            elif field in ("status", "importance", "testability"):
                if value is not None:
                    setattr(model, field, value.value)
            elif field in ("content", "confidence"):
                if value is not None:
                    setattr(model, field, value)
            else:
                setattr(model, field, value)

        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConflictError(
                message="Engagement already has a thesis node",
                details={"engagement_id": str(engagement_id)},
            ) from e
        await self._session.refresh(model)
        return _to_hypothesis(model)

    async def delete_node(self, engagement_id: UUID, node_id: UUID) -> None:
        """
        Delete a node.

        Edges touching the node are deleted. Children lose their parent
        pointer, contradictions lose their hypothesis reference, and evidence
        links stay behind as orphans.
        """
        model = await self._get_or_raise(engagement_id, node_id)

        await self._session.execute(
            update(HypothesisModel)
            .where(
                HypothesisModel.engagement_id == engagement_id,
                HypothesisModel.parent_id == node_id,
            )
            .values(parent_id=None)
        )
        await self._session.execute(
            update(ContradictionModel)
            .where(ContradictionModel.hypothesis_id == node_id)
            .values(hypothesis_id=None)
        )
        await self._session.execute(
            delete(CausalEdgeModel)
            .where(or_(CausalEdgeModel.source_id == node_id, CausalEdgeModel.target_id == node_id))
        )
        await self._remove(model)
        logger.info(f"Deleted hypothesis {node_id} from engagement {engagement_id}")

    async def list_nodes(
        self,
        engagement_id: UUID,
        node_type: HypothesisType | None = None,
        status: HypothesisStatus | None = None,
    ) -> list[Hypothesis]:
        """List nodes of an engagement in creation order."""
        stmt = select(HypothesisModel).where(HypothesisModel.engagement_id == engagement_id)
        if node_type is not None:
            stmt = stmt.where(HypothesisModel.node_type == HypothesisType(node_type).value)
        if status is not None:
            stmt = stmt.where(HypothesisModel.status == HypothesisStatus(status).value)
        stmt = stmt.order_by(HypothesisModel.created_at, HypothesisModel.id)
        result = await self._session.execute(stmt)
        return [_to_hypothesis(m) for m in result.scalars().all()]

    async def count_nodes(self, engagement_id: UUID) -> int:
        stmt = select(func.count()).select_from(HypothesisModel).where(
            HypothesisModel.engagement_id == engagement_id
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def get_thesis(self, engagement_id: UUID) -> Hypothesis | None:
        """Return the root thesis node, if any."""
        stmt = select(HypothesisModel).where(
            HypothesisModel.engagement_id == engagement_id,
            HypothesisModel.node_type == HypothesisType.THESIS.value,
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_hypothesis(model) if model else None

    async def _ensure_no_thesis(self, engagement_id: UUID) -> None:
        existing = await self.get_thesis(engagement_id)
        if existing is not None:
            logger.warning(f"Rejected second thesis node for engagement {engagement_id}")
            raise ConflictError(
                message="Engagement already has a thesis node",
                details={"engagement_id": str(engagement_id), "thesis_id": str(existing.id)},
            )

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def create_edge(
        self,
        engagement_id: UUID,
        data: EdgeCreate | Mapping[str, Any],
    ) -> CausalEdge:
        """
        Create a directed edge between two nodes of the engagement.

        Several edges between the same pair are allowed, and no cycle check
        is made.

        Raises:
            NotFoundError: If either endpoint is not a node of the engagement.
        """
        payload = parse_input(EdgeCreate, data)
        await self._get_or_raise(engagement_id, payload.source_id)
        await self._get_or_raise(engagement_id, payload.target_id)

        model = CausalEdgeModel(
            engagement_id=engagement_id,
            source_id=payload.source_id,
            target_id=payload.target_id,
            relationship_type=payload.relationship.value,
            strength=payload.strength,
            reasoning=payload.reasoning,
        )
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return _to_edge(model)

    async def delete_edge(self, engagement_id: UUID, edge_id: UUID) -> None:
        stmt = select(CausalEdgeModel).where(
            CausalEdgeModel.id == edge_id,
            CausalEdgeModel.engagement_id == engagement_id,
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        if model is None:
            raise NotFoundError("edge", edge_id, engagement_id)
        await self._session.delete(model)
        await self._session.flush()

    async def list_edges(self, engagement_id: UUID) -> list[CausalEdge]:
        """List edges of an engagement in creation order."""
        stmt = (
            select(CausalEdgeModel)
            .where(CausalEdgeModel.engagement_id == engagement_id)
            .order_by(CausalEdgeModel.created_at, CausalEdgeModel.id)
        )
        result = await self._session.execute(stmt)
        return [_to_edge(m) for m in result.scalars().all()]

    async def get_graph(self, engagement_id: UUID) -> GraphSnapshot:
        """Return all nodes and edges of an engagement together."""
        return GraphSnapshot(
            engagement_id=engagement_id,
            nodes=await self.list_nodes(engagement_id),
            edges=await self.list_edges(engagement_id),
        )
