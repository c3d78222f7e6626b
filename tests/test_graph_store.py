"""
Tests for the hypothesis graph store.
"""

from uuid import uuid4

import pytest
import pytest_asyncio

from thesis_validator.contradictions import ContradictionCreate, ContradictionStore
from thesis_validator.errors import ConflictError, NotFoundError, ValidationError
from thesis_validator.evidence import EvidenceCreate, EvidenceStore
from thesis_validator.graph import (
    EdgeCreate,
    GraphStore,
    HypothesisCreate,
    HypothesisStatus,
    HypothesisType,
    RelationshipType,
)


class TestNodes:
    """Tests for node CRUD."""

    @pytest_asyncio.fixture
    async def store(self, session) -> GraphStore:
        return GraphStore(session)

    @pytest.mark.asyncio
    async def test_create_and_get(self, store: GraphStore, engagement_id) -> None:
        thesis = await store.create_node(
            engagement_id,
            HypothesisCreate(type=HypothesisType.THESIS, content="Acme can double EBITDA in 4 years"),
        )
        fetched = await store.get_node(engagement_id, thesis.id)

        assert fetched.id == thesis.id
        assert fetched.type == HypothesisType.THESIS
        assert fetched.confidence == 0.5
        assert fetched.status == HypothesisStatus.PROPOSED

    @pytest.mark.asyncio
    async def test_other_engagement_cannot_see_node(self, store: GraphStore, engagement_id) -> None:
        node = await store.create_node(engagement_id, {"type": "lever", "content": "Cut SG&A"})

        with pytest.raises(NotFoundError):
            await store.get_node(uuid4(), node.id)

    @pytest.mark.asyncio
    async def test_confidence_out_of_range_rejected(self, store: GraphStore, engagement_id) -> None:
        with pytest.raises(ValidationError):
            await store.create_node(
                engagement_id,
                {"type": "lever", "content": "Cut SG&A", "confidence": 1.5},
            )

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, store: GraphStore, engagement_id) -> None:
        with pytest.raises(ValidationError):
            await store.create_node(engagement_id, {"type": "hunch", "content": "Maybe"})

    @pytest.mark.asyncio
    async def test_second_thesis_is_conflict(self, store: GraphStore, engagement_id) -> None:
        await store.create_node(engagement_id, {"type": "thesis", "content": "First thesis"})

        with pytest.raises(ConflictError):
            await store.create_node(engagement_id, {"type": "thesis", "content": "Second thesis"})

    @pytest.mark.asyncio
    async def test_unknown_parent_is_not_found(self, store: GraphStore, engagement_id) -> None:
        with pytest.raises(NotFoundError):
            await store.create_node(
                engagement_id,
                {"type": "lever", "content": "Orphan", "parent_id": str(uuid4())},
            )

    @pytest.mark.asyncio
    async def test_update_changes_only_given_fields(self, store: GraphStore, engagement_id) -> None:
        node = await store.create_node(
            engagement_id,
            {"type": "assumption", "content": "Churn stays below 5%", "importance": "high"},
        )

        updated = await store.update_node(
            engagement_id,
            node.id,
            {"status": "validated", "confidence": 0.8},
        )

        assert updated.status == HypothesisStatus.VALIDATED
        assert updated.confidence == 0.8
        assert updated.content == "Churn stays below 5%"
        assert updated.importance.value == "high"

    @pytest.mark.asyncio
    async def test_node_cannot_be_its_own_parent(self, store: GraphStore, engagement_id) -> None:
        node = await store.create_node(engagement_id, {"type": "lever", "content": "Loop"})

        with pytest.raises(ValidationError):
            await store.update_node(engagement_id, node.id, {"parent_id": node.id})

    @pytest.mark.asyncio
    async def test_list_filters_by_type(self, store: GraphStore, engagement_id) -> None:
        await store.create_node(engagement_id, {"type": "thesis", "content": "Thesis"})
        await store.create_node(engagement_id, {"type": "risk", "content": "Risk A"})
        await store.create_node(engagement_id, {"type": "risk", "content": "Risk B"})
        await store.create_node(engagement_id, {"type": "lever", "content": "Lever"})

        risks = await store.list_nodes(engagement_id, node_type=HypothesisType.RISK)

        assert [n.content for n in risks] == ["Risk A", "Risk B"]
        assert await store.count_nodes(engagement_id) == 4


class TestEdges:
    """Tests for causal edges."""

    @pytest.mark.asyncio
    async def test_parallel_edges_allowed(self, session, engagement_id) -> None:
        store = GraphStore(session)
        a = await store.create_node(engagement_id, {"type": "lever", "content": "A"})
        b = await store.create_node(engagement_id, {"type": "risk", "content": "B"})

        await store.create_edge(
            engagement_id,
            EdgeCreate(source_id=a.id, target_id=b.id, relationship=RelationshipType.SUPPORTS),
        )
        await store.create_edge(
            engagement_id,
            EdgeCreate(source_id=a.id, target_id=b.id, relationship=RelationshipType.MITIGATES),
        )

        graph = await store.get_graph(engagement_id)
        assert len(graph.nodes) == 2
        assert {e.relationship for e in graph.edges} == {
            RelationshipType.SUPPORTS,
            RelationshipType.MITIGATES,
        }

    @pytest.mark.asyncio
    async def test_cycles_are_not_rejected(self, session, engagement_id) -> None:
        store = GraphStore(session)
        a = await store.create_node(engagement_id, {"type": "lever", "content": "A"})
        b = await store.create_node(engagement_id, {"type": "lever", "content": "B"})

        await store.create_edge(engagement_id, {"source_id": a.id, "target_id": b.id, "relationship": "leads_to"})
        await store.create_edge(engagement_id, {"source_id": b.id, "target_id": a.id, "relationship": "leads_to"})

        assert len(await store.list_edges(engagement_id)) == 2

    @pytest.mark.asyncio
    async def test_edge_to_foreign_node_is_not_found(self, session, engagement_id) -> None:
        store = GraphStore(session)
        a = await store.create_node(engagement_id, {"type": "lever", "content": "A"})
        other = await store.create_node(uuid4(), {"type": "lever", "content": "Elsewhere"})

        with pytest.raises(NotFoundError):
            await store.create_edge(
                engagement_id,
                {"source_id": a.id, "target_id": other.id, "relationship": "supports"},
            )

    @pytest.mark.asyncio
    async def test_delete_missing_edge(self, session, engagement_id) -> None:
        with pytest.raises(NotFoundError):
            await GraphStore(session).delete_edge(engagement_id, uuid4())


class TestDeleteNode:
    """Deleting a node keeps evidence, links and contradictions around."""

    @pytest.mark.asyncio
    async def test_delete_preserves_references(self, session, engagement_id) -> None:
        graph = GraphStore(session)
        evidence_store = EvidenceStore(session)
        contradictions = ContradictionStore(session)

        thesis = await graph.create_node(engagement_id, {"type": "thesis", "content": "Thesis"})
        doomed = await graph.create_node(
            engagement_id,
            {"type": "risk", "content": "Doomed", "parent_id": thesis.id},
        )
        child = await graph.create_node(
            engagement_id,
            {"type": "dependency", "content": "Child", "parent_id": doomed.id},
        )
        survivor = await graph.create_node(engagement_id, {"type": "lever", "content": "Survivor"})
        await graph.create_edge(
            engagement_id,
            {"source_id": doomed.id, "target_id": survivor.id, "relationship": "contradicts"},
        )
        kept_edge = await graph.create_edge(
            engagement_id,
            {"source_id": thesis.id, "target_id": survivor.id, "relationship": "depends_on"},
        )

        evidence = await evidence_store.create(
            engagement_id,
            EvidenceCreate(content="Filing note", source_type="filing"),
        )
        await evidence_store.link(engagement_id, evidence.id, doomed.id, 0.6)
        contradiction = await contradictions.create(
            engagement_id,
            ContradictionCreate(
                description="Conflicts with filing",
                severity="medium",
                hypothesis_id=doomed.id,
                evidence_id=evidence.id,
            ),
        )

        await graph.delete_node(engagement_id, doomed.id)

        with pytest.raises(NotFoundError):
            await graph.get_node(engagement_id, doomed.id)
        assert (await graph.get_node(engagement_id, child.id)).parent_id is None
        assert [e.id for e in await graph.list_edges(engagement_id)] == [kept_edge.id]

        kept = await evidence_store.get(engagement_id, evidence.id)
        assert [link.hypothesis_id for link in kept.linked_hypotheses] == [doomed.id]

        orphaned = await contradictions.get(engagement_id, contradiction.id)
        assert orphaned.hypothesis_id is None
        assert orphaned.evidence_id == evidence.id
