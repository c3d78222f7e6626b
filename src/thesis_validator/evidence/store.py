"""
Evidence store: evidence items, hypothesis links and aggregate statistics.
"""

import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from thesis_validator.db.models import (
    ContradictionModel,
    EvidenceHypothesisModel,
    EvidenceModel,
    HypothesisModel,
)
from thesis_validator.db.repository import BaseRepository
from thesis_validator.errors import NotFoundError, StorageError
from thesis_validator.evidence.schemas import (
    Evidence,
    EvidenceCreate,
    EvidenceFilters,
    EvidenceStats,
    EvidenceUpdate,
    HypothesisLink,
    Sentiment,
    SourceType,
)
from thesis_validator.validation import parse_input, require_unit_interval

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _to_evidence(model: EvidenceModel) -> Evidence:
    return Evidence(
        id=model.id,
        engagement_id=model.engagement_id,
        content=model.content,
        source_type=SourceType(model.source_type),
        sentiment=Sentiment(model.sentiment),
        credibility=model.credibility,
        source_url=model.source_url,
        source_title=model.source_title,
        source_author=model.source_author,
        source_publication_date=model.source_publication_date,
        document_id=model.document_id,
        provenance=model.provenance or {},
        metadata=model.metadata_ or {},
        retrieved_at=model.retrieved_at,
        created_at=model.created_at,
    )


class EvidenceStore(BaseRepository[EvidenceModel]):
    """Repository for evidence and evidence-hypothesis links."""

    entity_name = "evidence"

    @property
    def _model_class(self) -> type[EvidenceModel]:
        return EvidenceModel

    async def create(
        self,
        engagement_id: UUID,
        data: EvidenceCreate | Mapping[str, Any],
    ) -> Evidence:
        """
        Record a piece of evidence.

        Args:
            engagement_id: Owning engagement.
            data: Evidence fields; credibility defaults to 0.5.

        Returns:
            The stored evidence.
        """
        payload = parse_input(EvidenceCreate, data)
        model = EvidenceModel(
            engagement_id=engagement_id,
            content=payload.content,
            source_type=payload.source_type.value,
            sentiment=payload.sentiment.value,
            credibility=payload.credibility,
            source_url=payload.source_url,
            source_title=payload.source_title,
            source_author=payload.source_author,
            source_publication_date=payload.source_publication_date,
            document_id=payload.document_id,
            provenance=payload.provenance,
            metadata_=payload.metadata,
            retrieved_at=payload.retrieved_at,
        )
        model = await self._add(model)
        logger.debug(f"Recorded {payload.source_type.value} evidence {model.id}")
        return _to_evidence(model)

    async def get(self, engagement_id: UUID, evidence_id: UUID) -> Evidence:
        """Fetch one piece of evidence together with its hypothesis links."""
        model = await self._get_or_raise(engagement_id, evidence_id)
        evidence = _to_evidence(model)
        evidence.linked_hypotheses = await self.linked_hypotheses(evidence_id)
        return evidence

    async def update(
        self,
        engagement_id: UUID,
        evidence_id: UUID,
        data: EvidenceUpdate | Mapping[str, Any],
    ) -> Evidence:
        """Update content, credibility, sentiment or metadata."""
        payload = parse_input(EvidenceUpdate, data)
        model = await self._get_or_raise(engagement_id, evidence_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if "content" in changes:
            model.content = changes["content"]
        if "credibility" in changes:
            model.credibility = changes["credibility"]
        if "sentiment" in changes:
            model.sentiment = changes["sentiment"].value
        if "metadata" in changes:
            model.metadata_ = changes["metadata"]
        await self._session.flush()
        await self._session.refresh(model)
        return _to_evidence(model)

    async def delete(self, engagement_id: UUID, evidence_id: UUID) -> None:
        """Delete evidence, its links, and the evidence reference of contradictions."""
        model = await self._get_or_raise(engagement_id, evidence_id)
        await self._session.execute(
            delete(EvidenceHypothesisModel).where(
                EvidenceHypothesisModel.evidence_id == evidence_id
            )
        )
        await self._session.execute(
            update(ContradictionModel)
            .where(ContradictionModel.evidence_id == evidence_id)
            .values(evidence_id=None)
        )
        await self._remove(model)

    async def list_evidence(
        self,
        engagement_id: UUID,
        filters: EvidenceFilters | Mapping[str, Any] | None = None,
    ) -> list[Evidence]:
        """
        List evidence newest first.

        Args:
            engagement_id: Owning engagement.
            filters: Optional filters. See ``EvidenceFilters`` for how the
                hypothesis filter interacts with pagination.

        Returns:
            Matching evidence.
        """
        f = parse_input(EvidenceFilters, filters or {})
        stmt = select(EvidenceModel).where(EvidenceModel.engagement_id == engagement_id)
        if f.source_type is not None:
            stmt = stmt.where(EvidenceModel.source_type == f.source_type.value)
        if f.sentiment is not None:
            stmt = stmt.where(EvidenceModel.sentiment == f.sentiment.value)
        if f.min_credibility is not None:
            stmt = stmt.where(EvidenceModel.credibility >= f.min_credibility)
        if f.max_credibility is not None:
            stmt = stmt.where(EvidenceModel.credibility <= f.max_credibility)
        if f.document_id is not None:
            stmt = stmt.where(EvidenceModel.document_id == f.document_id)
        stmt = stmt.order_by(EvidenceModel.created_at.desc(), EvidenceModel.id.desc())
        if f.limit:
            stmt = stmt.limit(f.limit)
        if f.offset:
            stmt = stmt.offset(f.offset)

        result = await self._session.execute(stmt)
        items = [_to_evidence(m) for m in result.scalars().all()]

        if f.hypothesis_id is not None:
            linked = set(await self.linked_evidence_ids(f.hypothesis_id))
            items = [e for e in items if e.id in linked]
        return items

    async def link(
        self,
        engagement_id: UUID,
        evidence_id: UUID,
        hypothesis_id: UUID,
        relevance_score: float = 0.5,
    ) -> HypothesisLink:
        """
        Link evidence to a hypothesis, or update the relevance of an existing link.

        Relinking the same pair overwrites the score and never creates a
        second row.

        Raises:
            NotFoundError: If either side is not in the engagement.
            ValidationError: If the score is outside [0, 1].
        """
        require_unit_interval("relevance_score", relevance_score)
        await self._get_or_raise(engagement_id, evidence_id)
        await self._require_hypothesis(engagement_id, hypothesis_id)

        dialect = self._session.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is None:
            raise StorageError(f"Link upsert is not supported on dialect '{dialect}'")
        table = EvidenceHypothesisModel.__table__
        stmt = insert_fn(table).values(
            evidence_id=evidence_id,
            hypothesis_id=hypothesis_id,
            relevance_score=relevance_score,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.evidence_id, table.c.hypothesis_id],
            set_={"relevance_score": stmt.excluded.relevance_score},
        )
        await self._session.execute(stmt)
        return HypothesisLink(hypothesis_id=hypothesis_id, relevance_score=relevance_score)

    async def unlink(self, engagement_id: UUID, evidence_id: UUID, hypothesis_id: UUID) -> bool:
        """Remove a link. Returns whether one existed."""
        await self._get_or_raise(engagement_id, evidence_id)
        result = await self._session.execute(
            delete(EvidenceHypothesisModel).where(
                EvidenceHypothesisModel.evidence_id == evidence_id,
                EvidenceHypothesisModel.hypothesis_id == hypothesis_id,
            )
        )
        return result.rowcount > 0

    async def linked_hypotheses(self, evidence_id: UUID) -> list[HypothesisLink]:
        stmt = (
            select(EvidenceHypothesisModel)
            .where(EvidenceHypothesisModel.evidence_id == evidence_id)
            .order_by(EvidenceHypothesisModel.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [
            HypothesisLink(hypothesis_id=m.hypothesis_id, relevance_score=m.relevance_score)
            for m in result.scalars().all()
        ]

    async def linked_evidence_ids(self, hypothesis_id: UUID) -> list[UUID]:
        """Ids of all evidence linked to a hypothesis."""
        stmt = select(EvidenceHypothesisModel.evidence_id).where(
            EvidenceHypothesisModel.hypothesis_id == hypothesis_id
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def stats(self, engagement_id: UUID) -> EvidenceStats:
        """
        Aggregate counts, average credibility and hypothesis coverage.

        Coverage counts only hypotheses that still exist in the engagement,
        so orphaned links do not inflate it. It is 0 when the engagement has
        no hypotheses.
        """
        scoped = EvidenceModel.engagement_id == engagement_id

        totals = await self._session.execute(
            select(func.count(EvidenceModel.id), func.avg(EvidenceModel.credibility)).where(scoped)
        )
        total_count, avg_credibility = totals.one()

        by_source = await self._session.execute(
            select(EvidenceModel.source_type, func.count())
            .where(scoped)
            .group_by(EvidenceModel.source_type)
        )
        by_sentiment = await self._session.execute(
            select(EvidenceModel.sentiment, func.count())
            .where(scoped)
            .group_by(EvidenceModel.sentiment)
        )

        total_hypotheses = (
            await self._session.execute(
                select(func.count())
                .select_from(HypothesisModel)
                .where(HypothesisModel.engagement_id == engagement_id)
            )
        ).scalar_one()
        linked_hypotheses = (
            await self._session.execute(
                select(func.count(distinct(EvidenceHypothesisModel.hypothesis_id)))
                .join(EvidenceModel, EvidenceModel.id == EvidenceHypothesisModel.evidence_id)
                .join(HypothesisModel, HypothesisModel.id == EvidenceHypothesisModel.hypothesis_id)
                .where(scoped, HypothesisModel.engagement_id == engagement_id)
            )
        ).scalar_one()

        return EvidenceStats(
            total_count=int(total_count or 0),
            by_source_type={k: int(v) for k, v in by_source.all()},
            by_sentiment={k: int(v) for k, v in by_sentiment.all()},
            average_credibility=float(avg_credibility or 0.0),
            hypothesis_coverage=(
                linked_hypotheses / total_hypotheses if total_hypotheses > 0 else 0.0
            ),
        )

    async def _require_hypothesis(self, engagement_id: UUID, hypothesis_id: UUID) -> None:
        stmt = select(HypothesisModel.id).where(
            HypothesisModel.id == hypothesis_id,
            HypothesisModel.engagement_id == engagement_id,
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            raise NotFoundError("hypothesis", hypothesis_id, engagement_id)
