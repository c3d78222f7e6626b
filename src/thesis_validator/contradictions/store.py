"""
Contradiction store.

Status changes go through ``resolve`` and ``mark_critical`` only. Both are
compare-and-swap updates, so a contradiction is resolved at most once even
when two reviewers race.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select

from thesis_validator.contradictions.schemas import (
    SEVERITY_RANK,
    Contradiction,
    ContradictionCreate,
    ContradictionFilters,
    ContradictionStats,
    ContradictionUpdate,
    ResolveRequest,
    Severity,
)
from thesis_validator.contradictions.state_machine import (
    ContradictionStatus,
    is_terminal,
    sources_for,
)
from thesis_validator.db.models import ContradictionModel, EvidenceModel, HypothesisModel
from thesis_validator.db.repository import BaseRepository
from thesis_validator.errors import AlreadyResolvedError, InvalidTransitionError, NotFoundError
from thesis_validator.validation import parse_input

logger = logging.getLogger(__name__)

_SEVERITY_ORDER = case(
    {severity.value: rank for severity, rank in SEVERITY_RANK.items()},
    value=ContradictionModel.severity,
    else_=len(SEVERITY_RANK) + 1,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _to_contradiction(model: ContradictionModel) -> Contradiction:
    return Contradiction(
        id=model.id,
        engagement_id=model.engagement_id,
        hypothesis_id=model.hypothesis_id,
        evidence_id=model.evidence_id,
        description=model.description,
        severity=Severity(model.severity),
        status=ContradictionStatus(model.status),
        bear_case_theme=model.bear_case_theme,
        resolution_notes=model.resolution_notes,
        resolved_by=model.resolved_by,
        metadata=model.metadata_ or {},
        found_at=model.found_at,
        resolved_at=model.resolved_at,
    )


class ContradictionStore(BaseRepository[ContradictionModel]):
    """Repository for contradictions and their resolution lifecycle."""

    entity_name = "contradiction"

    @property
    def _model_class(self) -> type[ContradictionModel]:
        return ContradictionModel

    async def create(
        self,
        engagement_id: UUID,
        data: ContradictionCreate | Mapping[str, Any],
    ) -> Contradiction:
        """
        Flag a new contradiction in ``unresolved`` status.

        Raises:
            NotFoundError: If a referenced hypothesis or evidence is not in
                the engagement.
        """
        payload = parse_input(ContradictionCreate, data)
        if payload.hypothesis_id is not None:
            await self._require(HypothesisModel, "hypothesis", engagement_id, payload.hypothesis_id)
        if payload.evidence_id is not None:
            await self._require(EvidenceModel, "evidence", engagement_id, payload.evidence_id)

        model = ContradictionModel(
            engagement_id=engagement_id,
            hypothesis_id=payload.hypothesis_id,
            evidence_id=payload.evidence_id,
            description=payload.description,
            severity=payload.severity.value,
            status=ContradictionStatus.UNRESOLVED.value,
            bear_case_theme=payload.bear_case_theme,
            metadata_=payload.metadata,
        )
        model = await self._add(model)
        logger.info(f"Flagged {payload.severity.value} contradiction {model.id}")
        return _to_contradiction(model)

    async def get(self, engagement_id: UUID, contradiction_id: UUID) -> Contradiction:
        return _to_contradiction(await self._get_or_raise(engagement_id, contradiction_id))

    async def update(
        self,
        engagement_id: UUID,
        contradiction_id: UUID,
        data: ContradictionUpdate | Mapping[str, Any],
    ) -> Contradiction:
        """Update descriptive fields. The status is never touched here."""
        payload = parse_input(ContradictionUpdate, data)
        model = await self._get_or_raise(engagement_id, contradiction_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("description") is not None:
            model.description = changes["description"]
        if changes.get("severity") is not None:
            model.severity = changes["severity"].value
        if "bear_case_theme" in changes:
            model.bear_case_theme = changes["bear_case_theme"]
        if changes.get("metadata") is not None:
            model.metadata_ = changes["metadata"]
        await self._session.flush()
        await self._session.refresh(model)
        return _to_contradiction(model)

    async def delete(self, engagement_id: UUID, contradiction_id: UUID) -> None:
        model = await self._get_or_raise(engagement_id, contradiction_id)
        await self._remove(model)

    async def list_contradictions(
        self,
        engagement_id: UUID,
        filters: ContradictionFilters | Mapping[str, Any] | None = None,
    ) -> list[Contradiction]:
        """
        List contradictions, most severe first and newest first within a severity.

        Args:
            engagement_id: Owning engagement.
            filters: Optional severity/status/hypothesis filters and paging.

        Returns:
            Ordered contradictions.
        """
        f = parse_input(ContradictionFilters, filters or {})
        stmt = select(ContradictionModel).where(ContradictionModel.engagement_id == engagement_id)
        if f.severity is not None:
            stmt = stmt.where(ContradictionModel.severity == f.severity.value)
        if f.status is not None:
            stmt = stmt.where(ContradictionModel.status == f.status.value)
        if f.hypothesis_id is not None:
            stmt = stmt.where(ContradictionModel.hypothesis_id == f.hypothesis_id)
        stmt = stmt.order_by(
            _SEVERITY_ORDER,
            ContradictionModel.found_at.desc(),
            ContradictionModel.id.desc(),
        )
        if f.limit:
            stmt = stmt.limit(f.limit)
        if f.offset:
            stmt = stmt.offset(f.offset)
        result = await self._session.execute(stmt)
        return [_to_contradiction(m) for m in result.scalars().all()]

    async def resolve(
        self,
        engagement_id: UUID,
        contradiction_id: UUID,
        data: ResolveRequest | Mapping[str, Any],
    ) -> Contradiction:
        """
        Settle a contradiction as ``explained`` or ``dismissed``.

        Legal from ``unresolved`` and ``critical`` only.

        Raises:
            NotFoundError: If the contradiction is not in the engagement.
            AlreadyResolvedError: If it is already explained or dismissed;
                the stored row is left unchanged.
        """
        payload = parse_input(ResolveRequest, data)
        model = await self._compare_and_set_status(
            engagement_id,
            contradiction_id,
            allowed_from=sources_for(payload.status),
            target=payload.status,
            values={
                "resolution_notes": payload.resolution_notes,
                "resolved_by": payload.resolved_by,
                "resolved_at": _now_utc(),
            },
        )
        return _to_contradiction(model)

    async def mark_critical(self, engagement_id: UUID, contradiction_id: UUID) -> Contradiction:
        """
        Escalate an unresolved contradiction to ``critical``.

        Marking an already-critical contradiction is a no-op.

        Raises:
            AlreadyResolvedError: If it is already explained or dismissed.
        """
        current = await self._get_or_raise(engagement_id, contradiction_id)
        if current.status == ContradictionStatus.CRITICAL.value:
            return _to_contradiction(current)
        model = await self._compare_and_set_status(
            engagement_id,
            contradiction_id,
            allowed_from=sources_for(ContradictionStatus.CRITICAL),
            target=ContradictionStatus.CRITICAL.value,
        )
        return _to_contradiction(model)

    async def stats(self, engagement_id: UUID) -> ContradictionStats:
        """Counts by severity and status plus the resolution rate."""
        scoped = ContradictionModel.engagement_id == engagement_id
        by_severity = dict(
            (
                await self._session.execute(
                    select(ContradictionModel.severity, func.count())
                    .where(scoped)
                    .group_by(ContradictionModel.severity)
                )
            ).all()
        )
        by_status = dict(
            (
                await self._session.execute(
                    select(ContradictionModel.status, func.count())
                    .where(scoped)
                    .group_by(ContradictionModel.status)
                )
            ).all()
        )

        severity_counts = {s.value: int(by_severity.get(s.value, 0)) for s in Severity}
        status_counts = {s.value: int(by_status.get(s.value, 0)) for s in ContradictionStatus}
        total = sum(status_counts.values())
        resolved = (
            status_counts[ContradictionStatus.EXPLAINED.value]
            + status_counts[ContradictionStatus.DISMISSED.value]
        )
        return ContradictionStats(
            total_count=total,
            by_severity=severity_counts,
            by_status=status_counts,
            unresolved_count=status_counts[ContradictionStatus.UNRESOLVED.value],
            critical_count=status_counts[ContradictionStatus.CRITICAL.value],
            resolution_rate=resolved / total if total > 0 else 1.0,
        )

    def _transition_error(self, entity_id: UUID, current: str, target: str) -> Exception:
        if is_terminal(current):
            return AlreadyResolvedError(entity_id, current, target)
        return InvalidTransitionError(self.entity_name, entity_id, current, target)

    async def _require(self, model, entity: str, engagement_id: UUID, entity_id: UUID) -> None:
        stmt = select(model.id).where(model.id == entity_id, model.engagement_id == engagement_id)
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            raise NotFoundError(entity, entity_id, engagement_id)
