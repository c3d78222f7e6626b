"""
Tests for the contradiction resolution state machine and store.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from thesis_validator.contradictions import (
    ContradictionStatus,
    ContradictionStore,
    can_transition,
    is_terminal,
)
from thesis_validator.db.models import ContradictionModel
from thesis_validator.errors import AlreadyResolvedError, ConflictError, NotFoundError, ValidationError


def test_transition_table() -> None:
    assert can_transition("unresolved", "critical")
    assert can_transition("critical", "explained")
    assert not can_transition("critical", "unresolved")
    assert not can_transition("explained", "dismissed")
    assert is_terminal("dismissed")
    assert not is_terminal("critical")


class TestResolution:
    """Tests for resolve and mark_critical."""

    @pytest.mark.asyncio
    async def test_resolve_from_unresolved(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "Margins vs. filing", "severity": "medium"})

        resolved = await store.resolve(
            engagement_id,
            c.id,
            {"status": "explained", "resolution_notes": "One-off charge", "resolved_by": "analyst@fund"},
        )

        assert resolved.status == ContradictionStatus.EXPLAINED
        assert resolved.resolution_notes == "One-off charge"
        assert resolved.resolved_by == "analyst@fund"
        assert resolved.resolved_at is not None

    @pytest.mark.asyncio
    async def test_resolve_from_critical(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "Churn", "severity": "high"})

        await store.mark_critical(engagement_id, c.id)
        resolved = await store.resolve(
            engagement_id,
            c.id,
            {"status": "dismissed", "resolution_notes": "Stale data", "resolved_by": "vp"},
        )

        assert resolved.status == ContradictionStatus.DISMISSED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["explained", "dismissed"])
    async def test_terminal_state_is_final(self, session, engagement_id, terminal) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "Capex", "severity": "low"})
        await store.resolve(
            engagement_id,
            c.id,
            {"status": terminal, "resolution_notes": "first", "resolved_by": "a"},
        )

        with pytest.raises(AlreadyResolvedError) as exc_info:
            await store.resolve(
                engagement_id,
                c.id,
                {"status": "explained", "resolution_notes": "second", "resolved_by": "b"},
            )
        assert isinstance(exc_info.value, ConflictError)
        with pytest.raises(ConflictError):
            await store.mark_critical(engagement_id, c.id)

        after = await store.get(engagement_id, c.id)
        assert after.status.value == terminal
        assert after.resolution_notes == "first"
        assert after.resolved_by == "a"

    @pytest.mark.asyncio
    async def test_mark_critical_is_idempotent(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "Debt covenants", "severity": "high"})

        first = await store.mark_critical(engagement_id, c.id)
        second = await store.mark_critical(engagement_id, c.id)

        assert first.status == second.status == ContradictionStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_resolve_requires_resolver(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "x", "severity": "low"})

        with pytest.raises(ValidationError):
            await store.resolve(engagement_id, c.id, {"status": "explained", "resolution_notes": "n", "resolved_by": ""})
        with pytest.raises(ValidationError):
            await store.resolve(engagement_id, c.id, {"status": "critical", "resolution_notes": "n", "resolved_by": "a"})

    @pytest.mark.asyncio
    async def test_resolve_in_other_engagement(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "x", "severity": "low"})

        with pytest.raises(NotFoundError):
            await store.resolve(uuid4(), c.id, {"status": "explained", "resolution_notes": "n", "resolved_by": "a"})

    @pytest.mark.asyncio
    async def test_update_does_not_touch_status(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        c = await store.create(engagement_id, {"description": "x", "severity": "low"})

        updated = await store.update(engagement_id, c.id, {"severity": "high", "bear_case_theme": "leverage"})

        assert updated.severity.value == "high"
        assert updated.bear_case_theme == "leverage"
        assert updated.status == ContradictionStatus.UNRESOLVED


class TestListing:
    @pytest.mark.asyncio
    async def test_severity_then_recency(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        base = datetime(2024, 6, 1, tzinfo=timezone.utc)
        specs = [
            ("old medium", "medium", 0),
            ("low", "low", 5),
            ("high", "high", 1),
            ("new medium", "medium", 3),
        ]
        for description, severity, minute in specs:
            c = await store.create(engagement_id, {"description": description, "severity": severity})
            await session.execute(
                update(ContradictionModel)
                .where(ContradictionModel.id == c.id)
                .values(found_at=base + timedelta(minutes=minute))
            )

        listed = await store.list_contradictions(engagement_id)

        assert [c.description for c in listed] == ["high", "new medium", "old medium", "low"]
        assert [c.severity.value for c in listed] == ["high", "medium", "medium", "low"]

    @pytest.mark.asyncio
    async def test_filters(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        a = await store.create(engagement_id, {"description": "a", "severity": "high"})
        await store.create(engagement_id, {"description": "b", "severity": "low"})
        await store.mark_critical(engagement_id, a.id)

        critical = await store.list_contradictions(engagement_id, {"status": "critical"})
        low = await store.list_contradictions(engagement_id, {"severity": "low"})

        assert [c.description for c in critical] == ["a"]
        assert [c.description for c in low] == ["b"]


class TestStats:
    @pytest.mark.asyncio
    async def test_no_contradictions_means_fully_resolved(self, session, engagement_id) -> None:
        stats = await ContradictionStore(session).stats(engagement_id)

        assert stats.total_count == 0
        assert stats.resolution_rate == 1.0

    @pytest.mark.asyncio
    async def test_counts(self, session, engagement_id) -> None:
        store = ContradictionStore(session)
        a = await store.create(engagement_id, {"description": "a", "severity": "high"})
        b = await store.create(engagement_id, {"description": "b", "severity": "medium"})
        c = await store.create(engagement_id, {"description": "c", "severity": "medium"})
        await store.create(engagement_id, {"description": "d", "severity": "low"})
        await store.mark_critical(engagement_id, a.id)
        await store.resolve(engagement_id, b.id, {"status": "explained", "resolution_notes": "", "resolved_by": "x"})
        await store.resolve(engagement_id, c.id, {"status": "dismissed", "resolution_notes": "", "resolved_by": "x"})

        stats = await store.stats(engagement_id)

        assert stats.total_count == 4
        assert stats.by_severity == {"low": 1, "medium": 2, "high": 1}
        assert stats.unresolved_count == 1
        assert stats.critical_count == 1
        assert stats.resolution_rate == pytest.approx(0.5)
