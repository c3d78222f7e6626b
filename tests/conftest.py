"""
Shared fixtures: a temporary SQLite database and a scripted reasoning provider.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from thesis_validator.config import Settings
from thesis_validator.db.session import create_engine, create_session_factory, init_db
from thesis_validator.providers.reasoning import ReasoningError, ReasoningProvider


DEFAULT_CANDIDATES: dict[str, list[dict[str, Any]]] = {
    "hypothesis": [
        {
            "type": "lever",
            "content": "Pricing power lifts gross margin by 300bps",
            "confidence": 0.6,
            "importance": "high",
            "testability": "easy",
        },
        {
            "type": "risk",
            "content": "Revenue is concentrated in three customers",
            "confidence": 0.4,
            "importance": "critical",
        },
        {"type": "assumption", "content": "The core market grows 10% a year"},
    ],
    "evidence": [
        {
            "content": "Q3 filing shows gross margin up 280bps year over year",
            "source_type": "filing",
            "sentiment": "supporting",
            "credibility": 0.9,
            "hypothesis_index": 0,
            "relevance": 0.8,
        },
        {
            "content": "Largest customer accounts for 41% of revenue",
            "source_type": "document",
            "sentiment": "contradicting",
            "credibility": 0.7,
            "hypothesis_index": 1,
            "relevance": 0.9,
        },
    ],
    "contradiction": [
        {
            "description": "Customer concentration undermines the growth case",
            "severity": "high",
            "hypothesis_index": 1,
            "evidence_index": 1,
            "bear_case_theme": "concentration",
        }
    ],
    "scenario": [
        {"name": "Recession", "description": "Demand falls 20%", "outcome": "Margins compress", "impact_score": 0.7},
        {"name": "Price war", "description": "Competitor cuts prices", "outcome": "Share loss", "impact_score": 0.6},
        {"name": "Key customer churns", "description": "Top client leaves", "outcome": "Revenue -40%", "impact_score": 0.9},
    ],
    "vulnerability": [
        {"area": "pricing", "description": "Pricing power is untested in a downturn", "severity": "high", "mitigation": "Model price elasticity"},
        {"area": "customers", "description": "Revenue depends on one client", "severity": "medium", "mitigation": "Diligence contract terms"},
        {"area": "execution", "description": "Integration plan is thin", "severity": "low", "mitigation": "Hire an integration lead"},
    ],
}


class FakeReasoningProvider(ReasoningProvider):
    """Reasoning provider that replays scripted candidates by kind."""

    def __init__(
        self,
        candidates: dict[str, list[dict[str, Any]]] | None = None,
        fail_on: set[str] | None = None,
        hang_on: set[str] | None = None,
    ) -> None:
        self.candidates = dict(DEFAULT_CANDIDATES if candidates is None else candidates)
        self.fail_on = fail_on or set()
        self.hang_on = hang_on or set()
        self.before_call: Callable[[str], Awaitable[None]] | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def generate(self, prompt: str, context: dict[str, Any]) -> list[dict[str, Any]]:
        kind = context.get("kind", "")
        self.calls.append((kind, context))
        if self.before_call is not None:
            await self.before_call(kind)
        if kind in self.hang_on:
            await asyncio.sleep(3600)
        if kind in self.fail_on:
            raise ReasoningError(f"{kind} backend unavailable")
        return [dict(c) for c in self.candidates.get(kind, [])]

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]


@pytest.fixture
def engagement_id() -> UUID:
    return uuid4()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'thesis.db'}",
        reasoning_timeout=0.5,
        market_data_timeout=0.5,
        progress_buffer_size=64,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def reasoning() -> FakeReasoningProvider:
    return FakeReasoningProvider()
