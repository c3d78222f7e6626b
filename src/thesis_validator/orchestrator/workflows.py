"""
Phase-by-phase job procedures.

A research job runs hypothesis generation, evidence gathering, contradiction
detection and report generation. A stress-test job runs scenario generation,
vulnerability synthesis and scoring. Each phase commits its own writes, calls
the reasoning provider under a timeout and reports progress milestones.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesis_validator.config import Settings
from thesis_validator.contradictions.schemas import ContradictionCreate, ContradictionFilters
from thesis_validator.contradictions.store import ContradictionStore
from thesis_validator.db.session import UnitOfWork
from thesis_validator.errors import ProviderError, ValidationError
from thesis_validator.evidence.schemas import EvidenceCreate
from thesis_validator.evidence.store import EvidenceStore
from thesis_validator.graph.schemas import Hypothesis, HypothesisCreate, HypothesisType
from thesis_validator.graph.store import GraphStore
from thesis_validator.orchestrator.progress import JobReporter
from thesis_validator.orchestrator.schemas import (
    ResearchConfig,
    ResearchDepth,
    ResearchJob,
    StressTestConfig,
)
from thesis_validator.providers.market_data import MarketDataProvider, gather_market_evidence
from thesis_validator.providers.reasoning import ReasoningProvider
from thesis_validator.stress_tests.schemas import Scenario, Vulnerability
from thesis_validator.stress_tests.scoring import build_results, scenario_count
from thesis_validator.stress_tests.store import StressTestStore

logger = logging.getLogger(__name__)

# Hypotheses requested from the reasoning provider per research depth
DEPTH_HYPOTHESES = {
    ResearchDepth.QUICK: 3,
    ResearchDepth.STANDARD: 6,
    ResearchDepth.DEEP: 10,
}

MARKET_EVIDENCE_RELEVANCE = 0.5


class WorkflowOutcome(BaseModel):
    """What a finished workflow hands back to the orchestrator."""

    result: dict[str, Any] = Field(default_factory=dict)
    partial_error: str | None = Field(
        default=None,
        description="Set when a non-essential step failed; the job finishes as partial",
    )


def _coerce(schema: type[BaseModel], candidate: dict[str, Any], kind: str) -> BaseModel | None:
    """Validate one provider candidate, skipping malformed ones."""
    try:
        return schema.model_validate(candidate)
    except PydanticValidationError as e:
        logger.warning(f"Skipping malformed {kind} candidate: {e.error_count()} error(s)")
        return None


def _pick(items: list[Any], index: Any) -> Any | None:
    """Resolve a candidate's positional reference, tolerating junk."""
    if isinstance(index, bool):
        return None
    try:
        position = int(index)
    except (TypeError, ValueError):
        return None
    if 0 <= position < len(items):
        return items[position]
    return None


class Workflow(ABC):
    """Base class for job procedures."""

    #: Phase names in execution order
    phases: tuple[str, ...] = ()

    def __init__(
        self,
        reporter: JobReporter,
        session_factory: async_sessionmaker[AsyncSession],
        reasoning: ReasoningProvider,
        settings: Settings,
    ) -> None:
        self._reporter = reporter
        self._session_factory = session_factory
        self._reasoning = reasoning
        self._settings = settings

    @property
    def job(self) -> ResearchJob:
        return self._reporter.job

    @property
    def engagement_id(self) -> UUID:
        return self._reporter.job.engagement_id

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self._session_factory)

    async def _generate(self, phase: str, prompt: str, context: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Call the reasoning provider for one phase.

        Raises:
            ProviderError: If the call fails or exceeds ``reasoning_timeout``.
        """
        timeout = self._settings.reasoning_timeout
        try:
            candidates = await asyncio.wait_for(
                self._reasoning.generate(prompt, context),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(phase, f"reasoning provider timed out after {timeout}s") from e
        except Exception as e:
            raise ProviderError(phase, str(e) or type(e).__name__) from e
        if not isinstance(candidates, list):
            raise ProviderError(phase, f"provider returned a non-list ({type(candidates).__name__})")
        logger.debug(f"Job {self.job.id} {phase}: {len(candidates)} candidate(s)")
        return candidates

    async def _begin_phase(self, phase: str) -> None:
        self._reporter.checkpoint(phase)
        logger.info(f"Job {self.job.id} starting phase {phase}")

    @abstractmethod
    async def run(self) -> WorkflowOutcome:
        """Run every phase and return the job result."""
        ...


class ResearchWorkflow(Workflow):
    """Builds out the hypothesis graph, evidence and contradictions for a thesis."""

    phases = (
        "hypothesis_generation",
        "evidence_gathering",
        "contradiction_detection",
        "report_generation",
    )

    def __init__(
        self,
        reporter: JobReporter,
        session_factory: async_sessionmaker[AsyncSession],
        reasoning: ReasoningProvider,
        settings: Settings,
        market_data: MarketDataProvider | None = None,
    ) -> None:
        super().__init__(reporter, session_factory, reasoning, settings)
        self._market_data = market_data
        self._config = ResearchConfig.model_validate(reporter.job.config)
        self._thesis: Hypothesis | None = None
        self._hypotheses: list[Hypothesis] = []
        self._evidence_ids: list[UUID] = []
        self._evidence_context: list[dict[str, Any]] = []
        self._contradiction_ids: list[UUID] = []
        self._partial_error: str | None = None

    async def run(self) -> WorkflowOutcome:
        await self._hypothesis_generation()
        await self._evidence_gathering()
        await self._contradiction_detection()
        report = await self._report_generation()
        return WorkflowOutcome(result=report, partial_error=self._partial_error)

    def _hypothesis_context(self) -> list[dict[str, Any]]:
        return [
            {"index": i, "type": h.type.value, "content": h.content, "confidence": h.confidence}
            for i, h in enumerate(self._hypotheses)
        ]

    async def _hypothesis_generation(self) -> None:
        phase = "hypothesis_generation"
        await self._begin_phase(phase)
        await self._reporter.progress_to(5, phase, "Preparing thesis")

        async with self._uow() as uow:
            graph = GraphStore(uow.session)
            thesis = await graph.get_thesis(self.engagement_id)
            if thesis is None:
                thesis = await graph.create_node(
                    self.engagement_id,
                    HypothesisCreate(type=HypothesisType.THESIS, content=self._config.thesis),
                )
        self._thesis = thesis

        wanted = DEPTH_HYPOTHESES[self._config.depth]
        candidates = await self._generate(
            phase,
            "Decompose the investment thesis into testable hypotheses: value-creation "
            "levers, key assumptions, risks and dependencies.",
            {
                "kind": "hypothesis",
                "thesis": self._config.thesis,
                "depth": self._config.depth.value,
                "focus_areas": self._config.focus_areas,
                "include_comparables": self._config.include_comparables,
                "count": wanted,
            },
        )
        await self._reporter.progress_to(15, phase, f"Received {len(candidates)} candidate(s)")

        created: list[Hypothesis] = []
        async with self._uow() as uow:
            graph = GraphStore(uow.session)
            for candidate in candidates[:wanted]:
                payload = _coerce(
                    HypothesisCreate,
                    {**candidate, "parent_id": thesis.id, "metadata": {"job_id": str(self.job.id)}},
                    "hypothesis",
                )
                if payload is None:
                    continue
                if payload.type == HypothesisType.THESIS:
                    logger.warning("Skipping hypothesis candidate typed as a second thesis")
                    continue
                created.append(await graph.create_node(self.engagement_id, payload))
            self._hypotheses = await graph.list_nodes(self.engagement_id)

        self._hypotheses = [h for h in self._hypotheses if h.type != HypothesisType.THESIS]
        await self._reporter.phase_completed(phase, 25, hypotheses_created=len(created))

    async def _evidence_gathering(self) -> None:
        phase = "evidence_gathering"
        await self._begin_phase(phase)

        candidates = await self._generate(
            phase,
            "Gather evidence bearing on each hypothesis. Prefer primary sources and "
            "state the sentiment of each observation toward the hypothesis it tests.",
            {
                "kind": "evidence",
                "thesis": self._config.thesis,
                "hypotheses": self._hypothesis_context(),
                "count": self._config.max_sources,
            },
        )
        await self._reporter.progress_to(35, phase, f"Received {len(candidates)} candidate(s)")

        async with self._uow() as uow:
            store = EvidenceStore(uow.session)
            for candidate in candidates[: self._config.max_sources]:
                payload = _coerce(
                    EvidenceCreate,
                    {**candidate, "provenance": {"job_id": str(self.job.id), "phase": phase}},
                    "evidence",
                )
                if payload is None:
                    continue
                evidence = await store.create(self.engagement_id, payload)
                self._evidence_ids.append(evidence.id)
                self._evidence_context.append(
                    {
                        "index": len(self._evidence_context),
                        "content": evidence.content,
                        "sentiment": evidence.sentiment.value,
                        "credibility": evidence.credibility,
                    }
                )
                target = _pick(self._hypotheses, candidate.get("hypothesis_index"))
                if target is None:
                    continue
                try:
                    await store.link(
                        self.engagement_id,
                        evidence.id,
                        target.id,
                        float(candidate.get("relevance", 0.5)),
                    )
                except (TypeError, ValueError):
                    logger.warning(f"Skipping link with bad relevance for evidence {evidence.id}")
        await self._reporter.progress_to(45, phase, f"Stored {len(self._evidence_ids)} evidence item(s)")

        market_count = await self._enrich_with_market_data(phase)
        await self._reporter.phase_completed(
            phase,
            55,
            evidence_created=len(self._evidence_ids),
            market_evidence=market_count,
        )

    async def _enrich_with_market_data(self, phase: str) -> int:
        """
        Add market data evidence for the configured ticker.

        Failures here are not fatal; they mark the job result as partial.
        """
        ticker = self._config.ticker
        if not ticker:
            return 0
        if self._market_data is None:
            logger.warning(f"Ticker {ticker} configured but no market data provider available")
            return 0

        timeout = self._settings.market_data_timeout
        try:
            bundle = await asyncio.wait_for(
                gather_market_evidence(self._market_data, ticker),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._partial_error = f"{phase}: market data timed out after {timeout}s"
            logger.warning(f"Job {self.job.id}: {self._partial_error}")
            return 0
        except Exception as e:
            self._partial_error = f"{phase}: market data failed: {e}"
            logger.warning(f"Job {self.job.id}: {self._partial_error}")
            return 0

        if bundle.failures:
            failed = ", ".join(sorted(bundle.failures))
            self._partial_error = f"{phase}: market data unavailable for {failed}"
            logger.warning(f"Job {self.job.id}: {self._partial_error}")

        async with self._uow() as uow:
            store = EvidenceStore(uow.session)
            for result in bundle.results:
                evidence = await store.create(self.engagement_id, result.as_evidence())
                self._evidence_ids.append(evidence.id)
                self._evidence_context.append(
                    {
                        "index": len(self._evidence_context),
                        "content": evidence.content,
                        "sentiment": evidence.sentiment.value,
                        "credibility": evidence.credibility,
                    }
                )
                if self._thesis is not None:
                    await store.link(
                        self.engagement_id,
                        evidence.id,
                        self._thesis.id,
                        MARKET_EVIDENCE_RELEVANCE,
                    )
        return len(bundle.results)

    async def _contradiction_detection(self) -> None:
        phase = "contradiction_detection"
        await self._begin_phase(phase)

        candidates = await self._generate(
            phase,
            "Identify where the gathered evidence conflicts with the hypotheses. "
            "Tag each conflict with a short bear-case theme.",
            {
                "kind": "contradiction",
                "thesis": self._config.thesis,
                "hypotheses": self._hypothesis_context(),
                "evidence": self._evidence_context,
            },
        )
        await self._reporter.progress_to(65, phase, f"Received {len(candidates)} candidate(s)")

        async with self._uow() as uow:
            store = ContradictionStore(uow.session)
            for candidate in candidates:
                hypothesis = _pick(self._hypotheses, candidate.get("hypothesis_index"))
                evidence_id = _pick(self._evidence_ids, candidate.get("evidence_index"))
                payload = _coerce(
                    ContradictionCreate,
                    {
                        **candidate,
                        "hypothesis_id": hypothesis.id if hypothesis else None,
                        "evidence_id": evidence_id,
                        "metadata": {"job_id": str(self.job.id)},
                    },
                    "contradiction",
                )
                if payload is None:
                    continue
                contradiction = await store.create(self.engagement_id, payload)
                self._contradiction_ids.append(contradiction.id)

        await self._reporter.phase_completed(
            phase,
            80,
            contradictions_found=len(self._contradiction_ids),
        )

    async def _report_generation(self) -> dict[str, Any]:
        phase = "report_generation"
        await self._begin_phase(phase)

        async with self._uow() as uow:
            evidence_stats = await EvidenceStore(uow.session).stats(self.engagement_id)
            contradictions = ContradictionStore(uow.session)
            contradiction_stats = await contradictions.stats(self.engagement_id)
            top = await contradictions.list_contradictions(
                self.engagement_id,
                ContradictionFilters(limit=5),
            )
        await self._reporter.progress_to(90, phase, "Compiling report")

        report = {
            "thesis": self._config.thesis,
            "thesis_id": str(self._thesis.id) if self._thesis else None,
            "hypotheses_count": len(self._hypotheses),
            "evidence_created": len(self._evidence_ids),
            "contradictions_found": len(self._contradiction_ids),
            "evidence": evidence_stats.model_dump(mode="json"),
            "contradictions": contradiction_stats.model_dump(mode="json"),
            "key_contradictions": [
                {"id": str(c.id), "severity": c.severity.value, "description": c.description}
                for c in top
            ],
            "summary": (
                f"{len(self._hypotheses)} hypotheses tested against "
                f"{evidence_stats.total_count} evidence items "
                f"({evidence_stats.hypothesis_coverage:.0%} coverage); "
                f"{contradiction_stats.unresolved_count} unresolved contradiction(s)."
            ),
        }
        await self._reporter.phase_completed(phase, 100)
        return report


class StressTestWorkflow(Workflow):
    """Runs adversarial scenarios against the thesis and scores its vulnerabilities."""

    phases = ("scenario_generation", "vulnerability_synthesis", "scoring")

    def __init__(
        self,
        reporter: JobReporter,
        session_factory: async_sessionmaker[AsyncSession],
        reasoning: ReasoningProvider,
        settings: Settings,
    ) -> None:
        super().__init__(reporter, session_factory, reasoning, settings)
        self._config = StressTestConfig.model_validate(reporter.job.config)
        if self._config.stress_test_id is None:
            raise ValidationError(
                message="Stress-test job has no stress test record",
                details={"job_id": str(reporter.job.id)},
            )
        self._thesis: Hypothesis | None = None
        self._targets: list[Hypothesis] = []
        self._scenarios: list[Scenario] = []
        self._vulnerabilities: list[Vulnerability] = []

    @property
    def stress_test_id(self) -> UUID:
        return self._config.stress_test_id

    async def run(self) -> WorkflowOutcome:
        async with self._uow() as uow:
            await StressTestStore(uow.session).mark_running(self.engagement_id, self.stress_test_id)
            graph = GraphStore(uow.session)
            self._thesis = await graph.get_thesis(self.engagement_id)
            nodes = await graph.list_nodes(self.engagement_id)
        wanted = set(self._config.hypothesis_ids)
        self._targets = [n for n in nodes if not wanted or n.id in wanted]

        await self._scenario_generation()
        await self._vulnerability_synthesis()
        result = await self._scoring()
        return WorkflowOutcome(result=result)

    def _target_context(self) -> list[dict[str, Any]]:
        return [
            {"type": h.type.value, "content": h.content, "confidence": h.confidence}
            for h in self._targets
        ]

    async def _scenario_generation(self) -> None:
        phase = "scenario_generation"
        await self._begin_phase(phase)
        await self._reporter.progress_to(5, phase, "Selecting target hypotheses")

        count = scenario_count(self._config.intensity)
        candidates = await self._generate(
            phase,
            "Construct adverse scenarios that would break the investment thesis.",
            {
                "kind": "scenario",
                "thesis": self._thesis.content if self._thesis else None,
                "hypotheses": self._target_context(),
                "intensity": self._config.intensity.value,
                "devil_advocate_mode": self._config.devil_advocate_mode,
                "count": count,
            },
        )
        await self._reporter.progress_to(20, phase, f"Received {len(candidates)} candidate(s)")

        for candidate in candidates:
            scenario = _coerce(Scenario, candidate, "scenario")
            if scenario is not None:
                self._scenarios.append(scenario)
        self._scenarios = self._scenarios[:count]
        await self._reporter.phase_completed(phase, 35, scenarios=len(self._scenarios))

    async def _vulnerability_synthesis(self) -> None:
        phase = "vulnerability_synthesis"
        await self._begin_phase(phase)

        candidates = await self._generate(
            phase,
            "Synthesize the vulnerabilities these scenarios expose, with a mitigation for each.",
            {
                "kind": "vulnerability",
                "thesis": self._thesis.content if self._thesis else None,
                "hypotheses": self._target_context(),
                "scenarios": [s.model_dump(mode="json") for s in self._scenarios],
                "search_contrarian_sources": self._config.search_contrarian_sources,
            },
        )
        await self._reporter.progress_to(50, phase, f"Received {len(candidates)} candidate(s)")

        for candidate in candidates:
            vulnerability = _coerce(Vulnerability, candidate, "vulnerability")
            if vulnerability is not None:
                self._vulnerabilities.append(vulnerability)

        target = self._targets[0] if len(self._targets) == 1 else None
        async with self._uow() as uow:
            store = ContradictionStore(uow.session)
            for vulnerability in self._vulnerabilities:
                await store.create(
                    self.engagement_id,
                    ContradictionCreate(
                        description=vulnerability.description,
                        severity=vulnerability.severity,
                        hypothesis_id=target.id if target else None,
                        bear_case_theme=vulnerability.area,
                        metadata={
                            "stress_test_id": str(self.stress_test_id),
                            "mitigation": vulnerability.mitigation,
                        },
                    ),
                )
        await self._reporter.phase_completed(phase, 70, vulnerabilities=len(self._vulnerabilities))

    async def _scoring(self) -> dict[str, Any]:
        phase = "scoring"
        await self._begin_phase(phase)

        results = build_results(self._scenarios, self._vulnerabilities)
        await self._reporter.progress_to(85, phase, f"Risk score {results.overall_risk_score}")
        async with self._uow() as uow:
            await StressTestStore(uow.session).mark_completed(
                self.engagement_id,
                self.stress_test_id,
                results,
            )
        await self._reporter.phase_completed(
            phase,
            100,
            overall_risk_score=results.overall_risk_score,
            overall_assessment=results.overall_assessment.value,
        )
        return {"stress_test_id": str(self.stress_test_id), **results.model_dump(mode="json")}
