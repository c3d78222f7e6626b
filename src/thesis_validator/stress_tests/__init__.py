"""Stress-test runs, lifecycle and risk scoring."""

from thesis_validator.stress_tests.schemas import (
    Assessment,
    Intensity,
    Scenario,
    StressTest,
    StressTestCreate,
    StressTestResults,
    StressTestStats,
    StressTestStatus,
    Vulnerability,
)
from thesis_validator.stress_tests.scoring import (
    SCENARIO_COUNTS,
    SEVERITY_WEIGHTS,
    assess,
    build_results,
    risk_score,
    scenario_count,
)
from thesis_validator.stress_tests.store import StressTestStore

__all__ = [
    "SCENARIO_COUNTS",
    "SEVERITY_WEIGHTS",
    "Assessment",
    "Intensity",
    "Scenario",
    "StressTest",
    "StressTestCreate",
    "StressTestResults",
    "StressTestStats",
    "StressTestStatus",
    "StressTestStore",
    "Vulnerability",
    "assess",
    "build_results",
    "risk_score",
    "scenario_count",
]
