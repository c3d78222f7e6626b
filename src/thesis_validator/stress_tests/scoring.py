"""
Risk scoring for stress tests.

The overall risk score is the sum of vulnerability weights by severity,
capped at 100, so it never decreases when a vulnerability is added or made
more severe. The assessment is the band the score falls in.
"""

from thesis_validator.contradictions.schemas import Severity
from thesis_validator.stress_tests.schemas import (
    Assessment,
    Intensity,
    Scenario,
    StressTestResults,
    Vulnerability,
)

SCENARIO_COUNTS: dict[Intensity, int] = {
    Intensity.LIGHT: 3,
    Intensity.MODERATE: 5,
    Intensity.AGGRESSIVE: 8,
}

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}

MAX_RISK_SCORE = 100

# Upper bounds (exclusive) of each band; anything above is critical
ASSESSMENT_BANDS: list[tuple[int, Assessment]] = [
    (30, Assessment.ROBUST),
    (50, Assessment.MODERATE),
    (70, Assessment.VULNERABLE),
]


def scenario_count(intensity: Intensity | str) -> int:
    """Number of adversarial scenarios to request for an intensity."""
    return SCENARIO_COUNTS[Intensity(intensity)]


def risk_score(vulnerabilities: list[Vulnerability]) -> int:
    total = sum(SEVERITY_WEIGHTS[Severity(v.severity)] for v in vulnerabilities)
    return min(total, MAX_RISK_SCORE)


def assess(score: int) -> Assessment:
    """Map a 0-100 risk score onto its assessment band."""
    for upper, assessment in ASSESSMENT_BANDS:
        if score < upper:
            return assessment
    return Assessment.CRITICAL


def build_results(
    scenarios: list[Scenario],
    vulnerabilities: list[Vulnerability],
    summary: str = "",
    recommendations: list[str] | None = None,
) -> StressTestResults:
    """
    Assemble the results of a stress test.

    Args:
        scenarios: Scenarios that were run.
        vulnerabilities: Weaknesses found.
        summary: Free-text summary. Generated from the score when empty.
        recommendations: Follow-up actions. Defaults to the mitigations of
            the vulnerabilities.

    Returns:
        Results with a score and assessment consistent with each other.
    """
    score = risk_score(vulnerabilities)
    assessment = assess(score)
    if recommendations is None:
        recommendations = [v.mitigation for v in vulnerabilities if v.mitigation]
    if not summary:
        summary = (
            f"{len(scenarios)} scenarios run, {len(vulnerabilities)} vulnerabilities found; "
            f"risk score {score} ({assessment.value})"
        )
    return StressTestResults(
        scenarios=scenarios,
        vulnerabilities=vulnerabilities,
        overall_risk_score=score,
        overall_assessment=assessment,
        summary=summary,
        recommendations=recommendations,
    )
