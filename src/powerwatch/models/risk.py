"""
Risk arithmetic for PowerWatch.

A scope's risk score is the weighted count of its findings
(10 per HIGH, 5 per MEDIUM, 1 per LOW). Each scope maps the score to a
level with its own fixed thresholds.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from powerwatch.models.finding import Finding, Severity


RISK_LEVEL_HIGH = "HIGH"
RISK_LEVEL_MEDIUM = "MEDIUM"
RISK_LEVEL_LOW = "LOW"


class RiskScope(Enum):
    """Scopes at which risk levels are reported."""

    OVERALL = "overall"
    ENVIRONMENT = "environment"
    CONNECTION = "connection"
    FLOW = "flow"
    USER = "user"


# (high, medium): a score strictly above the first is HIGH, strictly above
# the second is MEDIUM.
RISK_THRESHOLDS: dict[RiskScope, tuple[int, int]] = {
    RiskScope.OVERALL: (25, 10),
    RiskScope.ENVIRONMENT: (15, 5),
    RiskScope.CONNECTION: (9, 4),
    RiskScope.FLOW: (9, 4),
    RiskScope.USER: (9, 4),
}


def count_by_severity(findings: Iterable[Finding]) -> dict[Severity, int]:
    """Count findings per severity, including zero counts."""
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity] += 1
    return counts


def calculate_risk_score(findings: Iterable[Finding]) -> int:
    """Weighted risk score for a collection of findings."""
    return sum(finding.severity.weight for finding in findings)


def risk_score_from_counts(high: int, medium: int, low: int) -> int:
    """Weighted risk score from severity counts."""
    return (
        Severity.HIGH.weight * high
        + Severity.MEDIUM.weight * medium
        + Severity.LOW.weight * low
    )


def risk_level(score: int, scope: RiskScope = RiskScope.OVERALL) -> str:
    """
    Map a risk score to a level for the given scope.

    Args:
        score: Weighted risk score
        scope: Scope whose thresholds apply

    Returns:
        "HIGH", "MEDIUM" or "LOW"
    """
    high, medium = RISK_THRESHOLDS[scope]
    if score > high:
        return RISK_LEVEL_HIGH
    if score > medium:
        return RISK_LEVEL_MEDIUM
    return RISK_LEVEL_LOW
