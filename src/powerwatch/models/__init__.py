"""
Data models for PowerWatch.

This package provides the core data models used throughout PowerWatch:

- Finding: A detected condition with a typed Severity
- AssessmentSnapshot: The immutable result of one assessment run and
  its environment, user, connection and flow records
- Risk arithmetic: weighted scores and per-scope risk levels
"""

from powerwatch.models.finding import (
    Finding,
    Severity,
    parse_findings,
)
from powerwatch.models.risk import (
    RISK_LEVEL_HIGH,
    RISK_LEVEL_LOW,
    RISK_LEVEL_MEDIUM,
    RISK_THRESHOLDS,
    RiskScope,
    calculate_risk_score,
    count_by_severity,
    risk_level,
    risk_score_from_counts,
)
from powerwatch.models.snapshot import (
    HIGH_RISK_CONNECTORS,
    AssessmentSnapshot,
    ConnectionRecord,
    EnvironmentRecord,
    FlowRecord,
    SnapshotSummary,
    UserRecord,
    is_high_risk_connector,
    parse_datetime,
)

__all__ = [
    # Finding module
    "Finding",
    "Severity",
    "parse_findings",
    # Risk module
    "RISK_LEVEL_HIGH",
    "RISK_LEVEL_LOW",
    "RISK_LEVEL_MEDIUM",
    "RISK_THRESHOLDS",
    "RiskScope",
    "calculate_risk_score",
    "count_by_severity",
    "risk_level",
    "risk_score_from_counts",
    # Snapshot module
    "HIGH_RISK_CONNECTORS",
    "AssessmentSnapshot",
    "ConnectionRecord",
    "EnvironmentRecord",
    "FlowRecord",
    "SnapshotSummary",
    "UserRecord",
    "is_high_risk_connector",
    "parse_datetime",
]
