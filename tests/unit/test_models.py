"""
Unit tests for PowerWatch data models.

Tests Finding parsing, the per-resource records and AssessmentSnapshot
construction from engine output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from powerwatch.models import (
    AssessmentSnapshot,
    ConnectionRecord,
    EnvironmentRecord,
    Finding,
    FlowRecord,
    Severity,
    UserRecord,
    is_high_risk_connector,
    parse_datetime,
    parse_findings,
)


# =============================================================================
# Severity and Finding Tests
# =============================================================================


class TestSeverity:
    """Tests for the Severity enum."""

    def test_weights(self) -> None:
        """Test the risk score weight of each severity."""
        assert Severity.HIGH.weight == 10
        assert Severity.MEDIUM.weight == 5
        assert Severity.LOW.weight == 1

    def test_from_message_high(self) -> None:
        """Test that HIGH anywhere in the message wins."""
        assert Severity.from_message("No DLP policies - HIGH RISK") == Severity.HIGH
        assert Severity.from_message("MEDIUM and HIGH") == Severity.HIGH

    def test_from_message_medium(self) -> None:
        """Test MEDIUM detection."""
        assert Severity.from_message("Shared connection - MEDIUM RISK") == Severity.MEDIUM

    def test_from_message_defaults_to_low(self) -> None:
        """Test that unmarked messages are LOW."""
        assert Severity.from_message("Flow owner has left") == Severity.LOW
        assert Severity.from_message("") == Severity.LOW

    def test_from_message_is_case_sensitive(self) -> None:
        """Test that lower-case markers are not recognised."""
        assert Severity.from_message("high risk connector") == Severity.LOW
        assert Severity.from_message("Medium exposure") == Severity.LOW

    def test_from_string(self) -> None:
        """Test parsing an explicit severity value."""
        assert Severity.from_string("high") == Severity.HIGH
        assert Severity.from_string(" Medium ") == Severity.MEDIUM

    def test_from_string_invalid(self) -> None:
        """Test that unknown values raise."""
        with pytest.raises(ValueError):
            Severity.from_string("critical")


class TestFinding:
    """Tests for Finding parsing."""

    def test_parse_string(self) -> None:
        """Test parsing a free-text finding."""
        finding = Finding.parse("Guest has admin role - HIGH RISK")

        assert finding.message == "Guest has admin role - HIGH RISK"
        assert finding.severity == Severity.HIGH
        assert finding.risk_score == 10

    def test_parse_dict_with_explicit_severity(self) -> None:
        """Test that an explicit severity overrides the message text."""
        finding = Finding.parse({"Message": "Looks HIGH but is not", "Severity": "low"})

        assert finding.message == "Looks HIGH but is not"
        assert finding.severity == Severity.LOW

    def test_parse_dict_without_severity(self) -> None:
        """Test that a dict without severity is classified by its message."""
        finding = Finding.parse({"description": "Shared broadly - MEDIUM RISK"})

        assert finding.severity == Severity.MEDIUM

    def test_parse_unsupported(self) -> None:
        """Test that other types are rejected."""
        with pytest.raises(ValueError):
            Finding.parse(42)

    def test_to_dict(self) -> None:
        """Test dictionary conversion."""
        finding = Finding(message="x", severity=Severity.MEDIUM)

        assert finding.to_dict() == {"message": "x", "severity": "MEDIUM"}

    def test_parse_findings_variants(self) -> None:
        """Test parsing the findings list of a record."""
        assert parse_findings(None) == ()
        assert len(parse_findings("single - HIGH")) == 1
        findings = parse_findings(["a - HIGH", "", None, "b"])
        assert [f.severity for f in findings] == [Severity.HIGH, Severity.LOW]


# =============================================================================
# Timestamp Parsing Tests
# =============================================================================


class TestParseDatetime:
    """Tests for engine timestamp parsing."""

    def test_iso_with_z(self) -> None:
        """Test an ISO timestamp with a trailing Z."""
        parsed = parse_datetime("2024-03-01T08:00:00Z")

        assert parsed == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_naive_is_utc(self) -> None:
        """Test that naive timestamps are treated as UTC."""
        parsed = parse_datetime("2024-03-01T08:00:00")

        assert parsed.tzinfo == timezone.utc

    def test_ms_json_date(self) -> None:
        """Test the /Date(ms)/ serializer form."""
        parsed = parse_datetime("/Date(1709280000000)/")

        assert parsed == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_empty(self) -> None:
        """Test that missing values parse to None."""
        assert parse_datetime(None) is None
        assert parse_datetime("") is None


# =============================================================================
# Record Tests
# =============================================================================


class TestEnvironmentRecord:
    """Tests for EnvironmentRecord."""

    def test_from_dict_pascal_case(self) -> None:
        """Test creation from engine field names."""
        env = EnvironmentRecord.from_dict({
            "EnvironmentName": "env-1",
            "DisplayName": "Finance",
            "EnvironmentType": "Production",
            "Location": "europe",
            "IsDefault": "true",
            "DLPPolicies": ["policy-a", "policy-b"],
            "SecurityFindings": ["x - HIGH RISK", "y - MEDIUM RISK"],
        })

        assert env.environment_name == "env-1"
        assert env.display_name == "Finance"
        assert env.region == "europe"
        assert env.is_default is True
        assert env.dlp_policy_count == 2
        assert env.has_dlp_policies is True
        assert env.risk_score == 15

    def test_display_name_defaults_to_name(self) -> None:
        """Test that a missing display name falls back to the identifier."""
        env = EnvironmentRecord.from_dict({"name": "env-2"})

        assert env.display_name == "env-2"
        assert env.has_dlp_policies is False

    def test_risk_level_thresholds(self) -> None:
        """Test environment risk levels use the 15/5 thresholds."""
        def env_with(*messages: str) -> EnvironmentRecord:
            return EnvironmentRecord(
                environment_name="e",
                findings=tuple(Finding.parse(m) for m in messages),
            )

        assert env_with("a - HIGH", "b - MEDIUM").risk_level == "MEDIUM"  # 15
        assert env_with("a - HIGH", "b - MEDIUM", "c").risk_level == "HIGH"  # 16
        assert env_with("a - MEDIUM").risk_level == "LOW"  # 5
        assert env_with("a - MEDIUM", "b").risk_level == "MEDIUM"  # 6

    def test_to_dict(self) -> None:
        """Test the API projection."""
        env = EnvironmentRecord(
            environment_name="env-1",
            display_name="Finance",
            created_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            findings=(Finding.parse("No DLP - HIGH RISK"),),
        )
        data = env.to_dict()

        assert data["environmentName"] == "env-1"
        assert data["createdTime"] == "2024-01-01T00:00:00+00:00"
        assert data["findings"] == ["No DLP - HIGH RISK"]
        assert data["findingCount"] == 1
        assert data["riskScore"] == 10
        assert data["riskLevel"] == "MEDIUM"
        assert data["hasDlpPolicies"] is False


class TestUserRecord:
    """Tests for UserRecord."""

    def test_external_guest_admin_requires_review(self) -> None:
        """Test that a guest administrator is flagged without findings."""
        user = UserRecord(
            environment_name="env-1",
            principal_email="guest_partner.com#EXT#@tenant.onmicrosoft.com",
            role_type="EnvironmentAdmin",
        )

        assert user.is_external_guest is True
        assert user.is_admin is True
        assert user.requires_review is True

    def test_member_maker_does_not_require_review(self) -> None:
        """Test that an internal maker without findings is not flagged."""
        user = UserRecord(
            environment_name="env-1",
            principal_email="maker@contoso.com",
            role_type="EnvironmentMaker",
        )

        assert user.is_external_guest is False
        assert user.is_admin is False
        assert user.requires_review is False

    def test_from_dict_alternate_keys(self) -> None:
        """Test role assignment key spellings."""
        user = UserRecord.from_dict({
            "environmentName": "env-1",
            "PrincipalName": "Sam",
            "RoleName": "System Administrator",
        })

        assert user.principal_name == "Sam"
        assert user.role_type == "System Administrator"
        assert user.is_admin is True

    def test_to_dict_uses_user_thresholds(self) -> None:
        """Test the user risk level in the projection."""
        user = UserRecord(
            environment_name="env-1",
            findings=(Finding.parse("a - HIGH"),),
        )

        assert user.to_dict()["riskLevel"] == "HIGH"


class TestConnectionRecord:
    """Tests for ConnectionRecord."""

    @pytest.mark.parametrize(
        "connector",
        [
            "shared_http",
            "HTTP",
            "SQL Server",
            "/providers/Microsoft.PowerApps/apis/shared_ftp",
        ],
    )
    def test_high_risk_connectors(self, connector: str) -> None:
        """Test connectors on the high-risk list."""
        assert is_high_risk_connector(connector) is True

    def test_low_risk_connector(self) -> None:
        """Test a connector that is not on the list."""
        assert is_high_risk_connector("shared_sharepointonline") is False

    def test_requires_action_from_connector(self) -> None:
        """Test that a high-risk connector requires action."""
        conn = ConnectionRecord(connection_name="c1", connector_name="shared_http")

        assert conn.is_high_risk is True
        assert conn.requires_action is True

    def test_requires_action_from_high_finding(self) -> None:
        """Test that a HIGH finding requires action on any connector."""
        conn = ConnectionRecord(
            connection_name="c1",
            connector_name="shared_office365",
            findings=(Finding.parse("Shared with everyone - HIGH RISK"),),
        )

        assert conn.is_high_risk is False
        assert conn.requires_action is True

    def test_risk_level_thresholds(self) -> None:
        """Test connection risk levels use the 9/4 thresholds."""
        conn = ConnectionRecord(
            connection_name="c1",
            findings=(Finding.parse("a - MEDIUM"),),
        )

        assert conn.risk_score == 5
        assert conn.risk_level == "MEDIUM"


class TestFlowRecord:
    """Tests for FlowRecord."""

    def test_enabled_from_state(self) -> None:
        """Test that a started flow without an explicit flag is enabled."""
        flow = FlowRecord.from_dict({"FlowName": "f1", "State": "Started"})

        assert flow.is_enabled is True

    def test_explicit_enabled_wins(self) -> None:
        """Test that an explicit flag overrides the state."""
        flow = FlowRecord.from_dict({"FlowName": "f1", "State": "Started", "Enabled": False})

        assert flow.is_enabled is False

    @pytest.mark.parametrize(
        "trigger,expected",
        [
            ("Request", True),
            ("manual HTTP request", True),
            ("HttpWebhook", True),
            ("Recurrence", False),
            ("", False),
        ],
    )
    def test_http_trigger(self, trigger: str, expected: bool) -> None:
        """Test HTTP trigger detection."""
        assert FlowRecord(flow_name="f", trigger_type=trigger).has_http_trigger is expected

    def test_enabled_http_flow_requires_review(self) -> None:
        """Test that an enabled HTTP-triggered flow is flagged without findings."""
        flow = FlowRecord(flow_name="f", enabled=True, trigger_type="Request")

        assert flow.requires_review is True

    def test_disabled_http_flow_does_not_require_review(self) -> None:
        """Test that a disabled flow without findings is not flagged."""
        flow = FlowRecord(flow_name="f", enabled=False, trigger_type="Request")

        assert flow.requires_review is False

    def test_connectors_from_string(self) -> None:
        """Test a comma separated connector list."""
        flow = FlowRecord.from_dict({"FlowName": "f", "Connectors": "shared_http, shared_sql"})

        assert flow.connectors == ("shared_http", "shared_sql")
        assert flow.to_dict()["connectors"] == ["shared_http", "shared_sql"]


# =============================================================================
# Snapshot Tests
# =============================================================================


class TestAssessmentSnapshot:
    """Tests for AssessmentSnapshot."""

    def test_from_dict(self, sample_snapshot: AssessmentSnapshot, assessment_timestamp: datetime) -> None:
        """Test building a snapshot from the sample engine result."""
        assert sample_snapshot.timestamp == assessment_timestamp
        assert len(sample_snapshot.environments) == 2
        assert len(sample_snapshot.users) == 3
        assert len(sample_snapshot.connections) == 2
        assert len(sample_snapshot.flows) == 2

    def test_summary_counts(self, sample_snapshot: AssessmentSnapshot) -> None:
        """Test that summary counts are computed from the records."""
        summary = sample_snapshot.summary

        assert summary.total_environments == 2
        assert summary.total_users == 3
        assert summary.high_findings == 2
        assert summary.medium_findings == 2
        assert summary.low_findings == 1
        assert summary.total_findings == 5

    def test_summary_matches_findings(self, sample_snapshot: AssessmentSnapshot) -> None:
        """Test that the finding total equals the number of record findings."""
        assert sample_snapshot.summary.total_findings == len(list(sample_snapshot.iter_findings()))

    def test_engine_summary_is_ignored(self, sample_engine_result: dict[str, Any]) -> None:
        """Test that a stale summary block from the engine is recomputed."""
        sample_engine_result["Summary"] = {"TotalFindings": 999}

        snapshot = AssessmentSnapshot.from_dict(sample_engine_result)

        assert snapshot.summary.total_findings == 5

    def test_single_object_collections(self) -> None:
        """Test that a collapsed single-element array is accepted."""
        snapshot = AssessmentSnapshot.from_dict({
            "Environments": {"EnvironmentName": "only"},
        })

        assert [e.environment_name for e in snapshot.environments] == ["only"]

    def test_role_assignments_key(self) -> None:
        """Test the RoleAssignments spelling of the users collection."""
        snapshot = AssessmentSnapshot.from_dict({
            "RoleAssignments": [{"EnvironmentName": "e", "RoleType": "EnvironmentMaker"}],
        })

        assert len(snapshot.users) == 1

    def test_invalid_collection_type(self) -> None:
        """Test that a non-list collection is rejected."""
        with pytest.raises(ValueError):
            AssessmentSnapshot.from_dict({"Flows": "not-a-list"})

    def test_non_object_rejected(self) -> None:
        """Test that a non-object result is rejected."""
        with pytest.raises(ValueError):
            AssessmentSnapshot.from_dict(["not", "an", "object"])  # type: ignore[arg-type]

    def test_missing_timestamp_defaults_to_now(self) -> None:
        """Test that the snapshot is stamped when the engine omits a date."""
        before = datetime.now(timezone.utc)
        snapshot = AssessmentSnapshot.from_dict({"Environments": []})

        assert snapshot.timestamp >= before
        assert snapshot.is_empty()

    @pytest.mark.parametrize("data", [{}, {"Summary": {"TotalFindings": 0}}, {"EnvironmentName": "env-b"}])
    def test_result_without_collections_rejected(self, data: dict) -> None:
        """Test that an object carrying no record collection is not an assessment."""
        with pytest.raises(ValueError, match="none of the Environments"):
            AssessmentSnapshot.from_dict(data)

    def test_empty(self) -> None:
        """Test the empty placeholder snapshot."""
        snapshot = AssessmentSnapshot.empty()

        assert snapshot.is_empty()
        assert snapshot.summary.total_findings == 0
        assert snapshot.generation == 0

    def test_with_generation(self, sample_snapshot: AssessmentSnapshot) -> None:
        """Test stamping a generation returns a new snapshot."""
        stamped = sample_snapshot.with_generation(7)

        assert stamped.generation == 7
        assert sample_snapshot.generation == 0
        assert stamped.environments == sample_snapshot.environments

    def test_snapshot_is_immutable(self, sample_snapshot: AssessmentSnapshot) -> None:
        """Test that snapshot fields cannot be reassigned."""
        with pytest.raises(AttributeError):
            sample_snapshot.generation = 3  # type: ignore[misc]
