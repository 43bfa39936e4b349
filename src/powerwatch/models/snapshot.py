"""
Assessment snapshot data model for PowerWatch.

An AssessmentSnapshot is the immutable, fully-populated result of one
assessment run: the environments, role assignments, connections and flows
the engine discovered, each annotated with its findings. Records are
frozen dataclasses holding tuples so that a snapshot can be shared between
request threads without copying.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterator

from powerwatch.models.finding import Finding, Severity, parse_findings
from powerwatch.models.risk import (
    RiskScope,
    calculate_risk_score,
    count_by_severity,
    risk_level,
)


# Connectors whose presence alone makes a connection high risk. Matched
# case-insensitively against both the display name and the API id.
HIGH_RISK_CONNECTORS = frozenset(
    {
        "http",
        "http with azure ad",
        "http webhook",
        "sql server",
        "file system",
        "ftp",
        "sftp",
        "sftp - ssh",
        "gmail",
        "azure functions",
        "smtp",
        "shared_http",
        "shared_webcontents",
        "shared_httpwebhook",
        "shared_sql",
        "shared_filesystem",
        "shared_ftp",
        "shared_sftp",
        "shared_sftpwithssh",
        "shared_gmail",
        "shared_azurefunctions",
        "shared_smtp",
    }
)

EXTERNAL_GUEST_MARKER = "#EXT#"

_MS_JSON_DATE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")

# At least one must be present for a result to count as an assessment
_COLLECTION_KEYS = (
    "Environments", "environments",
    "Users", "users", "RoleAssignments",
    "Connections", "connections",
    "Flows", "flows",
)


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-null value among several key spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "enabled", "started")
    return False


def _as_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, (list, tuple)):
        return len(value)
    return int(value)


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(item) for item in value)


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse a timestamp emitted by the engine.

    Accepts ISO-8601 strings (with or without a trailing "Z"), the
    "/Date(ms)/" form produced by older PowerShell JSON serializers and
    datetime objects. Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        match = _MS_JSON_DATE.match(text)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: datetime | None) -> str | None:
    """Format a timestamp as ISO-8601 for API responses."""
    return value.isoformat() if value else None


def _findings_dict(findings: tuple[Finding, ...]) -> dict[str, Any]:
    return {
        "findings": [f.message for f in findings],
        "findingCount": len(findings),
    }


@dataclass(frozen=True)
class EnvironmentRecord:
    """
    A Power Platform environment.

    Attributes:
        environment_name: Environment identifier (GUID-style name)
        display_name: Human-readable name
        environment_type: Production, Sandbox, Trial, Developer or Default
        region: Azure geography the environment lives in
        is_default: Whether this is the tenant default environment
        created_time: When the environment was created
        dlp_policy_count: Number of DLP policies covering the environment
        findings: Findings raised against the environment
    """

    environment_name: str
    display_name: str = ""
    environment_type: str = ""
    region: str = ""
    is_default: bool = False
    created_time: datetime | None = None
    dlp_policy_count: int = 0
    findings: tuple[Finding, ...] = ()

    @property
    def risk_score(self) -> int:
        return calculate_risk_score(self.findings)

    @property
    def risk_level(self) -> str:
        return risk_level(self.risk_score, RiskScope.ENVIRONMENT)

    @property
    def has_dlp_policies(self) -> bool:
        return self.dlp_policy_count > 0

    def to_dict(self) -> dict[str, Any]:
        """Project to the API response shape."""
        return {
            "environmentName": self.environment_name,
            "displayName": self.display_name,
            "environmentType": self.environment_type,
            "region": self.region,
            "isDefault": self.is_default,
            "createdTime": format_datetime(self.created_time),
            "dlpPolicyCount": self.dlp_policy_count,
            "hasDlpPolicies": self.has_dlp_policies,
            **_findings_dict(self.findings),
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvironmentRecord:
        """Create from an engine result entry."""
        name = _pick(data, "EnvironmentName", "environmentName", "environment_name", "Name", "name", default="")
        return cls(
            environment_name=str(name),
            display_name=str(_pick(data, "DisplayName", "displayName", "display_name", default=name)),
            environment_type=str(_pick(data, "EnvironmentType", "environmentType", "environment_type", "EnvironmentSku", default="")),
            region=str(_pick(data, "Location", "location", "Region", "region", default="")),
            is_default=_as_bool(_pick(data, "IsDefault", "isDefault", "is_default", default=False)),
            created_time=parse_datetime(_pick(data, "CreatedTime", "createdTime", "created_time")),
            dlp_policy_count=_as_int(_pick(data, "DLPPolicies", "DlpPolicies", "dlpPolicyCount", "dlp_policy_count", default=0)),
            findings=parse_findings(_pick(data, "SecurityFindings", "Findings", "findings")),
        )


@dataclass(frozen=True)
class UserRecord:
    """
    A role assignment of a principal in an environment.

    Attributes:
        environment_name: Environment the role is assigned in
        principal_name: Display name of the principal
        principal_email: Email or UPN of the principal
        principal_type: User, Group, ServicePrincipal or Tenant
        role_type: EnvironmentAdmin, EnvironmentMaker, ...
        findings: Findings raised against the assignment
    """

    environment_name: str
    principal_name: str = ""
    principal_email: str = ""
    principal_type: str = ""
    role_type: str = ""
    findings: tuple[Finding, ...] = ()

    @property
    def is_external_guest(self) -> bool:
        return EXTERNAL_GUEST_MARKER in self.principal_email

    @property
    def is_admin(self) -> bool:
        return "Admin" in self.role_type

    @property
    def requires_review(self) -> bool:
        return bool(self.findings) or (self.is_external_guest and self.is_admin)

    @property
    def risk_score(self) -> int:
        return calculate_risk_score(self.findings)

    def to_dict(self) -> dict[str, Any]:
        """Project to the API response shape."""
        return {
            "environmentName": self.environment_name,
            "principalName": self.principal_name,
            "principalEmail": self.principal_email,
            "principalType": self.principal_type,
            "roleType": self.role_type,
            "isAdmin": self.is_admin,
            "isExternalGuest": self.is_external_guest,
            "requiresReview": self.requires_review,
            **_findings_dict(self.findings),
            "riskScore": self.risk_score,
            "riskLevel": risk_level(self.risk_score, RiskScope.USER),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserRecord:
        """Create from an engine result entry."""
        return cls(
            environment_name=str(_pick(data, "EnvironmentName", "environmentName", "environment_name", default="")),
            principal_name=str(_pick(data, "PrincipalDisplayName", "principalDisplayName", "PrincipalName", "principalName", "principal_name", default="")),
            principal_email=str(_pick(data, "PrincipalEmail", "principalEmail", "principal_email", "PrincipalObjectId", default="")),
            principal_type=str(_pick(data, "PrincipalType", "principalType", "principal_type", default="")),
            role_type=str(_pick(data, "RoleType", "roleType", "role_type", "RoleName", default="")),
            findings=parse_findings(_pick(data, "SecurityFindings", "Findings", "findings")),
        )


@dataclass(frozen=True)
class ConnectionRecord:
    """
    An instantiated connector in an environment.

    Attributes:
        connection_name: Connection identifier
        display_name: Human-readable name
        connector_name: Connector the connection instantiates
        environment_name: Environment the connection lives in
        created_by: Creator of the connection
        created_time: When the connection was created
        status: Connection status reported by the platform
        is_shared: Whether the connection is shared with other users
        findings: Findings raised against the connection
    """

    connection_name: str
    display_name: str = ""
    connector_name: str = ""
    environment_name: str = ""
    created_by: str = ""
    created_time: datetime | None = None
    status: str = ""
    is_shared: bool = False
    findings: tuple[Finding, ...] = ()

    @property
    def is_high_risk(self) -> bool:
        return is_high_risk_connector(self.connector_name)

    @property
    def requires_action(self) -> bool:
        return self.is_high_risk or any(
            f.severity == Severity.HIGH for f in self.findings
        )

    @property
    def risk_score(self) -> int:
        return calculate_risk_score(self.findings)

    @property
    def risk_level(self) -> str:
        return risk_level(self.risk_score, RiskScope.CONNECTION)

    def to_dict(self) -> dict[str, Any]:
        """Project to the API response shape."""
        return {
            "connectionName": self.connection_name,
            "displayName": self.display_name,
            "connectorName": self.connector_name,
            "environmentName": self.environment_name,
            "createdBy": self.created_by,
            "createdTime": format_datetime(self.created_time),
            "status": self.status,
            "isShared": self.is_shared,
            "isHighRisk": self.is_high_risk,
            "requiresAction": self.requires_action,
            **_findings_dict(self.findings),
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectionRecord:
        """Create from an engine result entry."""
        name = _pick(data, "ConnectionName", "connectionName", "connection_name", "Name", "name", default="")
        return cls(
            connection_name=str(name),
            display_name=str(_pick(data, "DisplayName", "displayName", "display_name", default=name)),
            connector_name=str(_pick(data, "ConnectorName", "connectorName", "connector_name", default="")),
            environment_name=str(_pick(data, "EnvironmentName", "environmentName", "environment_name", default="")),
            created_by=str(_pick(data, "CreatedBy", "createdBy", "created_by", default="")),
            created_time=parse_datetime(_pick(data, "CreatedTime", "createdTime", "created_time")),
            status=str(_pick(data, "Status", "status", default="")),
            is_shared=_as_bool(_pick(data, "IsShared", "isShared", "is_shared", default=False)),
            findings=parse_findings(_pick(data, "SecurityFindings", "Findings", "findings")),
        )


@dataclass(frozen=True)
class FlowRecord:
    """
    A cloud flow.

    Attributes:
        flow_name: Flow identifier
        display_name: Human-readable name
        environment_name: Environment the flow lives in
        created_by: Owner / creator of the flow
        state: Started, Stopped or Suspended
        enabled: Whether the flow is turned on
        trigger_type: Trigger kind reported by the engine
        created_time: When the flow was created
        last_modified_time: When the flow was last modified
        connectors: Connectors the flow references
        findings: Findings raised against the flow
    """

    flow_name: str
    display_name: str = ""
    environment_name: str = ""
    created_by: str = ""
    state: str = ""
    enabled: bool = False
    trigger_type: str = ""
    created_time: datetime | None = None
    last_modified_time: datetime | None = None
    connectors: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()

    @property
    def is_enabled(self) -> bool:
        return self.enabled

    @property
    def has_http_trigger(self) -> bool:
        trigger = self.trigger_type.lower()
        return "request" in trigger or "http" in trigger

    @property
    def requires_review(self) -> bool:
        return bool(self.findings) or (self.is_enabled and self.has_http_trigger)

    @property
    def risk_score(self) -> int:
        return calculate_risk_score(self.findings)

    @property
    def risk_level(self) -> str:
        return risk_level(self.risk_score, RiskScope.FLOW)

    def to_dict(self) -> dict[str, Any]:
        """Project to the API response shape."""
        return {
            "flowName": self.flow_name,
            "displayName": self.display_name,
            "environmentName": self.environment_name,
            "createdBy": self.created_by,
            "state": self.state,
            "isEnabled": self.is_enabled,
            "triggerType": self.trigger_type,
            "hasHttpTrigger": self.has_http_trigger,
            "createdTime": format_datetime(self.created_time),
            "lastModifiedTime": format_datetime(self.last_modified_time),
            "connectors": list(self.connectors),
            "requiresReview": self.requires_review,
            **_findings_dict(self.findings),
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowRecord:
        """Create from an engine result entry."""
        name = _pick(data, "FlowName", "flowName", "flow_name", "Name", "name", default="")
        state = str(_pick(data, "State", "state", default=""))
        enabled = _pick(data, "Enabled", "enabled", "IsEnabled", "isEnabled")
        return cls(
            flow_name=str(name),
            display_name=str(_pick(data, "DisplayName", "displayName", "display_name", default=name)),
            environment_name=str(_pick(data, "EnvironmentName", "environmentName", "environment_name", default="")),
            created_by=str(_pick(data, "CreatedBy", "createdBy", "created_by", "Owner", "owner", default="")),
            state=state,
            enabled=_as_bool(enabled) if enabled is not None else state.lower() == "started",
            trigger_type=str(_pick(data, "TriggerType", "triggerType", "trigger_type", default="")),
            created_time=parse_datetime(_pick(data, "CreatedTime", "createdTime", "created_time")),
            last_modified_time=parse_datetime(_pick(data, "LastModifiedTime", "lastModifiedTime", "last_modified_time")),
            connectors=_as_str_tuple(_pick(data, "Connectors", "connectors", "ConnectorNames")),
            findings=parse_findings(_pick(data, "SecurityFindings", "Findings", "findings")),
        )


def is_high_risk_connector(connector_name: str) -> bool:
    """Check a connector display name or API id against the high-risk list."""
    name = connector_name.strip().lower()
    if name.startswith("/providers/microsoft.powerapps/apis/"):
        name = name.rsplit("/", 1)[-1]
    return name in HIGH_RISK_CONNECTORS


@dataclass(frozen=True)
class SnapshotSummary:
    """Aggregate counts for a snapshot."""

    total_environments: int = 0
    total_users: int = 0
    total_connections: int = 0
    total_flows: int = 0
    high_findings: int = 0
    medium_findings: int = 0
    low_findings: int = 0

    @property
    def total_findings(self) -> int:
        return self.high_findings + self.medium_findings + self.low_findings

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "totalEnvironments": self.total_environments,
            "totalUsers": self.total_users,
            "totalConnections": self.total_connections,
            "totalFlows": self.total_flows,
            "totalFindings": self.total_findings,
            "highRiskFindings": self.high_findings,
            "mediumRiskFindings": self.medium_findings,
            "lowRiskFindings": self.low_findings,
        }


@dataclass(frozen=True)
class AssessmentSnapshot:
    """
    Immutable result of one assessment run.

    Attributes:
        timestamp: When the assessment was produced
        environments: Assessed environments, in engine order
        users: Role assignments, in engine order
        connections: Connections, in engine order
        flows: Flows, in engine order
        summary: Aggregate counts computed from the records
        generation: Cache generation the snapshot was installed as
    """

    timestamp: datetime
    environments: tuple[EnvironmentRecord, ...] = ()
    users: tuple[UserRecord, ...] = ()
    connections: tuple[ConnectionRecord, ...] = ()
    flows: tuple[FlowRecord, ...] = ()
    summary: SnapshotSummary = field(default_factory=SnapshotSummary)
    generation: int = 0

    def iter_findings(self) -> Iterator[Finding]:
        """Iterate over every finding of every record."""
        for records in (self.environments, self.users, self.connections, self.flows):
            for record in records:
                yield from record.findings

    def is_empty(self) -> bool:
        """Check whether the snapshot holds no records at all."""
        return not (self.environments or self.users or self.connections or self.flows)

    def with_generation(self, generation: int) -> AssessmentSnapshot:
        """Return a copy stamped with a cache generation."""
        return replace(self, generation=generation)

    @classmethod
    def build(
        cls,
        timestamp: datetime,
        environments: tuple[EnvironmentRecord, ...] = (),
        users: tuple[UserRecord, ...] = (),
        connections: tuple[ConnectionRecord, ...] = (),
        flows: tuple[FlowRecord, ...] = (),
    ) -> AssessmentSnapshot:
        """Create a snapshot, computing the summary from the records."""
        snapshot = cls(
            timestamp=timestamp,
            environments=tuple(environments),
            users=tuple(users),
            connections=tuple(connections),
            flows=tuple(flows),
        )
        counts = count_by_severity(snapshot.iter_findings())
        summary = SnapshotSummary(
            total_environments=len(snapshot.environments),
            total_users=len(snapshot.users),
            total_connections=len(snapshot.connections),
            total_flows=len(snapshot.flows),
            high_findings=counts[Severity.HIGH],
            medium_findings=counts[Severity.MEDIUM],
            low_findings=counts[Severity.LOW],
        )
        return replace(snapshot, summary=summary)

    @classmethod
    def empty(cls, timestamp: datetime | None = None) -> AssessmentSnapshot:
        """A well-formed snapshot with no records and zeroed counts."""
        return cls.build(timestamp=timestamp or datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssessmentSnapshot:
        """
        Create a snapshot from the engine's JSON result record.

        Any summary block the engine supplies is ignored; counts are
        recomputed so they always agree with the records.

        Raises:
            ValueError: If the record is not a JSON object, holds none of
                the record collections or holds malformed entries
        """
        if not isinstance(data, dict):
            raise ValueError("Assessment result must be a JSON object")
        if not any(key in data for key in _COLLECTION_KEYS):
            raise ValueError(
                "Assessment result holds none of the Environments, Users, "
                "Connections or Flows collections"
            )

        timestamp = parse_datetime(
            _pick(data, "AssessmentDate", "assessmentDate", "Timestamp", "timestamp")
        ) or datetime.now(timezone.utc)

        def entries(*keys: str) -> list[dict[str, Any]]:
            value = _pick(data, *keys, default=[])
            if isinstance(value, dict):
                # ConvertTo-Json collapses single-element arrays
                value = [value]
            if not isinstance(value, list):
                raise ValueError(f"Expected a list for {keys[0]}")
            return [item for item in value if isinstance(item, dict)]

        return cls.build(
            timestamp=timestamp,
            environments=tuple(EnvironmentRecord.from_dict(e) for e in entries("Environments", "environments")),
            users=tuple(UserRecord.from_dict(u) for u in entries("Users", "users", "RoleAssignments")),
            connections=tuple(ConnectionRecord.from_dict(c) for c in entries("Connections", "connections")),
            flows=tuple(FlowRecord.from_dict(f) for f in entries("Flows", "flows")),
        )
