"""
Endpoint handlers for the PowerWatch API.

Each handler receives the application context and the parsed query
parameters and returns a (status, data) pair. List endpoints project the
snapshot's records to response objects, apply equality filters, paginate
and wrap the page in the list envelope.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from powerwatch.models import (
    RISK_LEVEL_HIGH,
    RISK_LEVEL_LOW,
    RISK_LEVEL_MEDIUM,
    AssessmentSnapshot,
    Finding,
    RiskScope,
    risk_level,
    risk_score_from_counts,
)
from powerwatch.web.query import apply_filters, envelope, paginate, utc_now_iso
from powerwatch.web.swagger import build_openapi_document

if TYPE_CHECKING:
    from powerwatch.context import AppContext


HandlerResult = tuple[int, dict[str, Any]]
Handler = Callable[["AppContext", dict[str, list[str]]], HandlerResult]

DEFAULT_ENVIRONMENT_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 100

CATEGORY_ENVIRONMENT = "Environment Security"
CATEGORY_ACCESS = "Access Control"
CATEGORY_CONNECTION = "Connection Security"
CATEGORY_FLOW = "Flow Security"


# ==================== Snapshot projections ====================

def list_environments(
    snapshot: AssessmentSnapshot,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    """Environments filtered by riskLevel and environmentType."""
    items = [env.to_dict() for env in snapshot.environments]
    items = apply_filters(
        items,
        params,
        string_fields=("environmentType",),
        upper_fields=("riskLevel",),
    )
    page, pagination = paginate(items, params, DEFAULT_ENVIRONMENT_PAGE_SIZE)
    return envelope("environments", page, pagination)


def list_users(
    snapshot: AssessmentSnapshot,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    """Role assignments filtered by environment, role and principal type."""
    items = [user.to_dict() for user in snapshot.users]
    items = apply_filters(
        items,
        params,
        string_fields=("environmentName", "roleType", "principalType"),
        bool_fields=("requiresReview",),
    )
    page, pagination = paginate(items, params, DEFAULT_PAGE_SIZE)
    return envelope("users", page, pagination)


def list_connections(
    snapshot: AssessmentSnapshot,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    """Connections filtered by environment, connector and risk flags."""
    items = [conn.to_dict() for conn in snapshot.connections]
    items = apply_filters(
        items,
        params,
        string_fields=("environmentName", "connectorName"),
        bool_fields=("isHighRisk", "requiresAction"),
    )
    page, pagination = paginate(items, params, DEFAULT_PAGE_SIZE)
    return envelope("connections", page, pagination)


def list_flows(
    snapshot: AssessmentSnapshot,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    """Flows filtered by environment, state and trigger flags."""
    items = [flow.to_dict() for flow in snapshot.flows]
    items = apply_filters(
        items,
        params,
        string_fields=("environmentName",),
        bool_fields=("isEnabled", "hasHttpTrigger", "requiresReview"),
    )
    page, pagination = paginate(items, params, DEFAULT_PAGE_SIZE)
    return envelope("flows", page, pagination)


def _finding_entry(
    finding_id: int,
    category: str,
    resource_type: str,
    resource_name: str,
    environment_name: str,
    finding: Finding,
) -> dict[str, Any]:
    return {
        "findingId": finding_id,
        "category": category,
        "resourceType": resource_type,
        "resourceName": resource_name,
        "environmentName": environment_name,
        "description": finding.message,
        "riskLevel": finding.severity.value,
        "riskScore": finding.risk_score,
    }


def flatten_findings(snapshot: AssessmentSnapshot) -> list[dict[str, Any]]:
    """
    Flatten every record's findings into one list.

    Finding ids are 1-based and follow snapshot order: environments, then
    users, connections and flows.
    """
    sources = []
    for env in snapshot.environments:
        sources.append((CATEGORY_ENVIRONMENT, "Environment",
                        env.display_name or env.environment_name,
                        env.environment_name, env.findings))
    for user in snapshot.users:
        sources.append((CATEGORY_ACCESS, "User",
                        user.principal_name or user.principal_email,
                        user.environment_name, user.findings))
    for conn in snapshot.connections:
        sources.append((CATEGORY_CONNECTION, "Connection",
                        conn.display_name or conn.connection_name,
                        conn.environment_name, conn.findings))
    for flow in snapshot.flows:
        sources.append((CATEGORY_FLOW, "Flow",
                        flow.display_name or flow.flow_name,
                        flow.environment_name, flow.findings))

    entries = []
    for category, resource_type, resource_name, environment_name, findings in sources:
        for finding in findings:
            entries.append(
                _finding_entry(
                    len(entries) + 1,
                    category,
                    resource_type,
                    resource_name,
                    environment_name,
                    finding,
                )
            )
    return entries


def list_findings(
    snapshot: AssessmentSnapshot,
    params: dict[str, list[str]],
) -> dict[str, Any]:
    """Flattened findings, highest risk first."""
    items = apply_filters(
        flatten_findings(snapshot),
        params,
        string_fields=("category", "environmentName", "resourceType"),
        upper_fields=("riskLevel",),
    )
    # sorted() is stable, so equal scores keep snapshot order
    items = sorted(items, key=lambda item: item["riskScore"], reverse=True)
    page, pagination = paginate(items, params, DEFAULT_PAGE_SIZE)
    return envelope("findings", page, pagination)


def _distribution(levels: list[str]) -> dict[str, int]:
    return {
        RISK_LEVEL_HIGH: levels.count(RISK_LEVEL_HIGH),
        RISK_LEVEL_MEDIUM: levels.count(RISK_LEVEL_MEDIUM),
        RISK_LEVEL_LOW: levels.count(RISK_LEVEL_LOW),
    }


def build_recommendations(snapshot: AssessmentSnapshot) -> list[dict[str, Any]]:
    """Generate remediation recommendations from snapshot counts."""
    recommendations = []

    def add(priority: str, category: str, count: int, text: str) -> None:
        if count > 0:
            recommendations.append({
                "priority": priority,
                "category": category,
                "affectedCount": count,
                "recommendation": text.format(count=count),
            })

    add(
        RISK_LEVEL_HIGH,
        CATEGORY_ENVIRONMENT,
        sum(1 for env in snapshot.environments if not env.has_dlp_policies),
        "Configure DLP policies for {count} environment(s) without data loss prevention coverage",
    )
    add(
        RISK_LEVEL_HIGH,
        CATEGORY_ACCESS,
        sum(1 for user in snapshot.users if user.is_external_guest and user.is_admin),
        "Remove administrative roles from {count} external guest user(s)",
    )
    add(
        RISK_LEVEL_HIGH,
        CATEGORY_CONNECTION,
        sum(1 for conn in snapshot.connections if conn.is_high_risk),
        "Review {count} connection(s) that use high-risk connectors",
    )
    add(
        RISK_LEVEL_MEDIUM,
        CATEGORY_FLOW,
        sum(1 for flow in snapshot.flows if flow.is_enabled and flow.has_http_trigger),
        "Secure {count} enabled flow(s) triggered by HTTP requests",
    )
    add(
        RISK_LEVEL_MEDIUM,
        CATEGORY_ACCESS,
        sum(1 for user in snapshot.users if user.is_external_guest),
        "Review access granted to {count} external guest assignment(s)",
    )

    if not recommendations:
        recommendations.append({
            "priority": RISK_LEVEL_LOW,
            "category": "General",
            "affectedCount": 0,
            "recommendation": "No immediate actions required; continue regular assessments",
        })
    return recommendations


def build_summary(snapshot: AssessmentSnapshot) -> dict[str, Any]:
    """Aggregate counts, risk distribution and recommendations."""
    summary = snapshot.summary
    overall_score = risk_score_from_counts(
        summary.high_findings, summary.medium_findings, summary.low_findings
    )

    return {
        "overview": {
            "totalEnvironments": summary.total_environments,
            "totalUsers": summary.total_users,
            "totalConnections": summary.total_connections,
            "totalFlows": summary.total_flows,
            "assessmentDate": snapshot.timestamp.isoformat(),
            "generation": snapshot.generation,
        },
        "security": {
            "totalFindings": summary.total_findings,
            "highRiskFindings": summary.high_findings,
            "mediumRiskFindings": summary.medium_findings,
            "lowRiskFindings": summary.low_findings,
            "overallRiskScore": overall_score,
            "overallRiskLevel": risk_level(overall_score, RiskScope.OVERALL),
            "externalGuestUsers": sum(1 for u in snapshot.users if u.is_external_guest),
            "highRiskConnections": sum(1 for c in snapshot.connections if c.is_high_risk),
            "httpTriggeredFlows": sum(1 for f in snapshot.flows if f.has_http_trigger),
        },
        "riskDistribution": {
            "environments": _distribution([e.risk_level for e in snapshot.environments]),
            "connections": _distribution([c.risk_level for c in snapshot.connections]),
            "flows": _distribution([f.risk_level for f in snapshot.flows]),
        },
        "recommendations": build_recommendations(snapshot),
        "lastUpdated": utc_now_iso(),
    }


# ==================== Route handlers ====================

def handle_summary(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, build_summary(context.cache_manager.get_snapshot())


def handle_environments(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, list_environments(context.cache_manager.get_snapshot(), params)


def handle_users(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, list_users(context.cache_manager.get_snapshot(), params)


def handle_connections(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, list_connections(context.cache_manager.get_snapshot(), params)


def handle_flows(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, list_flows(context.cache_manager.get_snapshot(), params)


def handle_findings(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    return 200, list_findings(context.cache_manager.get_snapshot(), params)


def handle_health(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    """Liveness, request counters and cache metadata."""
    metadata = context.cache_manager.get_metadata()
    if metadata.last_refresh is None:
        status = "initializing" if metadata.refresh_in_progress else "degraded"
    elif metadata.is_stale:
        status = "degraded"
    else:
        status = "healthy"

    data = {
        "status": status,
        "uptimeSeconds": round(context.stats.uptime_seconds, 3),
        "startTime": context.stats.start_time.isoformat(),
        **context.stats.to_dict(),
        "cache": metadata.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if context.scheduler is not None:
        data["scheduler"] = {
            "running": context.scheduler.is_running(),
            "intervalSeconds": context.scheduler.schedule.interval.total_seconds(),
        }
    return 200, data


def handle_refresh(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    """Forced synchronous refresh bounded by the engine timeout."""
    result = context.cache_manager.refresh_snapshot(force=True)
    if not result.success:
        return 500, {"error": "Cache refresh failed"}
    return 200, {
        "message": "Cache refreshed",
        "refresh": result.to_dict(),
        "cache": context.cache_manager.get_metadata().to_dict(),
        "lastUpdated": utc_now_iso(),
    }


def handle_swagger(context: AppContext, params: dict[str, list[str]]) -> HandlerResult:
    if not context.config.swagger.enabled:
        return 404, {"error": "Not found"}
    return 200, build_openapi_document()
