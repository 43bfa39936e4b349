"""
Pytest configuration and fixtures for PowerWatch tests.

This module provides common fixtures used across unit and integration tests.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Any, Callable, Generator

import pytest

from powerwatch.cache import CallableAssessmentEngine
from powerwatch.config import APIKeyConfig, GatewayConfiguration
from powerwatch.context import AppContext
from powerwatch.models import AssessmentSnapshot
from powerwatch.web import GatewayServer


TEST_API_KEY = "pw-test-key-0123456789"
TEST_ADMIN_KEY = "pw-admin-key-9876543210"
TEST_JWT_SECRET = "test-signing-secret"


# Sample data fixtures


@pytest.fixture
def sample_engine_result() -> dict[str, Any]:
    """Return an engine result record in the shape the assessment script prints."""
    return {
        "AssessmentDate": "2024-03-01T08:00:00Z",
        "Environments": [
            {
                "EnvironmentName": "env-prod",
                "DisplayName": "Contoso Production",
                "EnvironmentType": "Production",
                "Location": "unitedstates",
                "IsDefault": False,
                "CreatedTime": "2023-01-10T12:00:00Z",
                "DLPPolicies": 0,
                "SecurityFindings": ["No DLP policies configured - HIGH RISK"],
            },
            {
                "EnvironmentName": "env-dev",
                "DisplayName": "Contoso Development",
                "EnvironmentType": "Developer",
                "Location": "europe",
                "IsDefault": False,
                "DLPPolicies": 2,
                "SecurityFindings": [],
            },
        ],
        "Users": [
            {
                "EnvironmentName": "env-prod",
                "PrincipalDisplayName": "Ada Admin",
                "PrincipalEmail": "ada@contoso.com",
                "PrincipalType": "User",
                "RoleType": "EnvironmentAdmin",
                "SecurityFindings": [],
            },
            {
                "EnvironmentName": "env-prod",
                "PrincipalDisplayName": "Fabrikam Guest",
                "PrincipalEmail": "guest_fabrikam.com#EXT#@contoso.onmicrosoft.com",
                "PrincipalType": "User",
                "RoleType": "EnvironmentAdmin",
                "SecurityFindings": ["External guest with admin role - HIGH RISK"],
            },
            {
                "EnvironmentName": "env-dev",
                "PrincipalDisplayName": "Mia Maker",
                "PrincipalEmail": "mia@contoso.com",
                "PrincipalType": "User",
                "RoleType": "EnvironmentMaker",
            },
        ],
        "Connections": [
            {
                "ConnectionName": "conn-http",
                "DisplayName": "Outbound HTTP",
                "ConnectorName": "shared_http",
                "EnvironmentName": "env-prod",
                "CreatedBy": "ada@contoso.com",
                "Status": "Connected",
                "IsShared": True,
                "SecurityFindings": [
                    "HTTP connector allows arbitrary outbound calls - MEDIUM RISK"
                ],
            },
            {
                "ConnectionName": "conn-sp",
                "DisplayName": "SharePoint",
                "ConnectorName": "shared_sharepointonline",
                "EnvironmentName": "env-dev",
                "CreatedBy": "mia@contoso.com",
                "Status": "Connected",
                "IsShared": False,
                "SecurityFindings": [],
            },
        ],
        "Flows": [
            {
                "FlowName": "flow-webhook",
                "DisplayName": "Inbound webhook",
                "EnvironmentName": "env-prod",
                "CreatedBy": "ada@contoso.com",
                "State": "Started",
                "TriggerType": "Request",
                "Connectors": ["shared_http", "shared_office365"],
                "SecurityFindings": [
                    "Flow exposed through HTTP request trigger - MEDIUM RISK"
                ],
            },
            {
                "FlowName": "flow-nightly",
                "DisplayName": "Nightly export",
                "EnvironmentName": "env-dev",
                "CreatedBy": "former.employee@contoso.com",
                "State": "Stopped",
                "TriggerType": "Recurrence",
                "SecurityFindings": ["Flow owner has left the organisation"],
            },
        ],
    }


@pytest.fixture
def sample_snapshot(sample_engine_result: dict[str, Any]) -> AssessmentSnapshot:
    """Return the sample engine result parsed into a snapshot."""
    return AssessmentSnapshot.from_dict(sample_engine_result)


@pytest.fixture
def assessment_timestamp() -> datetime:
    """Return the assessment timestamp of the sample result."""
    return datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


# Configuration fixtures


@pytest.fixture
def gateway_config() -> GatewayConfiguration:
    """Return a gateway configuration with both credential types enabled."""
    config = GatewayConfiguration()
    config.server.host = "127.0.0.1"
    config.server.port = 0
    config.cache.refresh_on_startup = False
    config.auth.api_keys = [
        APIKeyConfig(key=TEST_API_KEY, name="dashboard", permissions=["read"]),
        APIKeyConfig(key=TEST_ADMIN_KEY, name="operator", permissions=["read", "admin"]),
    ]
    config.auth.jwt_secret = TEST_JWT_SECRET
    config.rate_limit.max_requests_per_minute = 1000
    return config


# Engine and context fixtures


class RecordingEngine(CallableAssessmentEngine):
    """Callable engine that counts its runs."""

    def __init__(self, func: Callable[[str | None], dict[str, Any]]):
        super().__init__(func)
        self.calls: list[str | None] = []

    def run(self, environment_filter=None, timeout=None):
        self.calls.append(environment_filter)
        return super().run(environment_filter, timeout)


@pytest.fixture
def static_engine(sample_engine_result: dict[str, Any]) -> RecordingEngine:
    """Return an engine that always produces the sample result."""
    return RecordingEngine(lambda environment_filter: sample_engine_result)


@pytest.fixture
def failing_engine() -> RecordingEngine:
    """Return an engine that always fails."""

    def fail(environment_filter: str | None) -> dict[str, Any]:
        raise RuntimeError("Power Platform admin API unavailable")

    return RecordingEngine(fail)


@pytest.fixture
def app_context(
    gateway_config: GatewayConfiguration,
    static_engine: RecordingEngine,
) -> AppContext:
    """Return an application context backed by the static engine."""
    return AppContext.from_config(gateway_config, engine=static_engine)


@pytest.fixture
def running_gateway(app_context: AppContext) -> Generator[GatewayServer, None, None]:
    """Start a gateway on a free local port for the duration of a test."""
    server = GatewayServer(app_context, host="127.0.0.1", port=0)
    server.start_background()
    try:
        yield server
    finally:
        server.stop()


# HTTP helpers


def http_request(
    url: str,
    method: str = "GET",
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, str], Any]:
    """
    Send a request and return (status, headers, decoded JSON body).

    Error statuses are returned rather than raised. An empty body decodes
    to None.
    """
    data = b"" if method in ("POST", "PUT", "PATCH") else None
    request = urllib.request.Request(url, data=data, method=method, headers=headers or {})
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            status = response.status
            response_headers = dict(response.headers.items())
            raw = response.read()
    except urllib.error.HTTPError as e:
        status = e.code
        response_headers = dict(e.headers.items())
        raw = e.read()
        e.close()

    body = json.loads(raw.decode("utf-8")) if raw else None
    return status, response_headers, body


@pytest.fixture
def api(running_gateway: GatewayServer) -> Callable[..., tuple[int, dict[str, str], Any]]:
    """Return a client for the running gateway; paths are relative to its URL."""

    def call(
        path: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, str], Any]:
        return http_request(f"{running_gateway.url}{path}", method=method, headers=headers)

    return call


@pytest.fixture
def read_headers() -> dict[str, str]:
    """Return headers carrying the read-only API key."""
    return {"X-API-Key": TEST_API_KEY}
