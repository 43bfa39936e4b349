"""
End-to-end tests for PowerWatch.

Tests the complete workflow: configuration loading, startup refresh from
an exported assessment, serving the API, forced refreshes and serving a
stale snapshot after a failed refresh.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Generator

import pytest
import yaml

from powerwatch.config import GatewayConfiguration
from powerwatch.context import AppContext


API_KEY = "e2e-key"


@pytest.fixture
def result_file(tmp_path: Path, sample_engine_result: dict[str, Any]) -> Path:
    """Write the sample result as an exported assessment, with a banner line."""
    path = tmp_path / "assessment.json"
    path.write_text("Assessment complete\n" + json.dumps(sample_engine_result), encoding="utf-8-sig")
    return path


@pytest.fixture
def app_context(tmp_path: Path, result_file: Path) -> Generator[AppContext, None, None]:
    """Build and start a context from a configuration file."""
    config_path = tmp_path / "powerwatch.yaml"
    config_path.write_text(yaml.safe_dump({
        "server": {"host": "127.0.0.1", "port": 0},
        "cache": {"ttl_minutes": 30, "refresh_interval_minutes": 60, "refresh_on_startup": True},
        "engine": {"type": "file", "path": str(result_file)},
        "auth": {"api_keys": [{"key": API_KEY, "name": "e2e"}]},
        "rate_limit": {"max_requests_per_minute": 1000},
    }))
    config = GatewayConfiguration.from_file(str(config_path))
    context = AppContext.from_config(config)
    context.start()
    try:
        deadline = time.monotonic() + 10
        while context.cache_manager.generation < 1 and time.monotonic() < deadline:
            time.sleep(0.05)
        yield context
    finally:
        context.stop()


@pytest.fixture
def headers() -> dict[str, str]:
    """Return credentials for the end-to-end gateway."""
    return {"X-API-Key": API_KEY}


class TestEndToEnd:
    """End-to-end tests through the HTTP gateway."""

    def test_startup_refresh(self, api, headers) -> None:
        """Test that the startup refresh produced a healthy cache."""
        status, _, body = api("/api/health", headers=headers)

        assert status == 200
        assert body["status"] == "healthy"
        assert body["cache"]["generation"] == 1
        assert body["scheduler"]["running"] is True

    def test_summary_agrees_with_lists(self, api, headers) -> None:
        """Test that summary totals match each list endpoint."""
        _, _, summary = api("/api/summary", headers=headers)

        for path, key in (
            ("/api/environments", "totalEnvironments"),
            ("/api/users", "totalUsers"),
            ("/api/connections", "totalConnections"),
            ("/api/flows", "totalFlows"),
        ):
            _, _, body = api(path, headers=headers)
            assert body["pagination"]["totalCount"] == summary["overview"][key]

        _, _, findings = api("/api/findings", headers=headers)
        assert findings["pagination"]["totalCount"] == summary["security"]["totalFindings"]
        assert summary["security"]["overallRiskScore"] == sum(
            f["riskScore"] for f in findings["findings"]
        )

    def test_refresh_picks_up_new_export(
        self, api, headers, result_file: Path, sample_engine_result: dict[str, Any]
    ) -> None:
        """Test that a forced refresh installs a newer export."""
        sample_engine_result["Flows"] = sample_engine_result["Flows"][:1]
        result_file.write_text(json.dumps(sample_engine_result))

        status, _, body = api("/api/refresh", method="POST", headers=headers)

        assert status == 200
        assert body["refresh"]["generation"] == 2
        _, _, flows = api("/api/flows", headers=headers)
        assert flows["pagination"]["totalCount"] == 1
        _, _, summary = api("/api/summary", headers=headers)
        assert summary["overview"]["generation"] == 2
        assert summary["security"]["lowRiskFindings"] == 0

    def test_failed_refresh_serves_stale(self, api, headers, result_file: Path) -> None:
        """Test that a broken export leaves the previous snapshot in service."""
        result_file.write_text("Connect-AzAccount: authentication failed")

        status, _, body = api("/api/refresh", method="POST", headers=headers)

        assert status == 500
        assert body == {"error": "Cache refresh failed"}

        status, _, environments = api("/api/environments", headers=headers)
        assert status == 200
        assert environments["pagination"]["totalCount"] == 2

        _, _, health = api("/api/health", headers=headers)
        assert health["status"] == "degraded"
        assert health["cache"]["isStale"] is True
        assert health["cache"]["generation"] == 1
        assert "no JSON object" in health["cache"]["lastError"]
