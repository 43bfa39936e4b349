"""
Unit tests for the PowerWatch HTTP gateway.

Runs a real gateway on a free local port and exercises the request
lifecycle: CORS, rate limiting, authentication, routing and handler
errors.
"""

from __future__ import annotations

import pytest

from powerwatch.auth import AuthMiddleware, JWTConfig, JWTManager
from powerwatch.context import AppContext
from powerwatch.web import GatewayServer, RateLimiter, Route
from powerwatch.web import server as server_module


# =============================================================================
# Authentication Tests
# =============================================================================


class TestGatewayAuthentication:
    """Tests for authentication at the gateway."""

    def test_missing_credentials(self, api) -> None:
        """Test that requests without credentials are rejected."""
        status, headers, body = api("/api/summary")

        assert status == 401
        assert body == {"error": "Authentication required"}
        assert "Bearer" in headers["WWW-Authenticate"]

    def test_invalid_api_key(self, api) -> None:
        """Test that an unknown key is rejected."""
        status, _, body = api("/api/summary", headers={"X-API-Key": "nope"})

        assert status == 401
        assert body["error"] == "API key not found"

    def test_api_key(self, api, read_headers) -> None:
        """Test a request authenticated with an API key."""
        status, headers, body = api("/api/summary", headers=read_headers)

        assert status == 200
        assert headers["Content-Type"] == "application/json; charset=utf-8"
        assert body["overview"]["totalEnvironments"] == 2

    def test_bearer_token(self, api, app_context: AppContext) -> None:
        """Test a request authenticated with a signed token."""
        token = JWTManager(JWTConfig(secret_key=app_context.config.auth.jwt_secret)).encode("alice")

        status, _, body = api("/api/environments", headers={"Authorization": f"Bearer {token}"})

        assert status == 200
        assert body["pagination"]["totalCount"] == 2

    def test_expired_token(self, api, app_context: AppContext) -> None:
        """Test that an expired token is rejected."""
        manager = JWTManager(JWTConfig(secret_key=app_context.config.auth.jwt_secret))
        token = manager.encode("alice", expires_in=60, now=1_000_000.0)

        status, _, body = api("/api/summary", headers={"Authorization": f"Bearer {token}"})

        assert status == 401
        assert body["error"] == "Token has expired"

    def test_health_requires_credentials(self, api) -> None:
        """Test that health is not a public endpoint."""
        assert api("/api/health")[0] == 401

    def test_auth_disabled(self, api, app_context: AppContext) -> None:
        """Test that disabled authentication admits anonymous requests."""
        app_context.auth = AuthMiddleware(enabled=False)

        assert api("/api/flows")[0] == 200


# =============================================================================
# Routing Tests
# =============================================================================


class TestGatewayRouting:
    """Tests for routing and handler errors."""

    def test_unknown_path(self, api, read_headers) -> None:
        """Test that unknown paths are 404 after authentication."""
        status, _, body = api("/api/unknown", headers=read_headers)

        assert status == 404
        assert body == {"error": "Not found"}

    def test_wrong_method(self, api, read_headers) -> None:
        """Test that routing matches on method as well as path."""
        assert api("/api/refresh", headers=read_headers)[0] == 404
        assert api("/api/summary", method="POST", headers=read_headers)[0] == 404

    def test_trailing_slash_is_not_matched(self, api, read_headers) -> None:
        """Test exact path matching."""
        assert api("/api/summary/", headers=read_headers)[0] == 404

    def test_head_request(self, api, read_headers) -> None:
        """Test that HEAD runs the request lifecycle without writing a body."""
        status, headers, body = api("/api/summary", method="HEAD")

        assert status == 401
        assert headers["Content-Type"] == "application/json; charset=utf-8"
        assert body is None

        assert api("/api/summary", method="HEAD", headers=read_headers)[0] == 404

    def test_unsupported_method_is_json(self, api, read_headers) -> None:
        """Test that errors raised by http.server itself carry a JSON body."""
        status, headers, body = api("/api/summary", method="TRACE", headers=read_headers)

        assert status == 501
        assert headers["Content-Type"] == "application/json; charset=utf-8"
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert "TRACE" in body["error"]

    def test_query_string_reaches_handler(self, api, read_headers) -> None:
        """Test filters and pagination over HTTP."""
        status, _, body = api("/api/findings?riskLevel=HIGH&pageSize=1", headers=read_headers)

        assert status == 200
        assert len(body["findings"]) == 1
        assert body["pagination"]["totalCount"] == 2
        assert body["pagination"]["hasNextPage"] is True

    def test_bad_parameter(self, api, read_headers) -> None:
        """Test that invalid parameters are 400."""
        status, _, body = api("/api/users?page=abc", headers=read_headers)

        assert status == 400
        assert "page" in body["error"]

    def test_refresh(self, api, read_headers, static_engine) -> None:
        """Test the forced refresh endpoint."""
        status, _, body = api("/api/refresh", method="POST", headers=read_headers)

        assert status == 200
        assert body["message"] == "Cache refreshed"
        assert body["refresh"]["generation"] == 1
        assert len(static_engine.calls) == 1

    def test_handler_exception(self, api, read_headers, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an unexpected handler error is a JSON 500."""

        def broken(context, params):
            raise RuntimeError("unexpected")

        monkeypatch.setitem(server_module.ROUTES, ("GET", "/api/summary"), Route(broken))

        status, _, body = api("/api/summary", headers=read_headers)

        assert status == 500
        assert body == {"error": "Internal server error"}

    def test_swagger(self, api, read_headers) -> None:
        """Test the API description endpoint."""
        status, _, body = api("/swagger", headers=read_headers)

        assert status == 200
        assert "/api/findings" in body["paths"]

    def test_health_counts_requests(self, api, read_headers) -> None:
        """Test that health reports request counters."""
        api("/api/unknown", headers=read_headers)
        api("/api/summary", headers=read_headers)

        status, _, body = api("/api/health", headers=read_headers)

        assert status == 200
        assert body["status"] == "healthy"
        assert body["totalRequests"] == 2
        assert body["successfulRequests"] == 1
        assert body["failedRequests"] == 1


# =============================================================================
# CORS and Rate Limit Tests
# =============================================================================


class TestGatewayCorsAndRateLimit:
    """Tests for CORS headers and rate limiting."""

    def test_options_preflight(self, api) -> None:
        """Test that preflight requests succeed without credentials."""
        status, headers, body = api("/api/summary", method="OPTIONS")

        assert status == 200
        assert body is None
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert "X-API-Key" in headers["Access-Control-Allow-Headers"]

    def test_cors_headers_on_errors(self, api) -> None:
        """Test that error responses carry CORS headers."""
        _, headers, _ = api("/api/summary")

        assert headers["Access-Control-Allow-Origin"] == "*"

    def test_origin_allow_list(self, api, app_context: AppContext, read_headers) -> None:
        """Test echoing an allowed origin."""
        app_context.config.cors.allowed_origins = ["https://dash.contoso.com"]

        _, allowed, _ = api("/api/summary", headers={**read_headers, "Origin": "https://dash.contoso.com"})
        _, denied, _ = api("/api/summary", headers={**read_headers, "Origin": "https://evil.example"})

        assert allowed["Access-Control-Allow-Origin"] == "https://dash.contoso.com"
        assert "Access-Control-Allow-Origin" not in denied

    def test_rate_limit(self, api, app_context: AppContext, read_headers) -> None:
        """Test that the request after the limit is rejected."""
        app_context.rate_limiter = RateLimiter(max_requests_per_minute=2)

        assert api("/api/summary", headers=read_headers)[0] == 200
        assert api("/api/summary", headers=read_headers)[0] == 200
        status, headers, body = api("/api/summary", headers=read_headers)

        assert status == 429
        assert body == {"error": "Rate limit exceeded"}
        assert int(headers["Retry-After"]) >= 1

    def test_rate_limit_precedes_auth(self, api, app_context: AppContext) -> None:
        """Test that unauthenticated requests count toward the limit."""
        app_context.rate_limiter = RateLimiter(max_requests_per_minute=1)

        assert api("/api/summary")[0] == 401
        assert api("/api/summary")[0] == 429


# =============================================================================
# Server Lifecycle Tests
# =============================================================================


class TestGatewayServer:
    """Tests for GatewayServer."""

    def test_port_zero_reports_bound_port(self, app_context: AppContext) -> None:
        """Test that url reflects the port chosen by the operating system."""
        server = GatewayServer(app_context, host="127.0.0.1", port=0)
        server.start_background()
        try:
            assert server.port != 0
            assert server.url == f"http://127.0.0.1:{server.port}"
        finally:
            server.stop()

    def test_defaults_from_config(self, app_context: AppContext) -> None:
        """Test that host and port come from configuration."""
        app_context.config.server.port = 9999

        server = GatewayServer(app_context)

        assert server.host == "127.0.0.1"
        assert server.port == 9999
