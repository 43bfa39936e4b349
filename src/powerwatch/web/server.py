"""
HTTP gateway for PowerWatch.

Serves the JSON API over a threaded http.server. Every request passes
through the same lifecycle, in order: CORS headers and the OPTIONS
short-circuit, the per-client rate limit, authentication, routing by
exact method and path, and finally the endpoint handler.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from powerwatch import __version__
from powerwatch.observability import get_logger
from powerwatch.web import handlers
from powerwatch.web.query import QueryParameterError

if TYPE_CHECKING:
    from powerwatch.context import AppContext

logger = get_logger("web")


@dataclass(frozen=True)
class Route:
    """A routable endpoint."""

    handler: handlers.Handler
    required_permission: str | None = None


ROUTES: dict[tuple[str, str], Route] = {
    ("GET", "/api/summary"): Route(handlers.handle_summary),
    ("GET", "/api/environments"): Route(handlers.handle_environments),
    ("GET", "/api/users"): Route(handlers.handle_users),
    ("GET", "/api/connections"): Route(handlers.handle_connections),
    ("GET", "/api/flows"): Route(handlers.handle_flows),
    ("GET", "/api/findings"): Route(handlers.handle_findings),
    ("GET", "/api/health"): Route(handlers.handle_health),
    ("POST", "/api/refresh"): Route(handlers.handle_refresh),
    ("GET", "/swagger"): Route(handlers.handle_swagger),
}


class GatewayHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the application context."""

    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], context: AppContext):
        self.context = context
        super().__init__(server_address, GatewayRequestHandler)


class GatewayRequestHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the PowerWatch API.

    The application context is read from the owning server.
    """

    server: GatewayHTTPServer
    server_version = f"PowerWatch/{__version__}"

    def do_GET(self):
        """Handle GET requests."""
        self._dispatch("GET")

    def do_POST(self):
        """Handle POST requests."""
        self._dispatch("POST")

    def do_PUT(self):
        self._dispatch("PUT")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def do_PATCH(self):
        self._dispatch("PATCH")

    def do_HEAD(self):
        """Handle HEAD requests; headers only, the body is never written."""
        self._dispatch("HEAD")

    def do_OPTIONS(self):
        """Handle CORS preflight requests."""
        self._dispatch("OPTIONS")

    def _dispatch(self, method: str) -> None:
        started = time.monotonic()
        context = self.server.context
        parsed = urlparse(self.path)
        client_ip = self.client_address[0] if self.client_address else ""

        try:
            status, data, extra_headers = self._process(
                context, method, parsed.path, parsed.query, client_ip
            )
        except Exception as e:
            logger.error(
                "Unhandled error processing request",
                exc_info=True,
                path=parsed.path,
                error=str(e),
            )
            status, data, extra_headers = 500, {"error": "Internal server error"}, {}

        # Counted before sending so a client's next request sees this one
        context.stats.record_request(status)
        try:
            self._send(status, data, extra_headers)
        except OSError as e:
            # Client went away; nothing left to send
            logger.debug("Failed to write response", error=str(e), path=parsed.path)

        logger.request_completed(
            method=method,
            path=parsed.path,
            status=status,
            client_ip=client_ip,
            duration_ms=(time.monotonic() - started) * 1000,
        )

    def _process(
        self,
        context: AppContext,
        method: str,
        path: str,
        query_string: str,
        client_ip: str,
    ) -> tuple[int, dict[str, Any] | None, dict[str, str]]:
        """
        Run the request lifecycle.

        Returns:
            Tuple of (status, body, extra headers); a None body sends an
            empty response
        """
        config = context.config

        if method == "OPTIONS" and config.cors.enabled:
            self._drain_body()
            return 200, None, {}

        if config.rate_limit.enabled and context.rate_limiter is not None:
            allowed, info = context.rate_limiter.check_and_record(client_ip)
            if not allowed:
                logger.rate_limited(client_ip=client_ip, limit=info["limit"])
                return 429, {"error": "Rate limit exceeded"}, {
                    "Retry-After": str(info.get("retry_after", 60)),
                }

        auth_result = context.auth.authenticate(self.headers)
        if not auth_result.is_valid:
            logger.auth_failed(client_ip=client_ip, reason=auth_result.error, path=path)
            return 401, {"error": auth_result.error or "Authentication required"}, {
                "WWW-Authenticate": 'Bearer realm="powerwatch"',
            }

        route = ROUTES.get((method, path))
        if route is None:
            return 404, {"error": "Not found"}, {}

        if not context.auth.authorize(auth_result, route.required_permission):
            return 403, {"error": "Forbidden"}, {}

        self._drain_body()
        params = parse_qs(query_string)
        try:
            status, data = route.handler(context, params)
        except QueryParameterError as e:
            return 400, {"error": str(e)}, {}

        return status, data, {}

    def _drain_body(self) -> None:
        """Consume any request body so the connection stays well-formed."""
        try:
            length = int(self.headers.get("Content-Length", 0) or 0)
        except ValueError:
            length = 0
        if length > 0:
            self.rfile.read(length)

    def _send(
        self,
        status: int,
        data: dict[str, Any] | None,
        extra_headers: dict[str, str],
    ) -> None:
        body = b"" if data is None else json.dumps(data, default=str).encode("utf-8")

        self.send_response(status)
        if data is not None:
            self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        for name, value in self._cors_headers().items():
            self.send_header(name, value)
        for name, value in extra_headers.items():
            self.send_header(name, value)
        self.end_headers()
        if body and self.command != "HEAD":
            self.wfile.write(body)

    def send_error(self, code: int, message: str | None = None, explain: str | None = None):
        """
        Send an error raised by http.server itself, such as a malformed
        request line or an oversized URI, as a JSON body.
        """
        error = message or self.responses.get(code, ("Error",))[0]
        self.log_error("code %d, message %s", code, error)

        body = json.dumps({"error": error}).encode("utf-8")
        self.send_response(code, error)
        self.send_header("Connection", "close")
        if code >= 200 and code not in (204, 304):
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
        for name, value in self._cors_headers().items():
            self.send_header(name, value)
        self.end_headers()

        if self.command != "HEAD" and code >= 200 and code not in (204, 304):
            self.wfile.write(body)

    def _cors_headers(self) -> dict[str, str]:
        cors = self.server.context.config.cors
        if not cors.enabled:
            return {}

        headers = {
            "Access-Control-Allow-Methods": ", ".join(cors.allowed_methods),
            "Access-Control-Allow-Headers": ", ".join(cors.allowed_headers),
        }
        if "*" in cors.allowed_origins:
            headers["Access-Control-Allow-Origin"] = "*"
        else:
            # Absent when http.server rejects the request before parsing headers
            request_headers = getattr(self, "headers", None)
            origin = request_headers.get("Origin", "") if request_headers is not None else ""
            if origin in cors.allowed_origins:
                headers["Access-Control-Allow-Origin"] = origin
                headers["Vary"] = "Origin"
        return headers

    def log_message(self, format: str, *args):
        """Route http.server's access log through the PowerWatch logger."""
        logger.debug(format % args, client_ip=self.client_address[0] if self.client_address else "")


class GatewayServer:
    """
    HTTP server for the PowerWatch API.

    Binds lazily; with port 0 the operating system picks a free port and
    url reports the bound address.
    """

    def __init__(
        self,
        context: AppContext,
        host: str | None = None,
        port: int | None = None,
    ):
        """
        Initialize the server.

        Args:
            context: Application context shared by all requests
            host: Host to bind to (default: from configuration)
            port: Port to listen on (default: from configuration)
        """
        self.context = context
        self.host = host if host is not None else context.config.server.host
        self.port = port if port is not None else context.config.server.port
        self._server: GatewayHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _bind(self) -> GatewayHTTPServer:
        if self._server is None:
            self._server = GatewayHTTPServer((self.host, self.port), self.context)
            self.port = self._server.server_address[1]
        return self._server

    def start(self):
        """
        Start the HTTP server (blocking).

        This method blocks until the server is stopped.
        """
        server = self._bind()
        logger.info("PowerWatch gateway listening", url=self.url)

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            server.server_close()

    def start_background(self) -> threading.Thread:
        """
        Start server in background thread.

        Returns:
            Thread running the server
        """
        self._bind()
        self._thread = threading.Thread(
            target=self.start, name="powerwatch-http", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self):
        """Stop the server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        """Get the server URL."""
        return f"http://{self.host}:{self.port}"
