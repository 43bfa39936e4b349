"""
HTTP gateway for PowerWatch.

This package serves the cached assessment snapshot as a read-only JSON
API with API key and bearer token authentication, CORS and per-client
rate limiting.
"""

from __future__ import annotations

from powerwatch.web.query import Pagination, QueryParameterError
from powerwatch.web.rate_limit import RateLimiter
from powerwatch.web.server import ROUTES, GatewayServer, Route
from powerwatch.web.stats import GatewayStats

__all__ = [
    "GatewayServer",
    "GatewayStats",
    "Pagination",
    "QueryParameterError",
    "ROUTES",
    "RateLimiter",
    "Route",
]
