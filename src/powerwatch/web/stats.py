"""
Request statistics for the PowerWatch gateway.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any


class GatewayStats:
    """
    Process-wide request counters.

    Advisory only; nothing in the gateway makes decisions from them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.start_time = datetime.now(timezone.utc)
        self._started = time.monotonic()
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.last_request_time: datetime | None = None

    def record_request(self, status: int) -> None:
        """Count a completed request by its response status."""
        with self._lock:
            self.total_requests += 1
            if status < 400:
                self.successful_requests += 1
            else:
                self.failed_requests += 1
            self.last_request_time = datetime.now(timezone.utc)

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response shape."""
        with self._lock:
            return {
                "totalRequests": self.total_requests,
                "successfulRequests": self.successful_requests,
                "failedRequests": self.failed_requests,
                "lastRequestTime": (
                    self.last_request_time.isoformat() if self.last_request_time else None
                ),
            }
