"""
Per-client rate limiting for the PowerWatch gateway.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple


class RateLimiter:
    """
    Sliding-window rate limiter keyed by client IP.

    Each client's request times within the window are kept and pruned on
    every check. A request is rejected when the client already has the
    maximum number of requests in the window; rejected requests are not
    recorded.
    """

    # Sweep idle clients after this many checks
    SWEEP_EVERY = 1000

    def __init__(
        self,
        max_requests_per_minute: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._requests: Dict[str, Deque[float]] = {}
        self._checks = 0
        self._rejected = 0

    def check_and_record(
        self,
        client_ip: str,
        now: Optional[float] = None,
    ) -> Tuple[bool, Dict[str, Any]]:
        """
        Check whether a request is allowed and record it if so.

        Args:
            client_ip: Client address
            now: Current time in clock seconds

        Returns:
            Tuple of (allowed, info_dict)
        """
        if now is None:
            now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            self._checks += 1
            if self._checks % self.SWEEP_EVERY == 0:
                self._sweep(window_start)

            entry = self._requests.get(client_ip)
            if entry is None:
                entry = deque()
                self._requests[client_ip] = entry

            while entry and entry[0] <= window_start:
                entry.popleft()

            count = len(entry)
            info: Dict[str, Any] = {
                "limit": self.max_requests,
                "remaining": max(0, self.max_requests - count),
            }

            if count >= self.max_requests:
                self._rejected += 1
                oldest = entry[0] if entry else now
                info["retry_after"] = max(1, math.ceil(oldest + self.window_seconds - now))
                return False, info

            entry.append(now)
            info["remaining"] = max(0, self.max_requests - count - 1)
            return True, info

    def reset(self, client_ip: Optional[str] = None) -> None:
        """Forget recorded requests for one client or for all clients."""
        with self._lock:
            if client_ip is None:
                self._requests.clear()
            else:
                self._requests.pop(client_ip, None)

    def _sweep(self, window_start: float) -> None:
        idle = [
            ip for ip, entry in self._requests.items()
            if not entry or entry[-1] <= window_start
        ]
        for ip in idle:
            del self._requests[ip]

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        with self._lock:
            return {
                "tracked_clients": len(self._requests),
                "max_requests_per_minute": self.max_requests,
                "window_seconds": self.window_seconds,
                "total_checks": self._checks,
                "rejected": self._rejected,
            }
