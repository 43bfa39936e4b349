"""
Snapshot cache for PowerWatch.

The CacheManager owns the single current AssessmentSnapshot. Readers take
a reference to it and never block on a refresh once a snapshot exists.
Refreshes are single-flight: callers arriving while a refresh runs wait
for it and share its result instead of invoking the engine again.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from powerwatch.cache.engine import (
    AssessmentEngine,
    AssessmentTimeoutError,
)
from powerwatch.models import AssessmentSnapshot
from powerwatch.observability import get_logger


DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_ENGINE_TIMEOUT_SECONDS = 10 * 60


class RefreshStatus(Enum):
    """Outcome of a refresh request."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Snapshot still within its TTL


@dataclass
class RefreshResult:
    """
    Result of a refresh request.

    Attributes:
        status: Outcome of the refresh
        generation: Generation of the snapshot current after the refresh
        started_at: When the refresh started
        completed_at: When the refresh finished
        duration_seconds: Wall time spent in the engine
        error: Error message for failed refreshes
    """

    status: RefreshStatus
    generation: int
    started_at: datetime
    completed_at: datetime
    duration_seconds: float = 0.0
    error: str = ""

    @property
    def success(self) -> bool:
        return self.status != RefreshStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response shape."""
        data = {
            "status": self.status.value,
            "generation": self.generation,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "durationSeconds": round(self.duration_seconds, 3),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class CacheMetadata:
    """Point-in-time view of the cache state."""

    entry_count: int
    generation: int
    last_refresh: datetime | None
    snapshot_timestamp: datetime | None
    is_stale: bool
    refresh_in_progress: bool
    last_error: str
    last_error_time: datetime | None
    refresh_count: int
    failure_count: int
    ttl_seconds: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response shape."""
        return {
            "entryCount": self.entry_count,
            "generation": self.generation,
            "lastRefresh": self.last_refresh.isoformat() if self.last_refresh else None,
            "snapshotTimestamp": (
                self.snapshot_timestamp.isoformat() if self.snapshot_timestamp else None
            ),
            "isStale": self.is_stale,
            "refreshInProgress": self.refresh_in_progress,
            "lastError": self.last_error or None,
            "lastErrorTime": self.last_error_time.isoformat() if self.last_error_time else None,
            "refreshCount": self.refresh_count,
            "failureCount": self.failure_count,
            "ttlSeconds": self.ttl_seconds,
        }


class _InFlightRefresh:
    """A running refresh that late callers can wait on."""

    def __init__(self) -> None:
        self.result: RefreshResult | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheManager:
    """
    Holds the current assessment snapshot and decides when to refresh it.

    A failed refresh never discards a usable snapshot: the previous one is
    kept and marked stale. When there is no previous snapshot an empty one
    is installed so that readers always get a well-formed value, while the
    last successful refresh time stays unset so the next timer tick retries.

    Example:
        >>> cache = CacheManager(engine, ttl_seconds=1800)
        >>> snapshot = cache.get_snapshot()
        >>> result = cache.refresh_snapshot(force=True)
    """

    def __init__(
        self,
        engine: AssessmentEngine,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        engine_timeout: float | None = DEFAULT_ENGINE_TIMEOUT_SECONDS,
        environment_filter: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the cache manager.

        Args:
            engine: Assessment engine producing result records
            ttl_seconds: Age after which a snapshot is refreshed
            engine_timeout: Upper bound in seconds for one engine run
            environment_filter: Environment name passed to the engine
            clock: Source of the current UTC time
        """
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.engine_timeout = engine_timeout
        self.environment_filter = environment_filter or None
        self._clock = clock or _utcnow
        self._logger = get_logger("cache")

        # Guards the snapshot slot and the fields describing it
        self._lock = threading.Lock()
        self._snapshot: AssessmentSnapshot | None = None
        self._last_refresh: datetime | None = None
        self._stale = False
        self._last_error = ""
        self._last_error_time: datetime | None = None
        self._generation = 0
        self._refresh_count = 0
        self._failure_count = 0

        # Single-flight coordination
        self._refresh_cond = threading.Condition()
        self._inflight: _InFlightRefresh | None = None

    def get_snapshot(self) -> AssessmentSnapshot:
        """
        Get the current snapshot.

        Blocks on a forced refresh only when no snapshot has ever been
        installed; otherwise returns immediately.
        """
        with self._lock:
            snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        self.refresh_snapshot(force=True)
        with self._lock:
            # A failed first refresh installs the empty placeholder
            return self._snapshot or AssessmentSnapshot.empty()

    def refresh_snapshot(self, force: bool = False) -> RefreshResult:
        """
        Refresh the snapshot from the assessment engine.

        Args:
            force: Refresh even when the snapshot is within its TTL

        Returns:
            RefreshResult describing the outcome. Callers that joined an
            in-flight refresh receive that refresh's result.
        """
        with self._refresh_cond:
            inflight = self._inflight
            if inflight is not None:
                self._logger.debug("Joining in-flight cache refresh")
                while inflight.result is None:
                    self._refresh_cond.wait()
                return inflight.result

            if not force and self._is_fresh():
                now = self._clock()
                return RefreshResult(
                    status=RefreshStatus.SKIPPED,
                    generation=self.generation,
                    started_at=now,
                    completed_at=now,
                )

            inflight = _InFlightRefresh()
            self._inflight = inflight

        result = None
        try:
            result = self._run_refresh(force)
        finally:
            with self._refresh_cond:
                if result is None:
                    now = self._clock()
                    result = RefreshResult(
                        status=RefreshStatus.FAILED,
                        generation=self.generation,
                        started_at=now,
                        completed_at=now,
                        error="Refresh aborted",
                    )
                inflight.result = result
                self._inflight = None
                self._refresh_cond.notify_all()
        return result

    def install_snapshot(self, snapshot: AssessmentSnapshot) -> AssessmentSnapshot:
        """
        Install a snapshot produced outside the engine, such as a preloaded
        export.

        Returns:
            The installed snapshot stamped with its generation
        """
        with self._lock:
            self._generation += 1
            installed = snapshot.with_generation(self._generation)
            self._snapshot = installed
            self._last_refresh = self._clock()
            self._stale = False
        return installed

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def last_refresh(self) -> datetime | None:
        with self._lock:
            return self._last_refresh

    def is_refreshing(self) -> bool:
        """Check whether a refresh is running."""
        with self._refresh_cond:
            return self._inflight is not None

    def get_metadata(self) -> CacheMetadata:
        """Get a consistent view of the cache state."""
        refreshing = self.is_refreshing()
        with self._lock:
            expired = not self._is_fresh_locked()
            has_data = self._snapshot is not None and self._last_refresh is not None
            return CacheMetadata(
                entry_count=1 if self._snapshot is not None else 0,
                generation=self._generation,
                last_refresh=self._last_refresh,
                snapshot_timestamp=self._snapshot.timestamp if self._snapshot else None,
                is_stale=self._stale or (has_data and expired),
                refresh_in_progress=refreshing,
                last_error=self._last_error,
                last_error_time=self._last_error_time,
                refresh_count=self._refresh_count,
                failure_count=self._failure_count,
                ttl_seconds=self.ttl_seconds,
            )

    def _is_fresh(self) -> bool:
        with self._lock:
            return self._is_fresh_locked()

    def _is_fresh_locked(self) -> bool:
        if self._last_refresh is None:
            return False
        age = self._clock() - self._last_refresh
        return age < timedelta(seconds=self.ttl_seconds)

    def _run_refresh(self, force: bool) -> RefreshResult:
        started_at = self._clock()
        started = time.monotonic()
        self._logger.refresh_started(forced=force, environment_filter=self.environment_filter)

        try:
            raw = self._invoke_engine()
            snapshot = AssessmentSnapshot.from_dict(raw)
        except Exception as e:
            duration = time.monotonic() - started
            return self._record_failure(e, started_at, duration)

        duration = time.monotonic() - started
        installed = self.install_snapshot(snapshot)
        with self._lock:
            self._refresh_count += 1

        self._logger.refresh_completed(
            generation=installed.generation,
            record_count=(
                installed.summary.total_environments
                + installed.summary.total_users
                + installed.summary.total_connections
                + installed.summary.total_flows
            ),
            finding_count=installed.summary.total_findings,
            duration_seconds=duration,
        )
        return RefreshResult(
            status=RefreshStatus.SUCCEEDED,
            generation=installed.generation,
            started_at=started_at,
            completed_at=self._clock(),
            duration_seconds=duration,
        )

    def _record_failure(
        self,
        error: Exception,
        started_at: datetime,
        duration: float,
    ) -> RefreshResult:
        message = str(error) or error.__class__.__name__
        with self._lock:
            serving_stale = self._snapshot is not None and self._last_refresh is not None
            if self._snapshot is None:
                self._snapshot = AssessmentSnapshot.empty(self._clock())
            else:
                self._stale = serving_stale
            self._last_error = message
            self._last_error_time = self._clock()
            self._failure_count += 1
            generation = self._generation

        self._logger.refresh_failed(error=message, serving_stale=serving_stale)
        return RefreshResult(
            status=RefreshStatus.FAILED,
            generation=generation,
            started_at=started_at,
            completed_at=self._clock(),
            duration_seconds=duration,
            error=message,
        )

    def _invoke_engine(self) -> dict[str, Any]:
        """
        Run the engine on a worker thread bounded by the engine timeout.

        Engines that ignore the timeout are abandoned on their daemon
        thread once it expires.
        """
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["result"] = self.engine.run(
                    self.environment_filter, self.engine_timeout
                )
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=target, name="powerwatch-engine", daemon=True)
        worker.start()
        worker.join(self.engine_timeout)

        if worker.is_alive():
            raise AssessmentTimeoutError(
                f"Assessment engine did not finish within {self.engine_timeout} seconds"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]
