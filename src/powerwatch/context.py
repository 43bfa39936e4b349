"""
Application context for PowerWatch.

Everything a request needs is built once at startup and handed to the
gateway: configuration, the snapshot cache, authentication, the rate
limiter, request statistics and the refresh scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from powerwatch.auth import AuthMiddleware
from powerwatch.cache import AssessmentEngine, CacheManager, create_engine
from powerwatch.config import ConfigurationError, GatewayConfiguration
from powerwatch.observability import PowerWatchLogger, get_logger
from powerwatch.scheduling import RateExpression, RefreshScheduler
from powerwatch.web.rate_limit import RateLimiter
from powerwatch.web.stats import GatewayStats


@dataclass
class AppContext:
    """
    Shared state of a running gateway.

    Attributes:
        config: Gateway configuration
        cache_manager: Holder of the current snapshot
        auth: Request authentication
        rate_limiter: Per-client rate limiter, None when disabled
        stats: Request counters
        scheduler: Background refresh timer
        logger: Gateway logger
    """

    config: GatewayConfiguration
    cache_manager: CacheManager
    auth: AuthMiddleware
    rate_limiter: RateLimiter | None = None
    stats: GatewayStats = field(default_factory=GatewayStats)
    scheduler: RefreshScheduler | None = None
    logger: PowerWatchLogger = field(default_factory=lambda: get_logger("gateway"))

    @classmethod
    def from_config(
        cls,
        config: GatewayConfiguration,
        engine: AssessmentEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> AppContext:
        """
        Build the context from configuration.

        Args:
            config: Gateway configuration
            engine: Assessment engine; built from config.engine when None
            clock: Source of the current UTC time for the cache

        Returns:
            AppContext ready to be started

        Raises:
            ConfigurationError: If a cache interval is not positive
        """
        for name, minutes in (
            ("refresh_interval_minutes", config.cache.refresh_interval_minutes),
            ("engine_timeout_minutes", config.cache.engine_timeout_minutes),
        ):
            if minutes <= 0:
                raise ConfigurationError(f"cache.{name} must be positive")

        if engine is None:
            engine = create_engine(config.engine)

        cache_manager = CacheManager(
            engine=engine,
            ttl_seconds=config.cache.ttl_seconds,
            engine_timeout=config.cache.engine_timeout_seconds,
            environment_filter=config.engine.environment_filter or None,
            clock=clock,
        )

        rate_limiter = None
        if config.rate_limit.enabled:
            rate_limiter = RateLimiter(
                max_requests_per_minute=config.rate_limit.max_requests_per_minute,
            )

        scheduler = RefreshScheduler(
            cache_manager,
            schedule=RateExpression.every(config.cache.refresh_interval_seconds),
            run_on_start=config.cache.refresh_on_startup,
        )

        return cls(
            config=config,
            cache_manager=cache_manager,
            auth=AuthMiddleware.from_config(config.auth),
            rate_limiter=rate_limiter,
            scheduler=scheduler,
        )

    def start(self) -> None:
        """Start background work."""
        for warning in self.config.validate():
            self.logger.warning(warning, event_type="config.warning")
        if self.scheduler is not None:
            self.scheduler.start()

    def stop(self) -> None:
        """Stop background work."""
        if self.scheduler is not None:
            self.scheduler.stop()
