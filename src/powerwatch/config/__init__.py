"""
Configuration management for PowerWatch.

Provides configuration classes and utilities for the gateway listener,
snapshot cache, assessment engine, authentication and rate limiting.
"""

from powerwatch.config.gateway_config import (
    APIKeyConfig,
    AuthConfig,
    CacheConfig,
    ConfigurationError,
    CorsConfig,
    EngineConfig,
    EngineType,
    GatewayConfiguration,
    LoggingConfig,
    RateLimitConfig,
    ServerConfig,
    SwaggerConfig,
    load_config,
    load_config_from_env,
)

__all__ = [
    "APIKeyConfig",
    "AuthConfig",
    "CacheConfig",
    "ConfigurationError",
    "CorsConfig",
    "EngineConfig",
    "EngineType",
    "GatewayConfiguration",
    "LoggingConfig",
    "RateLimitConfig",
    "ServerConfig",
    "SwaggerConfig",
    "load_config",
    "load_config_from_env",
]
