"""
Gateway configuration for PowerWatch.

Provides configuration management for the HTTP gateway, the snapshot
cache and its assessment engine, authentication, rate limiting and
logging.
"""

from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded or is unusable."""

    pass


def _as_bool(value: Any) -> bool:
    """Interpret a flag that may arrive as a string from JSON or the environment."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
        raise ConfigurationError(f"Invalid boolean value: {value!r}")
    if isinstance(value, int):
        return value != 0
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


def _parse_expiry(value: Any) -> datetime | None:
    """
    Normalise an API key expiry to an aware UTC datetime.

    YAML turns an unquoted 2030-01-01 into a date, which expires at
    midnight UTC on that day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid API key expiry: {value!r}") from e
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ConfigurationError(f"Invalid API key expiry: {value!r}")


class EngineType(Enum):
    """Supported assessment engine kinds."""

    COMMAND = "command"  # Run an external program that prints JSON
    FILE = "file"  # Read a previously exported result file


@dataclass
class ServerConfig:
    """Configuration for the HTTP listener."""

    host: str = "127.0.0.1"
    port: int = 8080

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"host": self.host, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerConfig:
        """Create from dictionary."""
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 8080)),
        )


@dataclass
class CacheConfig:
    """Configuration for the snapshot cache and its refresh timer."""

    ttl_minutes: int = 30
    refresh_interval_minutes: int = 60
    engine_timeout_minutes: int = 10
    refresh_on_startup: bool = True

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_minutes * 60.0

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_minutes * 60.0

    @property
    def engine_timeout_seconds(self) -> float:
        return self.engine_timeout_minutes * 60.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ttl_minutes": self.ttl_minutes,
            "refresh_interval_minutes": self.refresh_interval_minutes,
            "engine_timeout_minutes": self.engine_timeout_minutes,
            "refresh_on_startup": self.refresh_on_startup,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheConfig:
        """Create from dictionary."""
        return cls(
            ttl_minutes=int(data.get("ttl_minutes", 30)),
            refresh_interval_minutes=int(data.get("refresh_interval_minutes", 60)),
            engine_timeout_minutes=int(data.get("engine_timeout_minutes", 10)),
            refresh_on_startup=_as_bool(data.get("refresh_on_startup", True)),
        )


@dataclass
class EngineConfig:
    """Configuration for the assessment engine invocation."""

    type: EngineType = EngineType.COMMAND
    command: list[str] = field(default_factory=list)
    environment_filter_arg: str = "-EnvironmentName"
    environment_filter: str = ""
    path: str = ""  # Result file for the file engine
    working_dir: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "command": self.command,
            "environment_filter_arg": self.environment_filter_arg,
            "environment_filter": self.environment_filter,
            "path": self.path,
            "working_dir": self.working_dir,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create from dictionary."""
        command = data.get("command", [])
        if isinstance(command, str):
            command = shlex.split(command)
        return cls(
            type=EngineType(data.get("type", "command")),
            command=list(command),
            environment_filter_arg=data.get("environment_filter_arg", "-EnvironmentName"),
            environment_filter=data.get("environment_filter", ""),
            path=data.get("path", ""),
            working_dir=data.get("working_dir", ""),
        )


@dataclass
class APIKeyConfig:
    """A configured API key principal."""

    key: str
    name: str = ""
    permissions: list[str] = field(default_factory=lambda: ["read"])
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "name": self.name,
            "permissions": self.permissions,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> APIKeyConfig:
        """Create from dictionary."""
        expires_at = _parse_expiry(data.get("expires_at") or data.get("expiresAt"))
        return cls(
            key=data["key"],
            name=data.get("name", ""),
            permissions=list(data.get("permissions", ["read"])),
            expires_at=expires_at,
        )


@dataclass
class AuthConfig:
    """Configuration for request authentication."""

    enabled: bool = True
    api_keys: list[APIKeyConfig] = field(default_factory=list)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_leeway_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "api_keys": [k.to_dict() for k in self.api_keys],
            "jwt_secret": self.jwt_secret,
            "jwt_algorithm": self.jwt_algorithm,
            "jwt_leeway_seconds": self.jwt_leeway_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthConfig:
        """Create from dictionary."""
        return cls(
            enabled=_as_bool(data.get("enabled", True)),
            api_keys=[APIKeyConfig.from_dict(k) for k in data.get("api_keys", [])],
            jwt_secret=data.get("jwt_secret", ""),
            jwt_algorithm=data.get("jwt_algorithm", "HS256"),
            jwt_leeway_seconds=int(data.get("jwt_leeway_seconds", 0)),
        )


@dataclass
class RateLimitConfig:
    """Configuration for per-client rate limiting."""

    enabled: bool = True
    max_requests_per_minute: int = 100

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "max_requests_per_minute": self.max_requests_per_minute,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RateLimitConfig:
        """Create from dictionary."""
        return cls(
            enabled=_as_bool(data.get("enabled", True)),
            max_requests_per_minute=int(data.get("max_requests_per_minute", 100)),
        )


@dataclass
class CorsConfig:
    """Configuration for CORS response headers."""

    enabled: bool = True
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    allowed_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    allowed_headers: list[str] = field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-API-Key"]
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "allowed_origins": self.allowed_origins,
            "allowed_methods": self.allowed_methods,
            "allowed_headers": self.allowed_headers,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CorsConfig:
        """Create from dictionary."""
        defaults = cls()
        return cls(
            enabled=_as_bool(data.get("enabled", True)),
            allowed_origins=data.get("allowed_origins", defaults.allowed_origins),
            allowed_methods=data.get("allowed_methods", defaults.allowed_methods),
            allowed_headers=data.get("allowed_headers", defaults.allowed_headers),
        )


@dataclass
class SwaggerConfig:
    """Configuration for the API description endpoint."""

    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SwaggerConfig:
        """Create from dictionary."""
        return cls(enabled=_as_bool(data.get("enabled", True)))


@dataclass
class LoggingConfig:
    """Configuration for log output."""

    level: str = "INFO"
    format: str = "human"  # human or json

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"level": self.level, "format": self.format}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        """Create from dictionary."""
        return cls(
            level=data.get("level", "INFO"),
            format=data.get("format", "human"),
        )


@dataclass
class GatewayConfiguration:
    """
    Complete gateway configuration.

    This is the main configuration class that contains all settings
    for running the PowerWatch gateway.
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    swagger: SwaggerConfig = field(default_factory=SwaggerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> list[str]:
        """
        Check the configuration for problems.

        Returns:
            List of warning messages; empty when the configuration is sound
        """
        warnings = []

        if not self.auth.enabled:
            warnings.append(
                "Authentication is disabled; every request is granted read and admin"
            )
        elif not self.auth.api_keys and not self.auth.jwt_secret:
            warnings.append(
                "Authentication is enabled but no API keys or JWT secret are "
                "configured; every request will be rejected"
            )

        if self.auth.jwt_algorithm not in SUPPORTED_JWT_ALGORITHMS:
            warnings.append(f"Unsupported JWT algorithm: {self.auth.jwt_algorithm}")

        if self.engine.type == EngineType.COMMAND and not self.engine.command:
            warnings.append("Command engine configured without a command")
        if self.engine.type == EngineType.FILE and not self.engine.path:
            warnings.append("File engine configured without a result path")

        if self.cache.ttl_minutes <= 0:
            warnings.append("cache.ttl_minutes must be positive")
        if self.cache.refresh_interval_minutes <= 0:
            warnings.append("cache.refresh_interval_minutes must be positive")
        if self.cache.engine_timeout_minutes <= 0:
            warnings.append("cache.engine_timeout_minutes must be positive")
        if self.rate_limit.enabled and self.rate_limit.max_requests_per_minute <= 0:
            warnings.append("rate_limit.max_requests_per_minute must be positive")
        if not 0 <= self.server.port <= 65535:
            warnings.append(f"Invalid server port: {self.server.port}")

        return warnings

    def to_dict(self, redact: bool = False) -> dict[str, Any]:
        """
        Convert to dictionary.

        Args:
            redact: Mask API keys and the JWT secret
        """
        data = {
            "server": self.server.to_dict(),
            "cache": self.cache.to_dict(),
            "engine": self.engine.to_dict(),
            "auth": self.auth.to_dict(),
            "rate_limit": self.rate_limit.to_dict(),
            "cors": self.cors.to_dict(),
            "swagger": self.swagger.to_dict(),
            "logging": self.logging.to_dict(),
        }
        if redact:
            if data["auth"]["jwt_secret"]:
                data["auth"]["jwt_secret"] = "***"
            for key in data["auth"]["api_keys"]:
                key["key"] = "***"
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayConfiguration:
        """Create from dictionary."""
        data = data or {}
        return cls(
            server=ServerConfig.from_dict(data.get("server", {})),
            cache=CacheConfig.from_dict(data.get("cache", {})),
            engine=EngineConfig.from_dict(data.get("engine", {})),
            auth=AuthConfig.from_dict(data.get("auth", {})),
            rate_limit=RateLimitConfig.from_dict(data.get("rate_limit", {})),
            cors=CorsConfig.from_dict(data.get("cors", {})),
            swagger=SwaggerConfig.from_dict(data.get("swagger", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> GatewayConfiguration:
        """
        Load configuration from a JSON or YAML file.

        Raises:
            ConfigurationError: If the file is missing or cannot be parsed
        """
        path = os.path.expanduser(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.endswith(".json"):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot parse configuration file {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")

        try:
            return cls.from_dict(data or {})
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    def save(self, path: str) -> None:
        """Save configuration to file."""
        path = os.path.expanduser(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def load_config_from_env() -> GatewayConfiguration:
    """
    Load configuration from environment variables.

    Environment variables:
        POWERWATCH_CONFIG_FILE: Path to configuration file
        POWERWATCH_HOST: Listener host
        POWERWATCH_PORT: Listener port
        POWERWATCH_API_KEY: A single API key granted read permission
        POWERWATCH_JWT_SECRET: Shared secret for bearer tokens
        POWERWATCH_AUTH_ENABLED: Enable authentication (true/false)
        POWERWATCH_ENGINE_COMMAND: Assessment engine command line
        POWERWATCH_ENGINE_FILE: Assessment result file (file engine)
        POWERWATCH_ENVIRONMENT_FILTER: Environment name passed to the engine
        POWERWATCH_CACHE_TTL_MINUTES: Snapshot time-to-live
        POWERWATCH_REFRESH_INTERVAL_MINUTES: Background refresh interval
        POWERWATCH_REFRESH_ON_STARTUP: Refresh once at startup (true/false)
        POWERWATCH_RATE_LIMIT: Maximum requests per minute per client

    Returns:
        GatewayConfiguration instance
    """
    # Check for config file
    config_file = os.getenv("POWERWATCH_CONFIG_FILE")
    if config_file and os.path.exists(config_file):
        return GatewayConfiguration.from_file(config_file)

    # Build configuration from environment
    config = GatewayConfiguration()

    config.server.host = os.getenv("POWERWATCH_HOST", config.server.host)
    port = os.getenv("POWERWATCH_PORT")
    if port:
        config.server.port = int(port)

    # Authentication
    api_key = os.getenv("POWERWATCH_API_KEY")
    if api_key:
        config.auth.api_keys.append(APIKeyConfig(key=api_key, name="env"))
    config.auth.jwt_secret = os.getenv("POWERWATCH_JWT_SECRET", "")
    auth_enabled = os.getenv("POWERWATCH_AUTH_ENABLED")
    if auth_enabled:
        config.auth.enabled = _as_bool(auth_enabled)

    # Engine
    engine_file = os.getenv("POWERWATCH_ENGINE_FILE")
    engine_command = os.getenv("POWERWATCH_ENGINE_COMMAND")
    if engine_file:
        config.engine.type = EngineType.FILE
        config.engine.path = engine_file
    elif engine_command:
        config.engine.command = shlex.split(engine_command)
    config.engine.environment_filter = os.getenv("POWERWATCH_ENVIRONMENT_FILTER", "")

    # Cache
    ttl = os.getenv("POWERWATCH_CACHE_TTL_MINUTES")
    if ttl:
        config.cache.ttl_minutes = int(ttl)
    interval = os.getenv("POWERWATCH_REFRESH_INTERVAL_MINUTES")
    if interval:
        config.cache.refresh_interval_minutes = int(interval)
    on_startup = os.getenv("POWERWATCH_REFRESH_ON_STARTUP")
    if on_startup:
        config.cache.refresh_on_startup = _as_bool(on_startup)

    rate_limit = os.getenv("POWERWATCH_RATE_LIMIT")
    if rate_limit:
        config.rate_limit.max_requests_per_minute = int(rate_limit)

    return config


def load_config(path: str | None = None) -> GatewayConfiguration:
    """
    Load configuration from a file when given, otherwise from the environment.

    Raises:
        ConfigurationError: If the file cannot be loaded
    """
    if path:
        if not os.path.exists(os.path.expanduser(path)):
            raise ConfigurationError(f"Configuration file not found: {path}")
        return GatewayConfiguration.from_file(path)
    return load_config_from_env()
