"""
Authentication for PowerWatch.

Provides API key and HMAC-signed bearer token authentication for the
HTTP gateway.

Components:
- APIKeyManager: Validates configured API keys
- JWTManager: Issues and verifies signed bearer tokens
- AuthMiddleware: Turns request headers into an AuthResult
"""

from powerwatch.auth.api_keys import (
    APIKeyError,
    APIKeyExpiredError,
    APIKeyManager,
    APIKeyNotFoundError,
)
from powerwatch.auth.jwt_manager import (
    InvalidTokenError,
    JWTConfig,
    JWTError,
    JWTManager,
    TokenExpiredError,
    create_jwt_manager,
)
from powerwatch.auth.middleware import (
    AuthMiddleware,
    AuthResult,
)
from powerwatch.auth.models import (
    PERMISSION_ADMIN,
    PERMISSION_READ,
    APIKey,
    AuthMethod,
    TokenPayload,
)

__all__ = [
    # API keys
    "APIKeyError",
    "APIKeyExpiredError",
    "APIKeyManager",
    "APIKeyNotFoundError",
    # JWT
    "InvalidTokenError",
    "JWTConfig",
    "JWTError",
    "JWTManager",
    "TokenExpiredError",
    "create_jwt_manager",
    # Middleware
    "AuthMiddleware",
    "AuthResult",
    # Models
    "PERMISSION_ADMIN",
    "PERMISSION_READ",
    "APIKey",
    "AuthMethod",
    "TokenPayload",
]
