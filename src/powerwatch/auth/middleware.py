"""
Authentication middleware for PowerWatch.

Turns request headers into an authorization decision and a permission
set. API keys are checked before bearer tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from powerwatch.auth.api_keys import APIKeyError, APIKeyManager
from powerwatch.auth.jwt_manager import JWTConfig, JWTError, JWTManager
from powerwatch.auth.models import PERMISSION_ADMIN, PERMISSION_READ, AuthMethod
from powerwatch.config import AuthConfig


API_KEY_HEADER = "X-API-Key"
AUTHORIZATION_HEADER = "Authorization"


# =============================================================================
# Auth Result
# =============================================================================

@dataclass
class AuthResult:
    """
    Result of an authentication attempt.

    Attributes:
        is_valid: Whether the request is authenticated
        principal: Name of the authenticated principal
        permissions: Permissions held by the principal
        auth_method: Scheme that authenticated the request
        error: Reason for failure
    """
    is_valid: bool
    principal: str = ""
    permissions: List[str] = field(default_factory=list)
    auth_method: AuthMethod = AuthMethod.NONE
    error: str = ""

    def has_permission(self, permission: str) -> bool:
        """A permission is held when granted directly or through admin."""
        if not self.is_valid:
            return False
        return PERMISSION_ADMIN in self.permissions or permission in self.permissions

    @classmethod
    def authenticated(
        cls,
        principal: str,
        permissions: List[str],
        auth_method: AuthMethod,
    ) -> AuthResult:
        """Create successful authentication result."""
        return cls(
            is_valid=True,
            principal=principal,
            permissions=list(permissions),
            auth_method=auth_method,
        )

    @classmethod
    def failed(cls, error: str, auth_method: AuthMethod = AuthMethod.NONE) -> AuthResult:
        """Create failed authentication result."""
        return cls(is_valid=False, error=error, auth_method=auth_method)

    @classmethod
    def disabled(cls) -> AuthResult:
        """Create result for requests when authentication is turned off."""
        return cls(
            is_valid=True,
            principal="anonymous",
            permissions=[PERMISSION_READ, PERMISSION_ADMIN],
            auth_method=AuthMethod.DISABLED,
        )


def _get_header(headers: Mapping[str, Any], name: str) -> str:
    """Case-insensitive header lookup over a dict or an HTTPMessage."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return str(value).strip()
    return ""


# =============================================================================
# Auth Middleware
# =============================================================================

class AuthMiddleware:
    """
    Authentication middleware.

    Credentials are taken from the X-API-Key header, an
    "Authorization: ApiKey <key>" header or an
    "Authorization: Bearer <token>" header, in that order. When an API key
    is supplied its outcome is final; a bad key is not retried as a token.
    """

    def __init__(
        self,
        enabled: bool = True,
        api_key_manager: Optional[APIKeyManager] = None,
        jwt_manager: Optional[JWTManager] = None,
    ):
        """
        Initialize authentication middleware.

        Args:
            enabled: Require authentication
            api_key_manager: API key manager
            jwt_manager: JWT token manager
        """
        self.enabled = enabled
        self.api_key_manager = api_key_manager or APIKeyManager()
        self.jwt_manager = jwt_manager or JWTManager()

    @classmethod
    def from_config(cls, config: AuthConfig) -> AuthMiddleware:
        """Create middleware from the auth configuration section."""
        return cls(
            enabled=config.enabled,
            api_key_manager=APIKeyManager.from_config(config.api_keys),
            jwt_manager=JWTManager(
                JWTConfig(
                    secret_key=config.jwt_secret,
                    algorithm=config.jwt_algorithm,
                    leeway=config.jwt_leeway_seconds,
                )
            ),
        )

    def authenticate(self, headers: Mapping[str, Any]) -> AuthResult:
        """
        Authenticate a request.

        Args:
            headers: Request headers

        Returns:
            AuthResult with authentication outcome
        """
        if not self.enabled:
            return AuthResult.disabled()

        authorization = _get_header(headers, AUTHORIZATION_HEADER)
        scheme, _, credentials = authorization.partition(" ")
        credentials = credentials.strip()

        api_key = _get_header(headers, API_KEY_HEADER)
        if not api_key and scheme.lower() == "apikey":
            api_key = credentials
        if api_key:
            return self._authenticate_api_key(api_key)

        if scheme.lower() == "bearer" and credentials:
            return self._authenticate_jwt(credentials)

        return AuthResult.failed("Authentication required")

    def authorize(self, result: AuthResult, required_permission: Optional[str] = None) -> bool:
        """
        Authorize an authenticated request.

        Routes without a required permission only need a valid result.
        """
        if not result.is_valid:
            return False
        if required_permission is None:
            return True
        return result.has_permission(required_permission)

    def _authenticate_api_key(self, api_key_value: str) -> AuthResult:
        try:
            api_key = self.api_key_manager.validate_key(api_key_value)
        except APIKeyError as e:
            return AuthResult.failed(str(e), auth_method=AuthMethod.API_KEY)

        return AuthResult.authenticated(
            principal=api_key.name or "api-key",
            permissions=api_key.permissions,
            auth_method=AuthMethod.API_KEY,
        )

    def _authenticate_jwt(self, token: str) -> AuthResult:
        try:
            payload = self.jwt_manager.validate_token(token)
        except JWTError as e:
            return AuthResult.failed(str(e), auth_method=AuthMethod.JWT)

        return AuthResult.authenticated(
            principal=payload.sub,
            permissions=payload.permissions,
            auth_method=AuthMethod.JWT,
        )
