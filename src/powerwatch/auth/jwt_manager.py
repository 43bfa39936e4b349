"""
JWT token management for PowerWatch.

Bearer tokens are HMAC-signed JWTs issued with a shared secret. The
signature over "header.payload" is verified before any claim is read.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from powerwatch.auth.models import PERMISSION_READ, TokenPayload


_HASH_FUNCTIONS = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}


# =============================================================================
# Exceptions
# =============================================================================

class JWTError(Exception):
    """Base JWT error."""
    pass


class TokenExpiredError(JWTError):
    """Token has expired."""
    pass


class InvalidTokenError(JWTError):
    """Token is invalid."""
    pass


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class JWTConfig:
    """
    JWT configuration.

    Attributes:
        secret_key: Shared secret for HMAC signing; empty disables bearer auth
        algorithm: Signing algorithm (HS256, HS384, HS512)
        leeway: Clock skew tolerance in seconds
    """
    secret_key: str = ""
    algorithm: str = "HS256"
    leeway: int = 0

    def __post_init__(self):
        if self.algorithm not in _HASH_FUNCTIONS:
            raise JWTError(f"Unsupported algorithm: {self.algorithm}")


# =============================================================================
# JWT Manager
# =============================================================================

class JWTManager:
    """
    JWT token manager.

    Handles token issuing and validation.
    """

    def __init__(self, config: Optional[JWTConfig] = None):
        """
        Initialize JWT manager.

        Args:
            config: JWT configuration
        """
        self.config = config or JWTConfig()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.secret_key)

    def encode(
        self,
        subject: str,
        permissions: Optional[List[str]] = None,
        expires_in: Optional[int] = 3600,
        extra_claims: Optional[Dict[str, Any]] = None,
        now: Optional[float] = None,
    ) -> str:
        """
        Issue a signed token.

        Args:
            subject: Principal name ("sub" claim)
            permissions: Permissions claim, ["read"] when omitted
            expires_in: Lifetime in seconds; None issues a token without "exp"
            extra_claims: Additional claims to include
            now: Issue time as Unix seconds

        Returns:
            Encoded token string

        Raises:
            JWTError: If no secret is configured
        """
        if not self.is_configured:
            raise JWTError("Cannot issue tokens without a secret key")

        issued_at = time.time() if now is None else now
        payload = TokenPayload(
            sub=subject,
            permissions=list(permissions) if permissions else [PERMISSION_READ],
            iat=issued_at,
            exp=issued_at + expires_in if expires_in is not None else None,
            claims=dict(extra_claims or {}),
        )
        return self._encode_token(payload.to_dict())

    def validate_token(self, token: str, now: Optional[float] = None) -> TokenPayload:
        """
        Validate a JWT token.

        Args:
            token: JWT token string
            now: Current time as Unix seconds

        Returns:
            TokenPayload with validated claims

        Raises:
            InvalidTokenError: If token is malformed, unsigned, signed with
                another algorithm or key, or not yet valid
            TokenExpiredError: If token has expired
        """
        if not self.is_configured:
            raise InvalidTokenError("Bearer authentication not configured")

        claims = self._decode_token(token)
        try:
            payload = TokenPayload.from_dict(claims)
        except ValueError as e:
            raise InvalidTokenError(str(e)) from e

        current = time.time() if now is None else now
        leeway = self.config.leeway

        if payload.exp is not None and current > payload.exp + leeway:
            raise TokenExpiredError("Token has expired")

        if payload.nbf is not None and current < payload.nbf - leeway:
            raise InvalidTokenError("Token is not yet valid")

        return payload

    def _encode_token(self, claims: Dict[str, Any]) -> str:
        header = {
            "alg": self.config.algorithm,
            "typ": "JWT",
        }

        header_b64 = self._base64url_encode(json.dumps(header, separators=(",", ":")).encode())
        payload_b64 = self._base64url_encode(json.dumps(claims, separators=(",", ":")).encode())

        message = f"{header_b64}.{payload_b64}"
        signature_b64 = self._base64url_encode(self._sign(message))

        return f"{message}.{signature_b64}"

    def _decode_token(self, token: str) -> Dict[str, Any]:
        parts = token.strip().split(".")
        if len(parts) != 3:
            raise InvalidTokenError("Invalid token format")

        header_b64, payload_b64, signature_b64 = parts

        try:
            header = json.loads(self._base64url_decode(header_b64))
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidTokenError(f"Failed to decode header: {e}") from e

        if not isinstance(header, dict) or header.get("alg") != self.config.algorithm:
            raise InvalidTokenError("Unexpected token algorithm")

        try:
            actual_signature = self._base64url_decode(signature_b64)
        except ValueError as e:
            raise InvalidTokenError("Invalid signature encoding") from e

        expected_signature = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_signature, actual_signature):
            raise InvalidTokenError("Invalid signature")

        try:
            claims = json.loads(self._base64url_decode(payload_b64))
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidTokenError(f"Failed to decode payload: {e}") from e

        if not isinstance(claims, dict):
            raise InvalidTokenError("Token payload must be a JSON object")

        return claims

    def _sign(self, message: str) -> bytes:
        """Create HMAC signature."""
        return hmac.new(
            self.config.secret_key.encode(),
            message.encode(),
            _HASH_FUNCTIONS[self.config.algorithm],
        ).digest()

    @staticmethod
    def _base64url_encode(data: bytes) -> str:
        """Base64url encode bytes without padding."""
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode()

    @staticmethod
    def _base64url_decode(data: str) -> bytes:
        """Base64url decode, restoring padding."""
        padding = 4 - len(data) % 4
        if padding != 4:
            data += "=" * padding
        return base64.urlsafe_b64decode(data.encode("ascii"))


def create_jwt_manager(
    secret_key: str = "",
    algorithm: str = "HS256",
    leeway: int = 0,
) -> JWTManager:
    """
    Factory function to create a JWT manager.

    Args:
        secret_key: Shared signing secret
        algorithm: Signing algorithm
        leeway: Clock skew tolerance in seconds

    Returns:
        Configured JWTManager
    """
    return JWTManager(JWTConfig(secret_key=secret_key, algorithm=algorithm, leeway=leeway))
