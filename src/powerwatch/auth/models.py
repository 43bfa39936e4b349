"""
Authentication data models for PowerWatch.

Defines the principals the gateway recognises: configured API keys and
the claims carried by verified bearer tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# Permission granted to every principal by default.
PERMISSION_READ = "read"
# Permission that satisfies every permission check.
PERMISSION_ADMIN = "admin"


class AuthMethod(Enum):
    """How a request was authenticated."""

    NONE = "none"
    API_KEY = "api_key"
    JWT = "jwt"
    DISABLED = "disabled"  # Authentication turned off in configuration


@dataclass
class APIKey:
    """
    A configured API key principal.

    Attributes:
        key: The secret key value presented by clients
        name: Principal name reported on successful authentication
        permissions: Permissions granted to holders of the key
        expires_at: Optional expiry; expired keys are treated as unknown
    """

    key: str
    name: str = ""
    permissions: List[str] = field(default_factory=lambda: [PERMISSION_READ])
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the key is past its expiry."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, without the key value."""
        return {
            "name": self.name,
            "permissions": list(self.permissions),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class TokenPayload:
    """
    Claims of a verified bearer token.

    Attributes:
        sub: Subject (principal name)
        permissions: Granted permissions, ["read"] when the claim is absent
        exp: Expiry as Unix seconds
        nbf: Not-before as Unix seconds
        iat: Issued-at as Unix seconds
        claims: The complete decoded claim set
    """

    sub: str = ""
    permissions: List[str] = field(default_factory=lambda: [PERMISSION_READ])
    exp: Optional[float] = None
    nbf: Optional[float] = None
    iat: Optional[float] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a claim set suitable for encoding."""
        data = dict(self.claims)
        data["sub"] = self.sub
        data["permissions"] = list(self.permissions)
        for name in ("exp", "nbf", "iat"):
            value = getattr(self, name)
            if value is not None:
                data[name] = int(value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TokenPayload:
        """
        Create from decoded claims.

        Raises:
            ValueError: If a time claim is not numeric
        """
        permissions = data.get("permissions")
        if permissions is None:
            permissions = [PERMISSION_READ]
        elif isinstance(permissions, str):
            permissions = [p for p in permissions.replace(",", " ").split() if p]
        else:
            permissions = [str(p) for p in permissions]

        def number(name: str) -> Optional[float]:
            value = data.get(name)
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Claim '{name}' must be a number")
            return float(value)

        return cls(
            sub=str(data.get("sub", "")),
            permissions=permissions,
            exp=number("exp"),
            nbf=number("nbf"),
            iat=number("iat"),
            claims=dict(data),
        )
