"""
API key management for PowerWatch.

Holds the configured API key principals and validates presented keys.
"""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from powerwatch.auth.models import APIKey
from powerwatch.config import APIKeyConfig


# =============================================================================
# Exceptions
# =============================================================================

class APIKeyError(Exception):
    """Base API key error."""
    pass


class APIKeyNotFoundError(APIKeyError):
    """API key not found."""
    pass


class APIKeyExpiredError(APIKeyError):
    """API key has expired."""
    pass


# =============================================================================
# API Key Manager
# =============================================================================

class APIKeyManager:
    """
    API key manager.

    Keys are compared with hmac.compare_digest against every configured
    record so that the time taken does not depend on which key matched.
    """

    def __init__(self, keys: Optional[Iterable[APIKey]] = None):
        """
        Initialize API key manager.

        Args:
            keys: Configured API keys
        """
        self._keys: List[APIKey] = list(keys or [])

    @classmethod
    def from_config(cls, configs: Iterable[APIKeyConfig]) -> APIKeyManager:
        """Create a manager from configuration records."""
        return cls(
            APIKey(
                key=c.key,
                name=c.name,
                permissions=list(c.permissions),
                expires_at=c.expires_at,
            )
            for c in configs
        )

    def validate_key(
        self,
        plaintext_key: str,
        now: Optional[datetime] = None,
    ) -> APIKey:
        """
        Validate an API key.

        Args:
            plaintext_key: The API key presented by the client
            now: Current time, for expiry checks

        Returns:
            The matching APIKey

        Raises:
            APIKeyNotFoundError: If no configured key matches
            APIKeyExpiredError: If the matching key has expired
        """
        if not plaintext_key:
            raise APIKeyNotFoundError("API key not found")

        presented = plaintext_key.encode("utf-8")
        match = None
        for api_key in self._keys:
            if hmac.compare_digest(api_key.key.encode("utf-8"), presented):
                match = api_key

        if match is None:
            raise APIKeyNotFoundError("API key not found")

        if match.is_expired(now):
            raise APIKeyExpiredError("API key has expired")

        return match

    def list_keys(self) -> List[APIKey]:
        """Get all configured keys."""
        return list(self._keys)

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Get API key statistics."""
        expired = sum(1 for k in self._keys if k.is_expired(now))
        return {
            "total_keys": len(self._keys),
            "active_keys": len(self._keys) - expired,
            "expired_keys": expired,
        }
