"""
API key authentication.

Keys come from ``SECURITY_API_KEYS`` ("key1:user1,key2:user2"). The same
service backs the HTTP middleware and the WebSocket session authorizer.
"""

import logging
from typing import Dict, Optional

from ..domain.errors import UnauthorizedSessionError
from .config import SecuritySettings, get_settings

logger = logging.getLogger(__name__)


class AuthService:
    """Authentication service for validating users and API keys"""

    def __init__(self, settings: Optional[SecuritySettings] = None):
        self._settings = settings or get_settings().security
        self.api_keys: Dict[str, str] = self._settings.parsed_api_keys()
        if self.enabled and not self.api_keys:
            logger.warning("No API keys configured. Authentication will fail for all requests.")

    @property
    def enabled(self) -> bool:
        return self._settings.auth_enabled

    def validate_api_key(self, api_key: Optional[str]) -> str:
        """
        Validate API key and return user ID.

        Raises:
            UnauthorizedSessionError: If API key is invalid or missing
        """
        if not api_key:
            raise UnauthorizedSessionError(
                "Authentication required. Provide X-API-Key header or Authorization Bearer token."
            )

        if api_key.startswith("Bearer "):
            api_key = api_key[7:].strip()

        user_id = self.api_keys.get(api_key)
        if user_id is not None:
            logger.debug(f"API key validated for user: {user_id}")
            return user_id

        logger.warning(f"Invalid API key attempted: {api_key[:4]}...")
        raise UnauthorizedSessionError("Invalid API key or token")

    def get_user_from_request(self, api_key: Optional[str] = None, auth_header: Optional[str] = None) -> str:
        """
        Resolve the caller from request credentials.

        Priority:
        1. X-API-Key header (or api_key query parameter on WebSockets)
        2. Authorization Bearer token

        Raises:
            UnauthorizedSessionError: If authentication fails
        """
        if not self.enabled:
            return "anonymous"
        if api_key:
            return self.validate_api_key(api_key)
        if auth_header and auth_header.startswith("Bearer "):
            return self.validate_api_key(auth_header[7:].strip())
        raise UnauthorizedSessionError(
            "Authentication required. Provide X-API-Key header or Authorization Bearer token."
        )


# Global instance
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get global authentication service instance (singleton)"""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def reset_auth_service() -> None:
    global _auth_service
    _auth_service = None
