"""
API-key based implementation of the session authorizer.
"""

import logging
from typing import Optional

from ...application.dto.consultation_dto import AuthorizedPrincipal
from ...application.ports.services.session_authorizer import SessionAuthorizer
from ...core.auth import AuthService

logger = logging.getLogger(__name__)


class ApiKeySessionAuthorizer(SessionAuthorizer):
    """Any valid API key may open a session; clinic/physician come from the connect request."""

    def __init__(self, auth_service: AuthService):
        self._auth = auth_service

    async def authorize(
        self,
        credentials: Optional[str],
        *,
        consultation_id: str,
        clinic_id: Optional[str] = None,
        physician_id: Optional[str] = None,
    ) -> AuthorizedPrincipal:
        user_id = self._auth.get_user_from_request(api_key=credentials)
        logger.info(f"Session {consultation_id} authorized for user {user_id}")
        return AuthorizedPrincipal(user_id=user_id, clinic_id=clinic_id, physician_id=physician_id)
