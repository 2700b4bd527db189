"""
Identity/authorization collaborator interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ...dto.consultation_dto import AuthorizedPrincipal


class SessionAuthorizer(ABC):
    """Decides whether a caller may open or control a consultation session."""

    @abstractmethod
    async def authorize(
        self,
        credentials: Optional[str],
        *,
        consultation_id: str,
        clinic_id: Optional[str] = None,
        physician_id: Optional[str] = None,
    ) -> AuthorizedPrincipal:
        """
        Resolve the caller.

        Raises:
            UnauthorizedSessionError: If the credentials do not grant access
        """
