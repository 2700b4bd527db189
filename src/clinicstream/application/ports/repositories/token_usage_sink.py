"""
Token usage sink interface for the billing collaborator.
"""

from typing import Optional

from clinicstream.application.dto.structuring_dto import TokenUsage


class TokenUsageSink:
    """Accepts one TokenUsage record per structuring call."""

    async def record(
        self,
        usage: TokenUsage,
        *,
        consultation_id: Optional[str] = None,
        model: Optional[str] = None,
        success: bool = True,
    ) -> None:
        """Record tokens consumed by a structuring call."""
        raise NotImplementedError
