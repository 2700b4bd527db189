"""
Language model service interface used for clinical structuring.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...dto.structuring_dto import TokenUsage


@dataclass
class ModelResponse:
    """Raw model output plus accounting."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None


class LanguageModel(ABC):
    """Single request/response capability. Output is untrusted."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials/endpoint are available."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        schema_hint: Dict[str, Any],
        *,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """
        Ask the model for a JSON document.

        Args:
            prompt: User prompt (transcript, context, repair notes)
            schema_hint: Expected JSON shape
            system: Optional system instructions

        Returns:
            ModelResponse with the unvalidated text

        Raises:
            LanguageModelError: On API/transport failures
        """
