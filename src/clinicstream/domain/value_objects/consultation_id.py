"""
Consultation ID value object for type-safe session identification.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any

_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


@dataclass(frozen=True)
class ConsultationId:
    """Immutable consultation identifier value object."""

    value: str

    def __post_init__(self) -> None:
        """Validate consultation ID format."""
        if not isinstance(self.value, str):
            raise ValueError("Consultation ID must be a string")

        if not self.value:
            raise ValueError("Consultation ID cannot be empty")

        if not _PATTERN.match(self.value):
            raise ValueError(
                "Consultation ID must be 1-128 characters of letters, digits, '_', '.', ':' or '-'"
            )

    def __str__(self) -> str:
        return self.value

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ConsultationId):
            return False
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)

    @classmethod
    def generate(cls) -> "ConsultationId":
        """Generate a new consultation ID."""
        return cls(f"CONSULT-{uuid.uuid4().hex[:12].upper()}")
