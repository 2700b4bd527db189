"""Structuring DTOs and the model output schemas they are validated against.

``StructuredOutput`` and ``AnamnesisOutput`` describe exactly what the
language model must return; nothing reaches callers without passing one of
them. Keys are accepted in English or in the pt-BR form the prompt uses.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ...domain.enums.consultation import SUGGESTION_KIND_ALIASES, SuggestionKind


class TokenUsage(BaseModel):
    """Token counts for one structuring call (all attempts summed)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ExamReference(BaseModel):
    """Exam catalog entry used as structuring context."""

    id: str
    name: str
    exam_type: Optional[str] = None
    description: Optional[str] = None


class StructuringContext(BaseModel):
    """Optional clinical context embedded in the prompt."""

    exam_ids: List[str] = Field(default_factory=list)
    exams: List[ExamReference] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    current_medications: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.exam_ids or self.exams or self.allergies or self.current_medications)


class StructuringRequest(BaseModel):
    """Input for a structuring call."""

    transcript: str
    exam_ids: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    current_medications: List[str] = Field(default_factory=list)
    anamnesis_only: bool = False
    consultation_id: Optional[str] = None


# ============================================================================
# MODEL OUTPUT SCHEMAS
# ============================================================================


class Suggestion(BaseModel):
    """A diagnosis, exam or medication suggested by the model."""

    model_config = ConfigDict(extra="ignore")

    kind: str
    description: str = Field(validation_alias=AliasChoices("description", "descricao", "descrição"))
    rationale: str = Field(
        default="", validation_alias=AliasChoices("rationale", "justificativa", "justification")
    )
    confidence: float = Field(validation_alias=AliasChoices("confidence", "score", "confianca"))
    code: Optional[str] = None
    exam_type: Optional[str] = None
    dosage: Optional[str] = Field(default=None, validation_alias=AliasChoices("dosage", "dosagem"))
    frequency: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("frequency", "posologia")
    )
    duration: Optional[str] = Field(default=None, validation_alias=AliasChoices("duration", "duracao"))

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("kind must be a string")
        label = v.strip().lower()
        if label not in SUGGESTION_KIND_ALIASES:
            raise ValueError(f"kind must be one of diagnosis, exam, medication (got '{v}')")
        return label

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("description cannot be empty")
        return v.strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Coerce to [0, 1]; out-of-range values snap to the nearest bound."""
        if isinstance(v, bool):
            raise ValueError("confidence must be a number")
        if isinstance(v, str):
            try:
                v = float(v.strip())
            except ValueError:
                raise ValueError("confidence must be a number")
        if not isinstance(v, (int, float)):
            raise ValueError("confidence must be a number")
        value = float(v)
        if math.isnan(value):
            raise ValueError("confidence must be a number")
        return min(1.0, max(0.0, value))

    @property
    def canonical_kind(self) -> SuggestionKind:
        return SUGGESTION_KIND_ALIASES[self.kind]


class AnamnesisOutput(BaseModel):
    """Narrow schema: anamnesis only."""

    model_config = ConfigDict(extra="ignore")

    anamnesis: str = Field(validation_alias=AliasChoices("anamnesis", "anamnese"))

    @field_validator("anamnesis")
    @classmethod
    def validate_anamnesis(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("anamnesis cannot be empty")
        return v.strip()


class StructuredOutput(AnamnesisOutput):
    """Full schema: anamnesis plus suggestions."""

    suggestions: List[Suggestion]


def schema_hint(anamnesis_only: bool = False) -> Dict[str, Any]:
    """JSON shape sent to the model alongside the prompt."""
    if anamnesis_only:
        return {"anamnesis": "string"}
    return {
        "anamnesis": "string",
        "suggestions": [
            {
                "kind": "diagnosis | exam | medication",
                "description": "string",
                "rationale": "string",
                "confidence": "number between 0 and 1",
                "code": "CID-10 code (diagnosis only, optional)",
                "exam_type": "string (exam only, optional)",
                "dosage": "string (medication only, optional)",
                "frequency": "string (medication only, optional)",
                "duration": "string (medication only, optional)",
            }
        ],
    }


# ============================================================================
# RESULT
# ============================================================================


class StructuringResult(BaseModel):
    """Validated structuring output returned to callers."""

    anamnesis: str
    suggestions: List[Suggestion] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    attempts: int = 1
    model: Optional[str] = None

    @property
    def anamnese(self) -> str:
        return self.anamnesis

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
