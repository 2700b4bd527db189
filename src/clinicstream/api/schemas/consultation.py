"""
Consultation API schemas.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ...application.dto.structuring_dto import StructuringRequest


class StructureConsultationRequest(BaseModel):
    """Offline structuring of a transcript supplied by the caller."""

    transcript: str = Field(..., description="Consultation transcript")
    consultation_id: Optional[str] = Field(None, description="Consultation the transcript belongs to")
    exam_ids: List[str] = Field(default_factory=list, description="Exam catalog ids attached to the consultation")
    allergies: List[str] = Field(default_factory=list, description="Known patient allergies")
    current_medications: List[str] = Field(default_factory=list, description="Medications in use")
    anamnesis_only: bool = Field(False, description="Return only the anamnesis, no suggestions")

    @field_validator("exam_ids", "allergies", "current_medications")
    @classmethod
    def strip_blank_items(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]

    def to_dto(self) -> StructuringRequest:
        return StructuringRequest(**self.model_dump())


class LiveSessionView(BaseModel):
    """Live session state plus the current transcript view."""

    session: Dict[str, Any]
    live_transcript: List[Dict[str, Any]] = Field(default_factory=list)
