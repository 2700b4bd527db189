"""Consultation DTOs exchanged with the persistence collaborator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ...domain.entities.transcript import FinalTranscript
from .structuring_dto import StructuringResult


@dataclass
class ConsultationRecord:
    """Finalized transcript plus (optional) structured result for storage."""

    consultation_id: str
    clinic_id: str
    physician_id: str
    patient_id: str
    transcript: FinalTranscript
    result: Optional[StructuringResult] = None
    structuring_error: Optional[str] = None
    structuring_error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consultation_id": self.consultation_id,
            "clinic_id": self.clinic_id,
            "physician_id": self.physician_id,
            "patient_id": self.patient_id,
            "transcript": self.transcript.to_dict(),
            "result": self.result.to_dict() if self.result else None,
            "structuring_error": self.structuring_error,
            "structuring_error_message": self.structuring_error_message,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AuthorizedPrincipal:
    """Identity resolved by the session authorizer."""

    user_id: str
    clinic_id: Optional[str] = None
    physician_id: Optional[str] = None
