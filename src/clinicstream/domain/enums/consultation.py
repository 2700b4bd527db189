"""
Enums for live consultation capture.
"""

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of a live consultation session."""
    OPEN = "OPEN"              # Connection accepted, no audio yet
    STREAMING = "STREAMING"    # Audio flowing to the recognizer
    FINALIZING = "FINALIZING"  # Draining recognizer, no new audio
    CLOSED = "CLOSED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


class SpeakerRole(str, Enum):
    """Clinical role attributed to a recognizer speaker label."""
    DOCTOR = "Doctor"
    PATIENT = "Patient"
    UNKNOWN = "Unknown"


class RecognitionEventType(str, Enum):
    """Typed events produced by a transcription session."""
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    CLOSED = "closed"


class SuggestionKind(str, Enum):
    """Canonical suggestion kinds."""
    DIAGNOSIS = "diagnosis"
    EXAM = "exam"
    MEDICATION = "medication"


# Labels the model may emit, including the pt-BR forms used by the prompt
SUGGESTION_KIND_ALIASES = {
    "diagnosis": SuggestionKind.DIAGNOSIS,
    "diagnostico": SuggestionKind.DIAGNOSIS,
    "diagnóstico": SuggestionKind.DIAGNOSIS,
    "exam": SuggestionKind.EXAM,
    "exame": SuggestionKind.EXAM,
    "medication": SuggestionKind.MEDICATION,
    "medicamento": SuggestionKind.MEDICATION,
    "medicacao": SuggestionKind.MEDICATION,
    "medicação": SuggestionKind.MEDICATION,
}
