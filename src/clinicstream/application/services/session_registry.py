"""
Registry of live consultation sessions.

Each entry bundles everything one session owns: the consultation entity, its
recognizer connection, its speaker attribution table and its transcript
aggregator. Nothing here is shared between sessions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ...core.config import ASRSettings
from ...domain.entities.consultation_session import ConsultationSession
from ...domain.enums.consultation import SessionState
from ...domain.errors import SessionConflictError, SessionNotFoundError
from ...observability.metrics import record_session_transition
from ..ports.services.speech_recognizer import SpeechRecognizer
from ..utils.speaker_mapping import SpeakerAttributionTracker, SpeakerMappingArena
from .transcript_aggregator import TranscriptAggregator
from .transcription_session import TranscriptionSession

logger = logging.getLogger(__name__)


@dataclass
class LiveSession:
    consultation: ConsultationSession
    transcription: TranscriptionSession
    speakers: SpeakerAttributionTracker
    aggregator: TranscriptAggregator
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    user_id: Optional[str] = None

    @property
    def consultation_id(self) -> str:
        return self.consultation.consultation_id

    @property
    def state(self) -> SessionState:
        return self.consultation.state

    def transition(self, target: SessionState, reason: Optional[str] = None) -> None:
        previous = self.consultation.state
        self.consultation.transition_to(target, reason)
        record_session_transition(target.value)
        logger.info(f"Session {self.consultation_id}: {previous.value} -> {target.value}")

    def to_summary(self) -> Dict[str, object]:
        summary = self.consultation.to_summary()
        summary.update(
            {
                "speakers": {label: role.value for label, role in self.speakers.mapping.items()},
                "final_segments": len(self.aggregator.final_segments),
                "reconnects": self.transcription.reconnect_count,
                "idle_seconds": round(self.transcription.idle_seconds, 1),
            }
        )
        return summary


class SessionRegistry:
    """In-process map of consultation id -> LiveSession."""

    def __init__(self, recognizer: SpeechRecognizer, asr_settings: ASRSettings) -> None:
        self._recognizer = recognizer
        self._asr_settings = asr_settings
        self._sessions: Dict[str, LiveSession] = {}
        self._speakers = SpeakerMappingArena()

    def create(self, consultation: ConsultationSession, user_id: Optional[str] = None) -> LiveSession:
        """
        Register a new live session.

        Raises:
            SessionConflictError: If the consultation already has a live session
        """
        consultation_id = consultation.consultation_id
        if consultation_id in self._sessions:
            raise SessionConflictError(consultation_id)

        live = LiveSession(
            consultation=consultation,
            transcription=TranscriptionSession(consultation, self._recognizer, self._asr_settings),
            speakers=self._speakers.create(consultation_id),
            aggregator=TranscriptAggregator(consultation_id),
            user_id=user_id,
        )
        self._sessions[consultation_id] = live
        record_session_transition(consultation.state.value)
        logger.info(f"Session {consultation_id} registered ({len(self._sessions)} live)")
        return live

    def get(self, consultation_id: str) -> Optional[LiveSession]:
        return self._sessions.get(consultation_id)

    def require(self, consultation_id: str) -> LiveSession:
        live = self._sessions.get(consultation_id)
        if live is None:
            raise SessionNotFoundError(consultation_id)
        return live

    def remove(self, consultation_id: str) -> Optional[LiveSession]:
        """Drop a session and release its speaker table."""
        live = self._sessions.pop(consultation_id, None)
        self._speakers.discard(consultation_id)
        if live is not None:
            logger.info(f"Session {consultation_id} removed ({len(self._sessions)} live)")
        return live

    def list(self) -> List[LiveSession]:
        return list(self._sessions.values())

    def __contains__(self, consultation_id: object) -> bool:
        return consultation_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
