"""ConsultationSession domain entity: one live, streamed consultation.

The lifecycle is OPEN -> STREAMING -> FINALIZING -> CLOSED, with FAILED
reachable from any non-terminal state. Force-abort may close an OPEN or
STREAMING session directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from ..enums.consultation import SessionState
from ..errors import InvalidSessionTransitionError

_BYTES_PER_SAMPLE = {
    "linear16": 2,
    "mulaw": 1,
    "alaw": 1,
}

_ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.OPEN: frozenset(
        {SessionState.STREAMING, SessionState.FINALIZING, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.STREAMING: frozenset(
        {SessionState.FINALIZING, SessionState.FAILED, SessionState.CLOSED}
    ),
    SessionState.FINALIZING: frozenset({SessionState.CLOSED, SessionState.FAILED}),
    SessionState.CLOSED: frozenset(),
    SessionState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class AudioParams:
    """Encoding parameters negotiated when the client connects."""

    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "linear16"

    def __post_init__(self) -> None:
        if self.encoding not in _BYTES_PER_SAMPLE:
            raise ValueError(
                f"Unsupported audio encoding '{self.encoding}'. Use one of: {sorted(_BYTES_PER_SAMPLE)}"
            )
        if not 8000 <= self.sample_rate <= 48000:
            raise ValueError("Sample rate must be between 8000 and 48000 Hz")
        if self.channels not in (1, 2):
            raise ValueError("Channel count must be 1 or 2")

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * _BYTES_PER_SAMPLE[self.encoding]

    def duration_ms(self, payload_size: int) -> int:
        """Duration of a raw payload of ``payload_size`` bytes."""
        return (payload_size * 1000) // self.bytes_per_second


@dataclass(frozen=True)
class AudioFrame:
    """One chunk of client audio, owned by exactly one session."""

    sequence: int
    payload: bytes
    offset_ms: int
    duration_ms: int

    @property
    def end_ms(self) -> int:
        return self.offset_ms + self.duration_ms


@dataclass
class ConsultationSession:
    """A live consultation being captured."""

    consultation_id: str
    clinic_id: str
    physician_id: str
    patient_id: str
    audio: AudioParams = field(default_factory=AudioParams)
    state: SessionState = SessionState.OPEN
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    closed_reason: Optional[str] = None
    failure_code: Optional[str] = None

    def transition_to(self, target: SessionState, reason: Optional[str] = None) -> None:
        """Move to ``target`` or raise InvalidSessionTransitionError."""
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidSessionTransitionError(self.consultation_id, self.state.value, target.value)
        self.state = target
        self.updated_at = datetime.utcnow()
        if target == SessionState.CLOSED:
            self.closed_reason = reason or "completed"
        elif target == SessionState.FAILED:
            self.failure_code = reason

    def can_transition_to(self, target: SessionState) -> bool:
        return target in _ALLOWED_TRANSITIONS[self.state]

    @property
    def is_streaming(self) -> bool:
        return self.state == SessionState.STREAMING

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_summary(self) -> Dict[str, object]:
        return {
            "consultation_id": self.consultation_id,
            "clinic_id": self.clinic_id,
            "physician_id": self.physician_id,
            "patient_id": self.patient_id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "audio": {
                "sample_rate": self.audio.sample_rate,
                "channels": self.audio.channels,
                "encoding": self.audio.encoding,
            },
            "closed_reason": self.closed_reason,
            "failure_code": self.failure_code,
        }
