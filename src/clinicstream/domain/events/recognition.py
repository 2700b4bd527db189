"""
Recognition events flowing from a transcription session to its consumer.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from ..entities.transcript import WordTiming
from ..enums.consultation import RecognitionEventType


@dataclass(frozen=True)
class RecognitionEvent:
    """A typed recognizer event.

    Offsets are milliseconds. Events read from a recognizer stream are
    relative to that stream; the transcription session rebases them onto the
    session timeline before handing them on.
    """

    type: RecognitionEventType
    text: str = ""
    start_ms: int = 0
    end_ms: int = 0
    confidence: float = 0.0
    channel_label: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    words: Tuple[WordTiming, ...] = ()

    @classmethod
    def partial(cls, text: str, start_ms: int, end_ms: int, confidence: float = 0.0,
                channel_label: Optional[str] = None, words: Tuple[WordTiming, ...] = ()) -> "RecognitionEvent":
        return cls(RecognitionEventType.PARTIAL, text, start_ms, end_ms, confidence, channel_label, words=words)

    @classmethod
    def final(cls, text: str, start_ms: int, end_ms: int, confidence: float = 0.0,
              channel_label: Optional[str] = None, words: Tuple[WordTiming, ...] = ()) -> "RecognitionEvent":
        return cls(RecognitionEventType.FINAL, text, start_ms, end_ms, confidence, channel_label, words=words)

    @classmethod
    def error(cls, code: str, message: str) -> "RecognitionEvent":
        return cls(RecognitionEventType.ERROR, error_code=code, error_message=message)

    @classmethod
    def closed(cls) -> "RecognitionEvent":
        return cls(RecognitionEventType.CLOSED)

    @property
    def is_transcript(self) -> bool:
        return self.type in (RecognitionEventType.PARTIAL, RecognitionEventType.FINAL)

    def shifted(self, offset_ms: int) -> "RecognitionEvent":
        """Same event moved ``offset_ms`` later on the timeline."""
        if not self.is_transcript or offset_ms == 0:
            return self
        return replace(
            self,
            start_ms=self.start_ms + offset_ms,
            end_ms=self.end_ms + offset_ms,
            words=tuple(w.shifted(offset_ms) for w in self.words),
        )
