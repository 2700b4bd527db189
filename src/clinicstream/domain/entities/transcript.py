"""Transcript domain entities: segments, paragraphs and the finalized transcript."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..enums.consultation import SpeakerRole


@dataclass(frozen=True)
class WordTiming:
    """One recognized word with its offsets in milliseconds."""

    text: str
    start_ms: int
    end_ms: int

    @property
    def midpoint_ms(self) -> int:
        return (self.start_ms + self.end_ms) // 2

    def shifted(self, offset_ms: int) -> "WordTiming":
        return WordTiming(self.text, self.start_ms + offset_ms, self.end_ms + offset_ms)


@dataclass(frozen=True)
class TranscriptSegment:
    """A recognized span of speech.

    Partial segments are placeholders that later events replace; final
    segments never change once emitted.
    """

    speaker: SpeakerRole
    text: str
    is_final: bool
    start_ms: int
    end_ms: int
    confidence: float = 0.0
    channel_label: Optional[str] = None
    low_confidence: bool = False  # partial flushed as final at finalize time
    words: Tuple[WordTiming, ...] = field(default=(), repr=False)

    @property
    def key(self) -> tuple:
        return (self.start_ms, self.end_ms)

    def overlaps(self, start_ms: int, end_ms: int) -> bool:
        return self.start_ms < end_ms and start_ms < self.end_ms

    def words_within(self, start_ms: int, end_ms: int) -> Tuple[WordTiming, ...]:
        """Words whose midpoint falls inside [start_ms, end_ms)."""
        return tuple(w for w in self.words if start_ms <= w.midpoint_ms < end_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "isFinal": self.is_final,
            "startMs": self.start_ms,
            "endMs": self.end_ms,
            "confidence": self.confidence,
            "lowConfidence": self.low_confidence,
        }


@dataclass(frozen=True)
class TranscriptParagraph:
    """A contiguous run of final segments from one speaker."""

    speaker: SpeakerRole
    text: str
    start_ms: int
    end_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "startMs": self.start_ms,
            "endMs": self.end_ms,
        }


@dataclass(frozen=True)
class FinalTranscript:
    """Finalized transcript handed to structuring and persistence."""

    segments: List[TranscriptSegment] = field(default_factory=list)
    paragraphs: List[TranscriptParagraph] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.paragraphs

    @property
    def text(self) -> str:
        """Speaker-prefixed text, one paragraph per line."""
        return "\n".join(f"{p.speaker.value}: {p.text}" for p in self.paragraphs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "paragraphs": [p.to_dict() for p in self.paragraphs],
            "segments": [s.to_dict() for s in self.segments],
        }
