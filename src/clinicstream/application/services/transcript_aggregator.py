"""
Transcript aggregation for one live consultation.

Keeps final segments sorted by start offset and never overlapping, plus the
outstanding partials (keyed by their time range) that later events replace.
"""

import bisect
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from ...domain.entities.transcript import FinalTranscript, TranscriptParagraph, TranscriptSegment
from ...domain.enums.consultation import RecognitionEventType, SpeakerRole
from ...domain.events.recognition import RecognitionEvent

logger = logging.getLogger(__name__)

# Confidence multiplier for partials flushed as finals at finalize time
FLUSHED_PARTIAL_CONFIDENCE_FACTOR = 0.5


class TranscriptAggregator:
    """Ordered, deduplicated transcript view of one session."""

    def __init__(self, consultation_id: str) -> None:
        self.consultation_id = consultation_id
        self._finals: List[TranscriptSegment] = []
        self._partials: Dict[Tuple[int, int], TranscriptSegment] = {}
        self._final_transcript: Optional[FinalTranscript] = None

    @property
    def is_finalized(self) -> bool:
        return self._final_transcript is not None

    @property
    def final_segments(self) -> List[TranscriptSegment]:
        return list(self._finals)

    @property
    def partial_segments(self) -> List[TranscriptSegment]:
        return sorted(self._partials.values(), key=lambda s: s.start_ms)

    def apply_event(self, event: RecognitionEvent, speaker: SpeakerRole) -> Optional[TranscriptSegment]:
        """Build a segment from a recognition event and apply it."""
        if not event.is_transcript:
            return None
        segment = TranscriptSegment(
            speaker=speaker,
            text=event.text,
            is_final=event.type == RecognitionEventType.FINAL,
            start_ms=event.start_ms,
            end_ms=event.end_ms,
            confidence=event.confidence,
            channel_label=event.channel_label,
            words=event.words,
        )
        return self.apply(segment)

    def apply(self, segment: TranscriptSegment) -> Optional[TranscriptSegment]:
        """
        Apply a partial or final segment.

        Returns:
            The segment as stored (a final may be clipped), or None when it was
            ignored (empty text, stale partial, duplicate final, or the
            transcript is already finalized).
        """
        if self.is_finalized:
            logger.warning(
                f"Session {self.consultation_id}: segment {segment.key} after finalize ignored"
            )
            return None
        if not segment.text or not segment.text.strip():
            return None
        if segment.end_ms < segment.start_ms:
            raise ValueError(f"Segment ends before it starts: {segment.key}")
        if segment.end_ms == segment.start_ms:
            segment = replace(segment, end_ms=segment.start_ms + 1)

        if segment.is_final:
            return self._add_final(segment)
        return self._upsert_partial(segment)

    # ------------------------------------------------------------------
    # Partials
    # ------------------------------------------------------------------

    def _upsert_partial(self, segment: TranscriptSegment) -> Optional[TranscriptSegment]:
        if self._covered_by_finals(segment.start_ms, segment.end_ms):
            logger.debug(
                f"Session {self.consultation_id}: stale partial {segment.key} already finalized"
            )
            return None

        # Evolving partials of one utterance share a start or overlap
        stale = [
            key for key, existing in self._partials.items()
            if existing.start_ms == segment.start_ms or existing.overlaps(segment.start_ms, segment.end_ms)
        ]
        for key in stale:
            del self._partials[key]
        self._partials[segment.key] = segment
        return segment

    # ------------------------------------------------------------------
    # Finals
    # ------------------------------------------------------------------

    def _covered_by_finals(self, start_ms: int, end_ms: int) -> bool:
        cursor = start_ms
        for final in self._finals:
            if final.end_ms <= cursor:
                continue
            if final.start_ms > cursor:
                return False
            cursor = final.end_ms
            if cursor >= end_ms:
                return True
        return cursor >= end_ms

    def _add_final(self, segment: TranscriptSegment) -> Optional[TranscriptSegment]:
        original_start, original_end = segment.start_ms, segment.end_ms

        if self._covered_by_finals(original_start, original_end):
            logger.info(
                f"Session {self.consultation_id}: duplicate final {segment.key} dropped"
            )
            self._drop_superseded_partials(original_start, original_end)
            return None

        start, end = original_start, original_end
        for existing in self._finals:
            if not existing.overlaps(start, end):
                continue
            if existing.start_ms <= start:
                start = max(start, existing.end_ms)
            else:
                end = min(end, existing.start_ms)
        if start >= end:
            logger.info(
                f"Session {self.consultation_id}: final {segment.key} has no free range, dropped"
            )
            self._drop_superseded_partials(original_start, original_end)
            return None

        if (start, end) != (original_start, original_end):
            logger.debug(
                f"Session {self.consultation_id}: final {segment.key} clipped to ({start}, {end})"
            )
            segment = self._clip(segment, start, end)
            if segment is None:
                self._drop_superseded_partials(original_start, original_end)
                return None

        index = bisect.bisect_right([f.start_ms for f in self._finals], segment.start_ms)
        self._finals.insert(index, segment)
        self._drop_superseded_partials(original_start, original_end)
        return segment

    def _clip(self, segment: TranscriptSegment, start: int, end: int) -> Optional[TranscriptSegment]:
        """Narrow a final to [start, end); with word timings the text follows the range."""
        if not segment.words:
            return replace(segment, start_ms=start, end_ms=end)
        kept = segment.words_within(start, end)
        if not kept:
            logger.info(
                f"Session {self.consultation_id}: final {segment.key} only repeats finalized words, dropped"
            )
            return None
        return replace(
            segment,
            text=" ".join(w.text for w in kept),
            start_ms=start,
            end_ms=end,
            words=kept,
        )

    def _drop_superseded_partials(self, start_ms: int, end_ms: int) -> None:
        superseded = [
            key for key, partial in self._partials.items()
            if start_ms <= partial.start_ms < end_ms
            or self._covered_by_finals(partial.start_ms, partial.end_ms)
        ]
        for key in superseded:
            del self._partials[key]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def live_view(self) -> List[TranscriptSegment]:
        """All finals so far plus the latest partials, in start order."""
        segments = self._finals + list(self._partials.values())
        return sorted(segments, key=lambda s: (s.start_ms, not s.is_final))

    def finalize(self) -> FinalTranscript:
        """
        Produce the finalized transcript (computed once, then cached).

        Outstanding partials are flushed as low-confidence finals so that no
        spoken content is lost.
        """
        if self._final_transcript is not None:
            return self._final_transcript

        outstanding = self.partial_segments
        if outstanding:
            logger.info(
                f"Session {self.consultation_id}: flushing {len(outstanding)} partial segment(s) at finalize"
            )
        for partial in outstanding:
            self._add_final(
                replace(
                    partial,
                    is_final=True,
                    low_confidence=True,
                    confidence=partial.confidence * FLUSHED_PARTIAL_CONFIDENCE_FACTOR,
                )
            )
        self._partials.clear()

        self._final_transcript = FinalTranscript(
            segments=list(self._finals),
            paragraphs=_merge_paragraphs(self._finals),
        )
        return self._final_transcript

    def discard_partials(self) -> int:
        """Drop outstanding partials (force-abort path)."""
        count = len(self._partials)
        self._partials.clear()
        return count


def _merge_paragraphs(segments: List[TranscriptSegment]) -> List[TranscriptParagraph]:
    paragraphs: List[TranscriptParagraph] = []
    for segment in segments:
        text = segment.text.strip()
        if paragraphs and paragraphs[-1].speaker == segment.speaker:
            previous = paragraphs[-1]
            paragraphs[-1] = TranscriptParagraph(
                speaker=previous.speaker,
                text=f"{previous.text} {text}",
                start_ms=previous.start_ms,
                end_ms=segment.end_ms,
            )
        else:
            paragraphs.append(
                TranscriptParagraph(
                    speaker=segment.speaker, text=text, start_ms=segment.start_ms, end_ms=segment.end_ms
                )
            )
    return paragraphs
