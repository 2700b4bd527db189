"""
Domain entities package.
"""

from .consultation_session import AudioFrame, AudioParams, ConsultationSession
from .transcript import FinalTranscript, TranscriptParagraph, TranscriptSegment, WordTiming

__all__ = [
    "AudioFrame",
    "AudioParams",
    "ConsultationSession",
    "FinalTranscript",
    "TranscriptParagraph",
    "TranscriptSegment",
    "WordTiming",
]
