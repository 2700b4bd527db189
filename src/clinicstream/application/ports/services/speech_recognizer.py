"""
Streaming speech recognition service interface.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from ....domain.entities.consultation_session import AudioParams
from ....domain.events.recognition import RecognitionEvent


class RecognizerStream(ABC):
    """One open connection to the external recognizer.

    Implementations raise ``RecognizerConnectionError`` from ``feed`` or from
    the ``events`` iterator when the connection drops. The iterator ends
    normally once the recognizer has flushed everything after ``finish``.
    """

    @abstractmethod
    async def feed(self, chunk: bytes) -> None:
        """Send raw audio."""

    @abstractmethod
    def events(self) -> AsyncIterator[RecognitionEvent]:
        """Partial/final events with offsets relative to this stream."""

    @abstractmethod
    async def finish(self) -> None:
        """Signal end of audio; remaining results are still delivered."""

    @abstractmethod
    async def abort(self) -> None:
        """Close immediately, dropping pending results."""


class SpeechRecognizer(ABC):
    """Factory for recognizer streams."""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def open(self, params: AudioParams) -> RecognizerStream:
        """
        Open a new streaming connection.

        Args:
            params: Audio encoding of the frames that will be fed

        Returns:
            An open RecognizerStream

        Raises:
            RecognizerConnectionError: If the connection cannot be established
        """
