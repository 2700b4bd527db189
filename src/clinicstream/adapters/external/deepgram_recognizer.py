"""
Deepgram live transcription adapter.

The Deepgram SDK websocket client runs its own receive thread and reports
results through callbacks. Callbacks only enqueue typed RecognitionEvents
onto the owning event loop; all interpretation happens in asyncio.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

from deepgram import DeepgramClient, LiveOptions, LiveTranscriptionEvents

from ...application.ports.services.speech_recognizer import RecognizerStream, SpeechRecognizer
from ...core.config import ASRSettings
from ...core.exceptions import RecognizerConnectionError
from ...domain.entities.consultation_session import AudioParams
from ...domain.entities.transcript import WordTiming
from ...domain.enums.consultation import RecognitionEventType
from ...domain.events.recognition import RecognitionEvent

logger = logging.getLogger(__name__)


def _to_ms(seconds: Any) -> int:
    try:
        return int(round(float(seconds) * 1000))
    except (TypeError, ValueError):
        return 0


def _word_timings(words: Any) -> Tuple[WordTiming, ...]:
    timings = []
    for word in words:
        text = getattr(word, "punctuated_word", None) or getattr(word, "word", None)
        if not text:
            continue
        timings.append(WordTiming(text, _to_ms(getattr(word, "start", 0)), _to_ms(getattr(word, "end", 0))))
    return tuple(timings)


def event_from_result(result: Any) -> Optional[RecognitionEvent]:
    """Translate a Deepgram LiveResultResponse into a RecognitionEvent."""
    alternatives = getattr(getattr(result, "channel", None), "alternatives", None) or []
    if not alternatives:
        return None
    best = alternatives[0]
    text = (getattr(best, "transcript", "") or "").strip()
    is_final = bool(getattr(result, "is_final", False))
    # empty finals mark silence as processed; they carry no text
    if not text and not is_final:
        return None

    start_ms = _to_ms(getattr(result, "start", 0))
    end_ms = start_ms + _to_ms(getattr(result, "duration", 0))
    words = getattr(best, "words", None) or []
    speaker = getattr(words[0], "speaker", None) if words else None
    label = str(speaker) if speaker is not None else None
    confidence = float(getattr(best, "confidence", 0.0) or 0.0)
    timings = _word_timings(words)

    if is_final:
        return RecognitionEvent.final(text, start_ms, end_ms, confidence, label, words=timings)
    return RecognitionEvent.partial(text, start_ms, end_ms, confidence, label, words=timings)


class DeepgramRecognizerStream(RecognizerStream):
    """One Deepgram websocket connection."""

    def __init__(self, connection: Any, loop: asyncio.AbstractEventLoop) -> None:
        self._connection = connection
        self._loop = loop
        self._queue: "asyncio.Queue[RecognitionEvent]" = asyncio.Queue()
        self._closed = False

        connection.on(LiveTranscriptionEvents.Transcript, self._on_transcript)
        connection.on(LiveTranscriptionEvents.Error, self._on_error)
        connection.on(LiveTranscriptionEvents.Close, self._on_close)

    # SDK callbacks (receive thread)

    def _push(self, event: RecognitionEvent) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _on_transcript(self, _client: Any, result: Any, **kwargs: Any) -> None:
        event = event_from_result(result)
        if event is not None:
            self._push(event)

    def _on_error(self, _client: Any, error: Any, **kwargs: Any) -> None:
        self._push(RecognitionEvent.error("ASR_STREAM_ERROR", str(error)))

    def _on_close(self, _client: Any, *args: Any, **kwargs: Any) -> None:
        self._push(RecognitionEvent.closed())

    # RecognizerStream

    async def feed(self, chunk: bytes) -> None:
        if self._closed:
            raise RecognizerConnectionError("stream already closed")
        sent = await asyncio.to_thread(self._connection.send, chunk)
        if sent is False:
            raise RecognizerConnectionError("Deepgram connection rejected audio")

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.type in (RecognitionEventType.CLOSED, RecognitionEventType.ERROR):
                return

    async def finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._connection.finish)

    async def abort(self) -> None:
        await self.finish()


class DeepgramSpeechRecognizer(SpeechRecognizer):
    """Opens Deepgram live connections with interim results and diarization."""

    def __init__(self, settings: ASRSettings, client: Optional[DeepgramClient] = None) -> None:
        self._settings = settings
        self._client = client
        if self._client is None and settings.api_key:
            self._client = DeepgramClient(settings.api_key)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def _options(self, params: AudioParams) -> LiveOptions:
        return LiveOptions(
            model=self._settings.model,
            language=self._settings.language,
            encoding=params.encoding,
            sample_rate=params.sample_rate,
            channels=params.channels,
            interim_results=True,
            diarize=True,
            punctuate=True,
            smart_format=True,
        )

    async def open(self, params: AudioParams) -> RecognizerStream:
        if self._client is None:
            raise RecognizerConnectionError("Deepgram API key is not configured")

        connection = self._client.listen.websocket.v("1")
        stream = DeepgramRecognizerStream(connection, asyncio.get_running_loop())
        started = await asyncio.to_thread(connection.start, self._options(params))
        if not started:
            raise RecognizerConnectionError("Failed to connect to Deepgram websocket")
        logger.info(
            f"Deepgram stream opened: model={self._settings.model} language={self._settings.language} "
            f"rate={params.sample_rate} channels={params.channels}"
        )
        return stream
