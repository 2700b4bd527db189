"""
Streaming transcription session: one recognizer connection per consultation.

Audio frames go in through ``feed``; recognition events come out of the
``events()`` iterator, always ending with a CLOSED event. Frames stay in a
replay buffer until a final result covers them, so a dropped connection can
be re-established and the unacknowledged audio replayed without gaps.
"""

import asyncio
import logging
import time
from collections import deque
from typing import AsyncIterator, Deque, Optional

from ...core.config import ASRSettings
from ...core.exceptions import RecognizerConnectionError
from ...domain.entities.consultation_session import AudioFrame, ConsultationSession
from ...domain.enums.consultation import RecognitionEventType, SessionState
from ...domain.errors import ASRUnavailableError, FrameOrderError, SessionNotReadyError
from ...domain.events.recognition import RecognitionEvent
from ...observability.metrics import record_asr_reconnect
from ...observability.tracing import trace_operation
from ..ports.services.speech_recognizer import RecognizerStream, SpeechRecognizer

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """Owns the recognizer connection of exactly one consultation."""

    def __init__(
        self,
        consultation: ConsultationSession,
        recognizer: SpeechRecognizer,
        settings: ASRSettings,
    ) -> None:
        self._consultation = consultation
        self._recognizer = recognizer
        self._settings = settings

        self._events: "asyncio.Queue[RecognitionEvent]" = asyncio.Queue(maxsize=settings.event_queue_size)
        self._conn_lock = asyncio.Lock()
        self._stream: Optional[RecognizerStream] = None
        self._stream_base_ms = 0
        self._pump_task: Optional[asyncio.Task] = None
        self._finish_sent_to: Optional[RecognizerStream] = None

        self._unacked: Deque[AudioFrame] = deque()
        self._acked_ms = 0
        self._last_sequence = -1
        self._next_offset_ms = 0

        self._closing = False
        self._aborted = False
        self._failed = False
        self._closed_emitted = False
        self._drained = asyncio.Event()

        self.reconnect_count = 0
        self.last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def consultation_id(self) -> str:
        return self._consultation.consultation_id

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def unacknowledged_frames(self) -> int:
        return len(self._unacked)

    @property
    def acknowledged_ms(self) -> int:
        return self._acked_ms

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the recognizer stream (no-op when already open)."""
        async with self._conn_lock:
            if self._stream is not None or self._failed or self._closing:
                return
            await self._connect_locked()

    async def feed(self, frame: AudioFrame) -> None:
        """
        Forward one frame to the recognizer.

        Raises:
            FrameOrderError: If the sequence number does not increase
            SessionNotReadyError: If the session is finalizing
            ASRUnavailableError: If the recognizer cannot be reached
        """
        if self._failed:
            raise self._unavailable_error()
        if self._closing:
            raise SessionNotReadyError(self.consultation_id, self._consultation.state.value)
        if frame.sequence <= self._last_sequence:
            raise FrameOrderError(self.consultation_id, self._last_sequence, frame.sequence)

        lost: Optional[RecognizerConnectionError] = None
        async with self._conn_lock:
            # close() or abort() may have run while this frame waited for the lock
            if self._closing:
                raise SessionNotReadyError(self.consultation_id, self._consultation.state.value)
            if self._stream is None and not self._failed:
                await self._connect_locked()
            if self._failed:
                raise self._unavailable_error()
            if self._stream is None:
                # aborted during connect backoff
                raise SessionNotReadyError(self.consultation_id, self._consultation.state.value)

            self._last_sequence = frame.sequence
            self._next_offset_ms = frame.end_ms
            self._unacked.append(frame)
            self._trim_replay_buffer()
            self.touch()

            stream = self._stream
            try:
                await stream.feed(frame.payload)
            except RecognizerConnectionError as exc:
                lost = exc

        if lost is not None:
            # The frame is already buffered; recovery replays it.
            await self._on_stream_lost(stream, lost)
            if self._failed:
                raise self._unavailable_error()

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        """Recognition events in recognizer order, ending with CLOSED."""
        while True:
            event = await self._events.get()
            yield event
            if event.type == RecognitionEventType.CLOSED:
                return

    async def close(self) -> None:
        """Stop accepting audio, let the recognizer drain, then emit CLOSED."""
        first_call = not self._closing
        self._closing = True

        if first_call:
            lost: Optional[RecognizerConnectionError] = None
            stream: Optional[RecognizerStream] = None
            async with self._conn_lock:
                stream = self._stream
                if stream is None:
                    self._drained.set()
                else:
                    try:
                        await self._finish_locked(stream)
                    except RecognizerConnectionError as exc:
                        lost = exc
            if lost is not None:
                await self._on_stream_lost(stream, lost)

        try:
            await asyncio.wait_for(self._drained.wait(), timeout=self._settings.finalize_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Session {self.consultation_id}: recognizer did not drain within "
                f"{self._settings.finalize_timeout_seconds}s, closing with "
                f"{len(self._unacked)} unacknowledged frame(s)"
            )
        await self._teardown()
        await self._emit_closed()

    async def abort(self) -> None:
        """Hard-close the recognizer connection without draining."""
        self._closing = True
        self._aborted = True
        stream, self._stream = self._stream, None
        self._cancel_pump()
        if stream is not None:
            await self._quiet_abort(stream)
        self._unacked.clear()
        self._drained.set()
        logger.info(f"Session {self.consultation_id}: recognizer stream aborted")
        await self._emit_closed()

    # ------------------------------------------------------------------
    # Connection management (caller holds _conn_lock)
    # ------------------------------------------------------------------

    async def _connect_locked(self) -> None:
        with trace_operation("asr_connect", {"consultation_id": self.consultation_id}):
            try:
                stream = await self._recognizer.open(self._consultation.audio)
            except RecognizerConnectionError as exc:
                logger.warning(f"Session {self.consultation_id}: recognizer connect failed: {exc}")
                await self._reconnect_locked(exc)
                return
        if self._aborted:
            await self._quiet_abort(stream)
            return
        self._install(stream, self._next_offset_ms)
        logger.info(f"Session {self.consultation_id}: recognizer stream opened")

    async def _reconnect_locked(self, cause: Optional[Exception]) -> None:
        """Re-establish the stream with exponential backoff and replay unacked audio."""
        attempts = self._settings.max_reconnect_attempts
        last_error: Optional[Exception] = cause

        for attempt in range(1, attempts + 1):
            delay = min(
                self._settings.initial_backoff_seconds * (2 ** (attempt - 1)),
                self._settings.max_backoff_seconds,
            )
            await asyncio.sleep(delay)
            if self._aborted:
                return

            try:
                stream = await self._recognizer.open(self._consultation.audio)
            except RecognizerConnectionError as exc:
                last_error = exc
                record_asr_reconnect(success=False)
                logger.warning(
                    f"Session {self.consultation_id}: reconnect attempt {attempt}/{attempts} failed: {exc}"
                )
                continue

            replay = list(self._unacked)
            base_ms = replay[0].offset_ms if replay else self._next_offset_ms
            try:
                for frame in replay:
                    await stream.feed(frame.payload)
            except RecognizerConnectionError as exc:
                last_error = exc
                record_asr_reconnect(success=False)
                logger.warning(
                    f"Session {self.consultation_id}: replay on attempt {attempt}/{attempts} failed: {exc}"
                )
                await self._quiet_abort(stream)
                continue

            if self._aborted:
                await self._quiet_abort(stream)
                return

            self.reconnect_count += 1
            record_asr_reconnect(success=True)
            logger.info(
                f"Session {self.consultation_id}: recognizer reconnected on attempt {attempt}, "
                f"replayed {len(replay)} frame(s) from {base_ms}ms"
            )
            self._install(stream, base_ms)
            if self._closing:
                await self._finish_locked(stream)
            return

        await self._fail(attempts, last_error)

    def _install(self, stream: RecognizerStream, base_ms: int) -> None:
        self._stream = stream
        self._stream_base_ms = base_ms
        self._pump_task = asyncio.create_task(
            self._pump(stream, base_ms), name=f"asr-pump-{self.consultation_id}"
        )

    async def _finish_locked(self, stream: RecognizerStream) -> None:
        if self._finish_sent_to is stream:
            return
        self._finish_sent_to = stream
        await stream.finish()

    async def _on_stream_lost(self, stream: Optional[RecognizerStream], cause: Exception) -> None:
        async with self._conn_lock:
            if stream is None or stream is not self._stream or self._failed or self._aborted:
                return
            logger.warning(
                f"Session {self.consultation_id}: recognizer connection lost ({cause}); "
                f"{len(self._unacked)} frame(s) pending replay"
            )
            self._stream = None
            if self._pump_task is not asyncio.current_task():
                self._cancel_pump()
            await self._quiet_abort(stream)
            await self._reconnect_locked(cause)

    async def _fail(self, attempts: int, cause: Optional[Exception]) -> None:
        self._failed = True
        self._stream = None
        reason = str(cause) if cause else "unknown"
        logger.error(
            f"Session {self.consultation_id}: ASR_UNAVAILABLE after {attempts} reconnect attempt(s): {reason}"
        )
        if self._consultation.can_transition_to(SessionState.FAILED):
            self._consultation.transition_to(SessionState.FAILED, "ASR_UNAVAILABLE")
        error = self._unavailable_error(reason)
        await self._events.put(RecognitionEvent.error(error.error_code, error.message))
        self._drained.set()
        await self._emit_closed()

    def _unavailable_error(self, reason: str = "") -> ASRUnavailableError:
        return ASRUnavailableError(self.consultation_id, self._settings.max_reconnect_attempts, reason)

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    async def _pump(self, stream: RecognizerStream, base_ms: int) -> None:
        try:
            async for event in stream.events():
                if event.type == RecognitionEventType.CLOSED:
                    break
                if event.type == RecognitionEventType.ERROR:
                    raise RecognizerConnectionError(event.error_message or "recognizer reported an error")
                self.touch()
                await self._dispatch(event.shifted(base_ms))
        except asyncio.CancelledError:
            raise
        except RecognizerConnectionError as exc:
            await self._on_stream_lost(stream, exc)
            return
        except Exception as exc:
            logger.error(f"Session {self.consultation_id}: recognizer stream error: {exc}", exc_info=True)
            await self._on_stream_lost(stream, exc)
            return

        if stream is not self._stream:
            return
        if self._closing and self._finish_sent_to is stream:
            # Recognizer flushed everything after finish()
            self._unacked.clear()
            self._drained.set()
        else:
            await self._on_stream_lost(stream, RecognizerConnectionError("stream ended unexpectedly"))

    async def _dispatch(self, event: RecognitionEvent) -> None:
        if event.type == RecognitionEventType.FINAL:
            self._acknowledge(event.end_ms)
        if event.text and event.text.strip():
            await self._events.put(event)

    def _acknowledge(self, end_ms: int) -> None:
        if end_ms <= self._acked_ms:
            return
        self._acked_ms = end_ms
        while self._unacked and self._unacked[0].end_ms <= self._acked_ms:
            self._unacked.popleft()

    def _trim_replay_buffer(self) -> None:
        limit_ms = self._settings.max_replay_seconds * 1000
        dropped = 0
        while len(self._unacked) > 1 and self._unacked[-1].end_ms - self._unacked[0].offset_ms > limit_ms:
            self._unacked.popleft()
            dropped += 1
        if dropped:
            logger.warning(
                f"Session {self.consultation_id}: replay buffer over {self._settings.max_replay_seconds}s, "
                f"dropped {dropped} oldest unacknowledged frame(s)"
            )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _cancel_pump(self) -> None:
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()

    async def _teardown(self) -> None:
        stream, self._stream = self._stream, None
        if self._pump_task is not asyncio.current_task():
            self._cancel_pump()
        if stream is not None:
            await self._quiet_abort(stream)

    async def _quiet_abort(self, stream: RecognizerStream) -> None:
        try:
            await stream.abort()
        except Exception as exc:
            logger.debug(f"Session {self.consultation_id}: abort of dead stream failed: {exc}")

    async def _emit_closed(self) -> None:
        if self._closed_emitted:
            return
        self._closed_emitted = True
        await self._events.put(RecognitionEvent.closed())
