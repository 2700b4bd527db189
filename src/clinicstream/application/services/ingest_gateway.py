"""
Audio ingest gateway: one client connection <-> one live consultation.

Per connection three flows run concurrently:

- the receive loop, the only writer of audio frames into the transcription
  session (frames keep client order)
- the relay, the only reader of recognition events; it attributes speakers,
  updates the aggregator and forwards events to the client in recognizer order
- the recognizer pump inside the transcription session

Client disconnect and explicit stop both finalize the session (in-flight
audio is still transcribed); only ``abort`` hard-closes the recognizer.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ...core.config import Settings
from ...domain.entities.consultation_session import AudioFrame, AudioParams, ConsultationSession
from ...domain.entities.transcript import TranscriptSegment
from ...domain.enums.consultation import RecognitionEventType, SessionState
from ...domain.errors import (
    ASRUnavailableError,
    DomainError,
    FrameOrderError,
    SessionConflictError,
    SessionNotReadyError,
    UnauthorizedSessionError,
)
from ...observability.audit import audit_log_event
from ...observability.metrics import record_error
from ..ports.services.client_channel import ClientChannel, ClientDisconnected
from ..ports.services.session_authorizer import SessionAuthorizer
from ..use_cases.structure_consultation import StructureConsultationUseCase
from .session_registry import LiveSession, SessionRegistry

logger = logging.getLogger(__name__)

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011
CLOSE_UNAUTHORIZED = 4401
CLOSE_CONFLICT = 4409

_ACCEPTING_STATES = (SessionState.OPEN, SessionState.STREAMING)


def error_event(code: str, message: str) -> Dict[str, Any]:
    return {"type": "error", "code": code, "message": message}


def segment_event(segment: TranscriptSegment) -> Dict[str, Any]:
    return {
        "type": "final" if segment.is_final else "partial",
        "speaker": segment.speaker.value,
        "text": segment.text,
        "startMs": segment.start_ms,
        "endMs": segment.end_ms,
        "confidence": segment.confidence,
    }


@dataclass
class _FrameCursor:
    """Sequence and offset assigned to the next frame of one connection."""

    sequence: int = 0
    offset_ms: int = 0


class AudioIngestGateway:
    """Binds client connections to live consultation sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        authorizer: SessionAuthorizer,
        structuring: StructureConsultationUseCase,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._authorizer = authorizer
        self._structuring = structuring
        self._settings = settings

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def handle(
        self,
        channel: ClientChannel,
        consultation_id: str,
        *,
        credentials: Optional[str],
        clinic_id: str,
        physician_id: str,
        patient_id: str,
        audio: AudioParams,
    ) -> None:
        """Authorize, register and serve one connection until the session ends."""
        live = await self.connect(
            channel,
            consultation_id,
            credentials=credentials,
            clinic_id=clinic_id,
            physician_id=physician_id,
            patient_id=patient_id,
            audio=audio,
        )
        if live is not None:
            await self.serve(channel, live)

    async def connect(
        self,
        channel: ClientChannel,
        consultation_id: str,
        *,
        credentials: Optional[str],
        clinic_id: str,
        physician_id: str,
        patient_id: str,
        audio: AudioParams,
    ) -> Optional[LiveSession]:
        """
        Authorize the caller and register the session.

        Returns None (after reporting the error and closing) when the
        connection is refused.
        """
        try:
            principal = await self._authorizer.authorize(
                credentials,
                consultation_id=consultation_id,
                clinic_id=clinic_id,
                physician_id=physician_id,
            )
        except UnauthorizedSessionError as e:
            logger.warning(f"Rejected connection for consultation {consultation_id}: {e.message}")
            await self._refuse(channel, e, CLOSE_UNAUTHORIZED)
            return None

        consultation = ConsultationSession(
            consultation_id=consultation_id,
            clinic_id=principal.clinic_id or clinic_id,
            physician_id=principal.physician_id or physician_id,
            patient_id=patient_id,
            audio=audio,
        )
        try:
            live = self._registry.create(consultation, user_id=principal.user_id)
        except SessionConflictError as e:
            logger.warning(f"Rejected duplicate connection for consultation {consultation_id}")
            await self._refuse(channel, e, CLOSE_CONFLICT)
            return None

        await channel.accept()
        await audit_log_event(
            event="session_opened",
            consultation_id=consultation_id,
            clinic_id=consultation.clinic_id,
            user_id=principal.user_id,
            payload={
                "sample_rate": audio.sample_rate,
                "channels": audio.channels,
                "encoding": audio.encoding,
            },
        )
        return live

    async def serve(self, channel: ClientChannel, live: LiveSession) -> None:
        """Run receive loop and relay until the session reaches a terminal state."""
        receiver = asyncio.create_task(
            self._receive_loop(channel, live), name=f"ingest-recv-{live.consultation_id}"
        )
        relay = asyncio.create_task(
            self._relay(channel, live), name=f"ingest-relay-{live.consultation_id}"
        )
        try:
            done, _ = await asyncio.wait({receiver, relay}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                # Client stopped or went away: drain, do not abort
                reason = receiver.result()
                await self.finalize(live, reason)
                await relay
            else:
                receiver.cancel()
                await asyncio.gather(receiver, return_exceptions=True)
                relay.result()
        finally:
            for task in (receiver, relay):
                if not task.done():
                    task.cancel()
            if not live.state.is_terminal:
                # Serving task cancelled (server shutdown)
                await live.transcription.abort()
            self._registry.remove(live.consultation_id)
            await channel.close(CLOSE_INTERNAL_ERROR if live.state == SessionState.FAILED else CLOSE_NORMAL)

    async def finalize(self, live: LiveSession, reason: str) -> None:
        """Move a session to FINALIZING and let its recognizer drain."""
        async with live.lock:
            if live.state in _ACCEPTING_STATES:
                live.transition(SessionState.FINALIZING, reason)
                logger.info(f"Session {live.consultation_id}: finalizing ({reason})")
        await live.transcription.close()

    async def abort(self, consultation_id: str, reason: str = "aborted") -> LiveSession:
        """
        Force-close a session: recognizer closed immediately, partials discarded.

        Raises:
            SessionNotFoundError: If the consultation has no live session
        """
        live = self._registry.require(consultation_id)
        async with live.lock:
            if not live.state.is_terminal:
                live.transition(SessionState.CLOSED, reason)
            dropped = live.aggregator.discard_partials()
        await live.transcription.abort()
        logger.info(f"Session {consultation_id}: aborted, {dropped} partial(s) discarded")
        await audit_log_event(
            event="session_aborted",
            consultation_id=consultation_id,
            clinic_id=live.consultation.clinic_id,
            user_id=live.user_id,
            payload={"reason": reason, "discarded_partials": dropped},
        )
        return live

    # ------------------------------------------------------------------
    # Receive loop (single frame writer)
    # ------------------------------------------------------------------

    async def _receive_loop(self, channel: ClientChannel, live: LiveSession) -> str:
        """Returns why the loop ended: "disconnect", "stop" or "asr_unavailable"."""
        cursor = _FrameCursor()
        while True:
            message = await channel.receive()
            if message is None:
                logger.info(f"Session {live.consultation_id}: client disconnected")
                return "disconnect"

            if isinstance(message, (bytes, bytearray)):
                if not message:
                    continue
                try:
                    await self._accept_frame(channel, live, cursor, bytes(message))
                except ASRUnavailableError:
                    # The relay reports the failure to the client
                    return "asr_unavailable"
                continue

            control = self._parse_control(message)
            kind = control.get("type") if control else None
            if kind == "stop":
                logger.info(f"Session {live.consultation_id}: stop requested by client")
                return "stop"
            if kind == "ping":
                await self._send(channel, live, {"type": "pong"})
            else:
                await self._send(
                    channel, live, error_event("INVALID_MESSAGE", "Expected audio bytes or a stop/ping control message")
                )

    async def _accept_frame(
        self, channel: ClientChannel, live: LiveSession, cursor: _FrameCursor, payload: bytes
    ) -> None:
        async with live.lock:
            if live.state == SessionState.OPEN:
                live.transition(SessionState.STREAMING)
            accepting = live.state == SessionState.STREAMING
            state = live.state

        if not accepting:
            error = SessionNotReadyError(live.consultation_id, state.value)
            await self._send(channel, live, error_event(error.error_code, error.message))
            return

        frame = AudioFrame(
            sequence=cursor.sequence,
            payload=payload,
            offset_ms=cursor.offset_ms,
            duration_ms=live.consultation.audio.duration_ms(len(payload)),
        )
        cursor.sequence += 1
        cursor.offset_ms = frame.end_ms
        try:
            await live.transcription.feed(frame)
        except (SessionNotReadyError, FrameOrderError) as e:
            await self._send(channel, live, error_event(e.error_code, e.message))

    @staticmethod
    def _parse_control(message: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Relay (single event consumer)
    # ------------------------------------------------------------------

    async def _relay(self, channel: ClientChannel, live: LiveSession) -> None:
        async for event in live.transcription.events():
            if event.type == RecognitionEventType.CLOSED:
                break
            if event.type == RecognitionEventType.ERROR:
                record_error("asr", event.error_code)
                await self._send(
                    channel, live, error_event(event.error_code or "ASR_ERROR", event.error_message or "")
                )
                continue
            if live.state.is_terminal:
                # Force-aborted: late results are dropped
                continue
            role = live.speakers.role_for(event.channel_label)
            segment = live.aggregator.apply_event(event, role)
            if segment is not None:
                await self._send(channel, live, segment_event(segment))

        await self._complete(channel, live)

    async def _complete(self, channel: ClientChannel, live: LiveSession) -> None:
        """Closing sequence once the recognizer has emitted CLOSED."""
        consultation_id = live.consultation_id

        if live.state == SessionState.FAILED:
            await audit_log_event(
                event="session_failed",
                consultation_id=consultation_id,
                clinic_id=live.consultation.clinic_id,
                user_id=live.user_id,
                payload={"failure_code": live.consultation.failure_code},
            )
            await self._send(channel, live, {"type": "closed", "state": SessionState.FAILED.value})
            return

        if live.state == SessionState.CLOSED:
            # Force-aborted: nothing is finalized or stored
            await self._send(
                channel,
                live,
                {"type": "closed", "state": SessionState.CLOSED.value, "reason": live.consultation.closed_reason},
            )
            return

        async with live.lock:
            transcript = live.aggregator.finalize()
            if live.state in _ACCEPTING_STATES:
                live.transition(SessionState.FINALIZING, "recognizer_closed")
            live.transition(SessionState.CLOSED)

        await self._send(
            channel,
            live,
            {
                "type": "transcript",
                "text": transcript.text,
                "paragraphs": [p.to_dict() for p in transcript.paragraphs],
            },
        )

        auto_structure = self._settings.structuring.auto_structure_on_close
        try:
            record = await self._structuring.complete_live_consultation(
                live.consultation, transcript, auto_structure=auto_structure
            )
        except DomainError as e:
            await self._send(channel, live, error_event(e.error_code, e.message))
        except Exception as e:
            logger.error(f"Session {consultation_id}: storing consultation failed: {e}", exc_info=True)
            record_error("persistence", str(e))
            await self._send(channel, live, error_event("PERSISTENCE_FAILED", "Consultation could not be stored"))
        else:
            if record.result is not None:
                await self._send(
                    channel,
                    live,
                    {
                        "type": "structured",
                        "anamnesis": record.result.anamnesis,
                        "suggestions": [s.model_dump(mode="json") for s in record.result.suggestions],
                    },
                )
            elif record.structuring_error:
                await self._send(
                    channel,
                    live,
                    error_event(record.structuring_error, record.structuring_error_message or ""),
                )

        await audit_log_event(
            event="session_closed",
            consultation_id=consultation_id,
            clinic_id=live.consultation.clinic_id,
            user_id=live.user_id,
            payload={"segments": len(transcript.segments), "reconnects": live.transcription.reconnect_count},
        )
        await self._send(channel, live, {"type": "closed", "state": SessionState.CLOSED.value})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send(self, channel: ClientChannel, live: LiveSession, data: Dict[str, Any]) -> None:
        try:
            await channel.send_json(data)
        except ClientDisconnected:
            logger.debug(f"Session {live.consultation_id}: client gone, dropped {data.get('type')} event")

    @staticmethod
    async def _refuse(channel: ClientChannel, error: DomainError, code: int) -> None:
        await channel.accept()
        try:
            await channel.send_json(error_event(error.error_code, error.message))
        except ClientDisconnected:
            logger.debug(f"Client left before receiving {error.error_code}")
        await channel.close(code, error.error_code)
