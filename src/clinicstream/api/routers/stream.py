"""Live consultation audio stream (WebSocket)."""
import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..deps import get_ingest_gateway
from ...application.ports.services.client_channel import ClientChannel, ClientDisconnected
from ...application.services.ingest_gateway import AudioIngestGateway, error_event
from ...core.config import get_settings
from ...domain.entities.consultation_session import AudioParams
from ...domain.value_objects.consultation_id import ConsultationId

router = APIRouter(tags=["Live Consultation"])
logger = logging.getLogger("clinicstream")

CLOSE_INVALID_PARAMS = 4400


class WebSocketChannel(ClientChannel):
    """ClientChannel over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def accept(self) -> None:
        if self._ws.client_state == WebSocketState.CONNECTING:
            await self._ws.accept()

    async def receive(self) -> Optional[Union[bytes, str]]:
        if self._ws.client_state == WebSocketState.DISCONNECTED:
            return None
        try:
            message = await self._ws.receive()
        except (WebSocketDisconnect, RuntimeError):
            return None
        if message["type"] == "websocket.disconnect":
            return None
        if message.get("bytes") is not None:
            return message["bytes"]
        return message.get("text")

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            raise ClientDisconnected()
        try:
            await self._ws.send_json(data)
        except (WebSocketDisconnect, RuntimeError) as e:
            raise ClientDisconnected() from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as e:
            # Client already went away
            logger.debug(f"WebSocket close skipped: {e}")


def _credentials(websocket: WebSocket) -> Optional[str]:
    api_key = websocket.headers.get("X-API-Key") or websocket.query_params.get("api_key")
    if api_key:
        return api_key
    auth_header = websocket.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return None


@router.websocket("/ws/consultations/{consultation_id}")
async def consultation_stream(
    websocket: WebSocket,
    consultation_id: str,
    gateway: AudioIngestGateway = Depends(get_ingest_gateway),
):
    """
    Stream consultation audio; receive partial/final transcript events.

    Query parameters: clinic_id, physician_id, patient_id, sample_rate,
    channels, encoding. Binary messages are audio; text messages are
    {"type": "stop"} or {"type": "ping"}.
    """
    channel = WebSocketChannel(websocket)
    defaults = get_settings().session
    params = websocket.query_params
    try:
        consultation = ConsultationId(consultation_id)
        audio = AudioParams(
            sample_rate=int(params.get("sample_rate", defaults.default_sample_rate)),
            channels=int(params.get("channels", defaults.default_channels)),
            encoding=params.get("encoding", defaults.default_encoding),
        )
    except ValueError as e:
        await channel.accept()
        await channel.send_json(error_event("INVALID_INPUT", str(e)))
        await channel.close(CLOSE_INVALID_PARAMS, "INVALID_INPUT")
        return

    await gateway.handle(
        channel,
        str(consultation),
        credentials=_credentials(websocket),
        clinic_id=params.get("clinic_id", ""),
        physician_id=params.get("physician_id", ""),
        patient_id=params.get("patient_id", ""),
        audio=audio,
    )
