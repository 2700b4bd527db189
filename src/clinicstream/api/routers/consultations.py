"""Consultation endpoints: live session inspection, force-abort and offline structuring."""
import logging

from fastapi import APIRouter, Depends, Request, status

from ..deps import get_ingest_gateway, get_session_registry, get_structure_use_case
from ..schemas.common import ApiResponse, ErrorResponse
from ..schemas.consultation import LiveSessionView, StructureConsultationRequest
from ..utils.responses import ok
from ...application.dto.structuring_dto import StructuringResult
from ...application.services.ingest_gateway import AudioIngestGateway
from ...application.services.session_registry import SessionRegistry
from ...application.use_cases.structure_consultation import StructureConsultationUseCase
from ...domain.value_objects.consultation_id import ConsultationId

router = APIRouter(prefix="/consultations", tags=["Consultations"])
logger = logging.getLogger("clinicstream")


@router.get("/sessions", response_model=ApiResponse[list])
async def list_live_sessions(
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """List live consultation sessions on this instance."""
    sessions = [live.to_summary() for live in registry.list()]
    return ok(request, data=sessions, message=f"{len(sessions)} live session(s)")


@router.get(
    "/{consultation_id}/session",
    response_model=ApiResponse[LiveSessionView],
    responses={404: {"model": ErrorResponse, "description": "No live session"}},
)
async def get_live_session(
    request: Request,
    consultation_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Live session state plus finals and outstanding partials so far."""
    live = registry.require(str(ConsultationId(consultation_id)))
    view = LiveSessionView(
        session=live.to_summary(),
        live_transcript=[segment.to_dict() for segment in live.aggregator.live_view()],
    )
    return ok(request, data=view)


@router.delete(
    "/{consultation_id}/session",
    response_model=ApiResponse[dict],
    responses={404: {"model": ErrorResponse, "description": "No live session"}},
)
async def abort_live_session(
    request: Request,
    consultation_id: str,
    gateway: AudioIngestGateway = Depends(get_ingest_gateway),
):
    """Force-abort a live session. The recognizer is closed at once and partials are discarded."""
    live = await gateway.abort(str(ConsultationId(consultation_id)))
    logger.info(f"Consultation {consultation_id} aborted by {getattr(request.state, 'user_id', 'unknown')}")
    return ok(request, data=live.consultation.to_summary(), message="Session aborted")


@router.post(
    "/structure",
    status_code=status.HTTP_200_OK,
    response_model=ApiResponse[StructuringResult],
    responses={
        400: {"model": ErrorResponse, "description": "Empty transcript"},
        502: {"model": ErrorResponse, "description": "Model output invalid or model unavailable"},
        503: {"model": ErrorResponse, "description": "Language model not configured"},
    },
)
async def structure_consultation(
    request: Request,
    body: StructureConsultationRequest,
    use_case: StructureConsultationUseCase = Depends(get_structure_use_case),
):
    """Structure a supplied transcript into an anamnesis and suggestions."""
    result = await use_case.execute(body.to_dto())
    return ok(request, data=result, message="Consultation structured")
