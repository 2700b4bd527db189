"""
Health check endpoints.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from ..deps import get_language_model, get_session_registry, get_speech_recognizer
from ..schemas.common import ApiResponse
from ..utils.responses import ok
from ...application.ports.services.language_model import LanguageModel
from ...application.ports.services.speech_recognizer import SpeechRecognizer
from ...application.services.session_registry import SessionRegistry
from ...core.config import get_settings

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    timestamp: datetime
    version: str
    service: str


@router.get("", response_model=ApiResponse[HealthResponse])
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns the current status of the service.
    """
    settings = get_settings()
    return ok(request, data=HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=settings.app_version,
        service=settings.app_name,
    ), message="OK")


@router.get("/ready", response_model=ApiResponse[dict])
async def readiness_check(
    request: Request,
    recognizer: SpeechRecognizer = Depends(get_speech_recognizer),
    model: LanguageModel = Depends(get_language_model),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Readiness check endpoint.

    Live capture needs the recognizer; structuring needs the language model.
    """
    checks = {
        "speech_recognizer": "configured" if recognizer.is_configured else "not_configured",
        "language_model": "configured" if model.is_configured else "not_configured",
        "live_sessions": len(registry),
    }
    all_ok = recognizer.is_configured and model.is_configured
    status = "ready" if all_ok else "degraded"

    return ok(request, data={
        "status": status,
        "timestamp": datetime.utcnow(),
        "checks": checks,
    }, message="OK" if all_ok else "Some services unavailable")
