import asyncio
import logging
from typing import List

from clinicstream.application.services.ingest_gateway import AudioIngestGateway
from clinicstream.application.services.session_registry import SessionRegistry
from clinicstream.core.config import SessionSettings
from clinicstream.domain.enums.consultation import SessionState

logger = logging.getLogger("clinicstream")

_REAPABLE_STATES = (SessionState.OPEN, SessionState.STREAMING)


async def _sweep_once(
    registry: SessionRegistry, gateway: AudioIngestGateway, idle_timeout_seconds: float
) -> List[str]:
    """
    Finalize live sessions with no frames and no recognizer events for the idle timeout.

    Returns the consultation ids that were finalized.
    """
    idle = [
        live
        for live in registry.list()
        if live.state in _REAPABLE_STATES and live.transcription.idle_seconds >= idle_timeout_seconds
    ]
    for live in idle:
        logger.info(
            "[SessionReaper] Finalizing idle session consultation=%s state=%s idle=%.1fs",
            live.consultation_id,
            live.state.value,
            live.transcription.idle_seconds,
        )

    results = await asyncio.gather(
        *(gateway.finalize(live, "idle_timeout") for live in idle), return_exceptions=True
    )
    reaped = []
    for live, result in zip(idle, results):
        if isinstance(result, Exception):
            logger.error(
                "[SessionReaper] Finalizing consultation=%s failed: %s",
                live.consultation_id,
                result,
                exc_info=result,
            )
        else:
            reaped.append(live.consultation_id)
    return reaped


async def run_session_reaper_forever(
    registry: SessionRegistry, gateway: AudioIngestGateway, settings: SessionSettings
) -> None:
    """
    Run the idle-session reaper in a loop, controlled by session settings.
    """
    if not settings.reaper_enabled:
        logger.info("[SessionReaper] Disabled via SESSION_REAPER_ENABLED")
        return

    interval = max(0.5, settings.reaper_interval_seconds)
    logger.info(
        "[SessionReaper] Starting (interval=%ss, idle_timeout=%ss)",
        interval,
        settings.idle_timeout_seconds,
    )

    while True:
        try:
            await _sweep_once(registry, gateway, settings.idle_timeout_seconds)
        except Exception as e:  # noqa: PERF203
            logger.error("[SessionReaper] Sweep iteration failed: %s", e, exc_info=True)
        await asyncio.sleep(interval)
