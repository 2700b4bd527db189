"""Audit logging utilities.

Structured audit events go to the ``clinicstream.audit`` logger as JSON.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger("clinicstream.audit")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def audit_log_event(
    *,
    event: str,
    consultation_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    user_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    record = {
        "ts": _now_iso(),
        "event": event,
        "consultation_id": consultation_id,
        "clinic_id": clinic_id,
        "user_id": user_id,
        "payload": payload or {},
    }
    logger.info("AUDIT %s", json.dumps(record, ensure_ascii=False, default=str))
