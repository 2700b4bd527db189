"""
Default sinks for finalized consultations and token usage.

Storage and billing are external collaborators; these implementations hand
records to the audit log and to OpenTelemetry counters.
"""

import logging
from typing import Optional

from ...application.dto.consultation_dto import ConsultationRecord
from ...application.dto.structuring_dto import TokenUsage
from ...application.ports.repositories.consultation_record_sink import ConsultationRecordSink
from ...application.ports.repositories.token_usage_sink import TokenUsageSink
from ...observability.audit import audit_log_event
from ...observability.metrics import record_token_usage

logger = logging.getLogger(__name__)


class AuditConsultationRecordSink(ConsultationRecordSink):
    """Emits a ``consultation_record_stored`` audit event; transcript text is not logged."""

    async def store(self, record: ConsultationRecord) -> None:
        result = record.result
        await audit_log_event(
            event="consultation_record_stored",
            consultation_id=record.consultation_id,
            clinic_id=record.clinic_id,
            user_id=record.physician_id,
            payload={
                "patient_id": record.patient_id,
                "segments": len(record.transcript.segments),
                "paragraphs": len(record.transcript.paragraphs),
                "suggestions": len(result.suggestions) if result else 0,
                "structuring_error": record.structuring_error,
            },
        )


class MetricsTokenUsageSink(TokenUsageSink):
    async def record(
        self,
        usage: TokenUsage,
        *,
        consultation_id: Optional[str] = None,
        model: Optional[str] = None,
        success: bool = True,
    ) -> None:
        record_token_usage(model or "unknown", usage.prompt_tokens, usage.completion_tokens, success=success)
        logger.info(
            f"Token usage: consultation={consultation_id} model={model} "
            f"prompt={usage.prompt_tokens} completion={usage.completion_tokens} "
            f"total={usage.total_tokens} success={success}"
        )
