"""Structure consultation use case: transcript -> anamnesis + suggestions."""

import logging
from typing import Optional, Sequence

from ...domain.entities.consultation_session import ConsultationSession
from ...domain.entities.transcript import FinalTranscript
from ...domain.errors import DomainError
from ...observability.audit import audit_log_event
from ..dto.consultation_dto import ConsultationRecord
from ..dto.structuring_dto import StructuringContext, StructuringRequest, StructuringResult
from ..ports.repositories.consultation_record_sink import ConsultationRecordSink
from ..ports.services.exam_catalog import ExamCatalog
from ..services.structuring_engine import ClinicalStructuringEngine

logger = logging.getLogger(__name__)


class StructureConsultationUseCase:
    """Resolves clinical context, runs the structuring engine and hands results to storage."""

    def __init__(
        self,
        engine: ClinicalStructuringEngine,
        exam_catalog: Optional[ExamCatalog] = None,
        record_sink: Optional[ConsultationRecordSink] = None,
    ):
        self._engine = engine
        self._exam_catalog = exam_catalog
        self._record_sink = record_sink

    async def _build_context(
        self,
        exam_ids: Sequence[str],
        allergies: Sequence[str],
        current_medications: Sequence[str],
    ) -> StructuringContext:
        exams = []
        if exam_ids and self._exam_catalog is not None:
            exams = await self._exam_catalog.lookup(list(exam_ids))
            missing = set(exam_ids) - {exam.id for exam in exams}
            if missing:
                logger.info(f"Exam catalog has no entry for {len(missing)} exam id(s)")
        return StructuringContext(
            exam_ids=list(exam_ids),
            exams=exams,
            allergies=list(allergies),
            current_medications=list(current_medications),
        )

    async def execute(self, request: StructuringRequest) -> StructuringResult:
        """Structure a transcript supplied directly by the caller."""
        context = await self._build_context(
            request.exam_ids, request.allergies, request.current_medications
        )
        result = await self._engine.structure(
            request.transcript,
            context,
            anamnesis_only=request.anamnesis_only,
            consultation_id=request.consultation_id,
        )
        await audit_log_event(
            event="consultation_structured",
            consultation_id=request.consultation_id,
            payload={"attempts": result.attempts, "suggestions": len(result.suggestions)},
        )
        return result

    async def complete_live_consultation(
        self,
        consultation: ConsultationSession,
        transcript: FinalTranscript,
        *,
        auto_structure: bool = True,
    ) -> ConsultationRecord:
        """
        Structure a closed live session's transcript (when enabled) and store it.

        A structuring failure does not prevent storage; its error code is kept
        on the record instead.
        """
        consultation_id = str(consultation.consultation_id)
        record = ConsultationRecord(
            consultation_id=consultation_id,
            clinic_id=consultation.clinic_id,
            physician_id=consultation.physician_id,
            patient_id=consultation.patient_id,
            transcript=transcript,
        )

        if auto_structure:
            try:
                record.result = await self._engine.structure(
                    transcript.text, consultation_id=consultation_id
                )
            except DomainError as e:
                logger.warning(f"Structuring failed for consultation {consultation_id}: {e.error_code}")
                record.structuring_error = e.error_code
                record.structuring_error_message = e.message

        if self._record_sink is not None:
            await self._record_sink.store(record)
        await audit_log_event(
            event="consultation_completed",
            consultation_id=consultation_id,
            clinic_id=consultation.clinic_id,
            user_id=consultation.physician_id,
            payload={
                "segments": len(transcript.segments),
                "structured": record.result is not None,
                "structuring_error": record.structuring_error,
            },
        )
        return record
