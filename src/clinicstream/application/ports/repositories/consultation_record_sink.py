"""
Persistence sink interface for finalized consultations.
"""

from clinicstream.application.dto.consultation_dto import ConsultationRecord


class ConsultationRecordSink:
    """Accepts finalized transcripts and structuring results for storage."""

    async def store(self, record: ConsultationRecord) -> None:
        """Hand a finalized consultation to storage."""
        raise NotImplementedError
