"""
In-memory exam catalog.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from ...application.dto.structuring_dto import ExamReference
from ...application.ports.services.exam_catalog import ExamCatalog


class InMemoryExamCatalog(ExamCatalog):
    """Exam references held in a dict, keyed by catalog id."""

    def __init__(self, exams: Optional[Iterable[ExamReference]] = None):
        self._exams: Dict[str, ExamReference] = {exam.id: exam for exam in exams or []}

    def add(self, exam: ExamReference) -> None:
        self._exams[exam.id] = exam

    async def lookup(self, exam_ids: Sequence[str]) -> List[ExamReference]:
        return [self._exams[exam_id] for exam_id in exam_ids if exam_id in self._exams]
