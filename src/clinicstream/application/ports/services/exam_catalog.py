"""
Exam catalog collaborator interface.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from ...dto.structuring_dto import ExamReference


class ExamCatalog(ABC):
    """Resolves exam catalog ids to descriptive metadata."""

    @abstractmethod
    async def lookup(self, exam_ids: Sequence[str]) -> List[ExamReference]:
        """Return references for the ids the catalog knows; unknown ids are omitted."""
