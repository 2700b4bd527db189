"""
Speaker mapping for streaming diarization.
Maps recognizer speaker labels ("0", "1", ...) to Doctor/Patient roles.

Roles are assigned by order of first appearance: the first distinct label is
the Doctor, the second the Patient, anything after that is Unknown. This is a
heuristic; it misattributes consultations where the patient speaks first.
"""

from typing import Dict, List, Optional
import logging

from ...domain.enums.consultation import SpeakerRole

logger = logging.getLogger(__name__)

_ROLE_ORDER = (SpeakerRole.DOCTOR, SpeakerRole.PATIENT)


class SpeakerAttributionTracker:
    """Per-session label -> role table. Assignments never change once made."""

    def __init__(self, consultation_id: str) -> None:
        self.consultation_id = consultation_id
        self._speaker_mapping: Dict[str, SpeakerRole] = {}
        self._speaker_order: List[str] = []

    def role_for(self, label: Optional[str]) -> SpeakerRole:
        """Role for ``label``, assigning one on first sight."""
        if label is None or label == "":
            return SpeakerRole.UNKNOWN

        role = self._speaker_mapping.get(label)
        if role is not None:
            return role

        index = len(self._speaker_order)
        role = _ROLE_ORDER[index] if index < len(_ROLE_ORDER) else SpeakerRole.UNKNOWN
        self._speaker_order.append(label)
        self._speaker_mapping[label] = role

        if role == SpeakerRole.UNKNOWN:
            logger.warning(
                f"Session {self.consultation_id}: extra speaker label '{label}' "
                f"(#{index + 1}) attributed to {role.value}"
            )
        else:
            logger.info(f"Session {self.consultation_id}: speaker label '{label}' -> {role.value}")
        return role

    @property
    def mapping(self) -> Dict[str, SpeakerRole]:
        """Snapshot of the current assignments."""
        return dict(self._speaker_mapping)

    @property
    def labels_in_order(self) -> List[str]:
        return list(self._speaker_order)


class SpeakerMappingArena:
    """Holds one tracker per live session, looked up by consultation id."""

    def __init__(self) -> None:
        self._trackers: Dict[str, SpeakerAttributionTracker] = {}

    def create(self, consultation_id: str) -> SpeakerAttributionTracker:
        """Create a fresh tracker for a session that is opening."""
        if consultation_id in self._trackers:
            raise ValueError(f"Speaker mapping already exists for session {consultation_id}")
        tracker = SpeakerAttributionTracker(consultation_id)
        self._trackers[consultation_id] = tracker
        return tracker

    def get(self, consultation_id: str) -> Optional[SpeakerAttributionTracker]:
        return self._trackers.get(consultation_id)

    def discard(self, consultation_id: str) -> None:
        """Release the tracker of a closed session."""
        self._trackers.pop(consultation_id, None)

    def __contains__(self, consultation_id: object) -> bool:
        return consultation_id in self._trackers

    def __len__(self) -> int:
        return len(self._trackers)
