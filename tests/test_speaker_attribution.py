"""
Speaker label -> clinical role attribution tests.
"""

import pytest

from clinicstream.application.utils.speaker_mapping import SpeakerAttributionTracker, SpeakerMappingArena
from clinicstream.domain.enums.consultation import SpeakerRole


def test_first_label_is_doctor_second_is_patient():
    tracker = SpeakerAttributionTracker("c-1")
    assert tracker.role_for("1") == SpeakerRole.DOCTOR
    assert tracker.role_for("0") == SpeakerRole.PATIENT
    assert tracker.labels_in_order == ["1", "0"]


def test_assignment_is_stable():
    tracker = SpeakerAttributionTracker("c-1")
    tracker.role_for("0")
    tracker.role_for("1")
    for _ in range(5):
        assert tracker.role_for("0") == SpeakerRole.DOCTOR
        assert tracker.role_for("1") == SpeakerRole.PATIENT


def test_third_label_is_unknown():
    tracker = SpeakerAttributionTracker("c-1")
    tracker.role_for("0")
    tracker.role_for("1")
    assert tracker.role_for("2") == SpeakerRole.UNKNOWN
    assert tracker.role_for("2") == SpeakerRole.UNKNOWN
    assert tracker.mapping == {"0": SpeakerRole.DOCTOR, "1": SpeakerRole.PATIENT, "2": SpeakerRole.UNKNOWN}


@pytest.mark.parametrize("label", [None, ""])
def test_missing_label_is_unknown_and_not_recorded(label):
    tracker = SpeakerAttributionTracker("c-1")
    assert tracker.role_for(label) == SpeakerRole.UNKNOWN
    assert tracker.mapping == {}
    # The next real label still becomes the doctor
    assert tracker.role_for("0") == SpeakerRole.DOCTOR


def test_sessions_do_not_share_labels():
    arena = SpeakerMappingArena()
    first = arena.create("c-1")
    second = arena.create("c-2")

    assert first.role_for("0") == SpeakerRole.DOCTOR
    assert first.role_for("1") == SpeakerRole.PATIENT
    # Same label "0" in another session starts from scratch
    assert second.role_for("1") == SpeakerRole.DOCTOR
    assert second.role_for("0") == SpeakerRole.PATIENT
    assert first.role_for("0") == SpeakerRole.DOCTOR


def test_arena_rejects_duplicate_and_discards():
    arena = SpeakerMappingArena()
    arena.create("c-1")
    with pytest.raises(ValueError):
        arena.create("c-1")

    arena.discard("c-1")
    assert "c-1" not in arena
    assert len(arena) == 0
    assert arena.create("c-1").mapping == {}
