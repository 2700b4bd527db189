"""
Live session registry tests.
"""

import pytest

from clinicstream.application.services.session_registry import SessionRegistry
from clinicstream.domain.entities.consultation_session import ConsultationSession
from clinicstream.domain.enums.consultation import SessionState, SpeakerRole
from clinicstream.domain.errors import (
    InvalidSessionTransitionError,
    SessionConflictError,
    SessionNotFoundError,
)

from conftest import FakeRecognizer


def new_consultation(consultation_id):
    return ConsultationSession(
        consultation_id=consultation_id, clinic_id="clinic-1", physician_id="dr-ana", patient_id="p-1"
    )


@pytest.fixture
def registry(asr_settings):
    return SessionRegistry(FakeRecognizer(), asr_settings)


def test_create_and_lookup(registry):
    live = registry.create(new_consultation("c-1"), user_id="dr-ana")

    assert "c-1" in registry
    assert len(registry) == 1
    assert registry.get("c-1") is live
    assert registry.require("c-1") is live
    assert live.state == SessionState.OPEN
    assert live.user_id == "dr-ana"


def test_duplicate_consultation_conflicts(registry):
    registry.create(new_consultation("c-1"))
    with pytest.raises(SessionConflictError) as exc_info:
        registry.create(new_consultation("c-1"))
    assert exc_info.value.error_code == "SESSION_CONFLICT"


def test_require_unknown_raises(registry):
    with pytest.raises(SessionNotFoundError):
        registry.require("missing")
    assert registry.get("missing") is None


def test_two_sessions_with_same_label_are_attributed_independently(registry):
    first = registry.create(new_consultation("c-1"))
    second = registry.create(new_consultation("c-2"))

    assert first.speakers.role_for("0") == SpeakerRole.DOCTOR
    assert second.speakers.role_for("0") == SpeakerRole.DOCTOR
    assert first.speakers.role_for("1") == SpeakerRole.PATIENT
    assert second.speakers.mapping == {"0": SpeakerRole.DOCTOR}
    assert first.aggregator is not second.aggregator
    assert first.transcription is not second.transcription


def test_remove_releases_session_and_speaker_table(registry):
    registry.create(new_consultation("c-1"))
    assert registry.remove("c-1") is not None
    assert "c-1" not in registry
    assert registry.remove("c-1") is None

    # The consultation can stream again with a fresh mapping
    live = registry.create(new_consultation("c-1"))
    assert live.speakers.mapping == {}


def test_lifecycle_transitions(registry):
    live = registry.create(new_consultation("c-1"))
    live.transition(SessionState.STREAMING)
    live.transition(SessionState.FINALIZING, "client_stop")
    live.transition(SessionState.CLOSED)

    assert live.consultation.closed_reason == "completed"
    with pytest.raises(InvalidSessionTransitionError):
        live.transition(SessionState.STREAMING)


def test_summary_shape(registry):
    live = registry.create(new_consultation("c-1"))
    live.speakers.role_for("0")
    summary = live.to_summary()

    assert summary["consultation_id"] == "c-1"
    assert summary["state"] == "OPEN"
    assert summary["speakers"] == {"0": "Doctor"}
    assert summary["final_segments"] == 0
    assert summary["reconnects"] == 0
