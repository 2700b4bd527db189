"""
Transcription session tests: recognizer drops, reconnect with replay, close and abort.
"""

import asyncio

import pytest

from clinicstream.application.services.transcript_aggregator import TranscriptAggregator
from clinicstream.application.services.transcription_session import TranscriptionSession
from clinicstream.core.config import ASRSettings
from clinicstream.domain.enums.consultation import RecognitionEventType, SessionState, SpeakerRole
from clinicstream.domain.errors import ASRUnavailableError, FrameOrderError, SessionNotReadyError
from clinicstream.domain.events.recognition import RecognitionEvent

from conftest import FakeRecognizer, make_frame, spoken_text, wait_until


async def collect(session):
    events = []
    async for event in session.events():
        events.append(event)
    return events


def build_transcript(events, consultation_id="consult-1"):
    agg = TranscriptAggregator(consultation_id)
    for event in events:
        agg.apply_event(event, SpeakerRole.DOCTOR)
    return agg.finalize()


@pytest.mark.asyncio
async def test_frames_are_transcribed_in_order(consultation, asr_settings):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    for sequence in range(5):
        await session.feed(make_frame(sequence))
    await session.close()
    events = await collect(session)

    assert events[-1].type == RecognitionEventType.CLOSED
    finals = [e for e in events if e.type == RecognitionEventType.FINAL]
    assert [e.text for e in finals] == [spoken_text(i) for i in range(5)]
    assert [e.start_ms for e in finals] == [0, 100, 200, 300, 400]
    assert recognizer.streams[0].finished
    assert session.unacknowledged_frames == 0


@pytest.mark.asyncio
async def test_recognizer_opens_lazily_on_first_frame(consultation, asr_settings):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, asr_settings)
    assert not session.is_open
    assert recognizer.open_attempts == 0

    await session.feed(make_frame(0))
    assert session.is_open
    assert recognizer.open_attempts == 1
    await session.abort()


@pytest.mark.asyncio
async def test_drop_after_frame_10_reconnects_without_losing_or_duplicating(consultation, asr_settings):
    recognizer = FakeRecognizer(drop_after=10)
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    for sequence in range(20):
        await session.feed(make_frame(sequence))
    await session.close()
    events = await collect(session)

    assert session.reconnect_count == 1
    assert len(recognizer.streams) == 2
    assert recognizer.streams[0].dropped

    transcript = build_transcript(events)
    texts = [segment.text for segment in transcript.segments]
    assert texts == [spoken_text(i) for i in range(20)]
    for previous, current in zip(transcript.segments, transcript.segments[1:]):
        assert previous.end_ms <= current.start_ms
    assert transcript.segments[10].start_ms == 1000
    assert not any(segment.low_confidence for segment in transcript.segments)


@pytest.mark.asyncio
async def test_error_event_from_recognizer_triggers_reconnect(consultation, asr_settings):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    for sequence in range(3):
        await session.feed(make_frame(sequence))
    assert await wait_until(lambda: session.acknowledged_ms == 300)

    recognizer.streams[0].fail("socket reset")
    assert await wait_until(lambda: len(recognizer.streams) == 2)

    for sequence in range(3, 6):
        await session.feed(make_frame(sequence))
    await session.close()
    events = await collect(session)

    assert session.reconnect_count == 1
    transcript = build_transcript(events)
    assert [s.text for s in transcript.segments] == [spoken_text(i) for i in range(6)]
    assert [s.start_ms for s in transcript.segments] == [0, 100, 200, 300, 400, 500]


@pytest.mark.asyncio
async def test_connect_succeeds_within_retry_budget(consultation, asr_settings):
    recognizer = FakeRecognizer(fail_opens=2)
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    await session.feed(make_frame(0))
    await session.close()
    events = await collect(session)

    assert not session.failed
    assert recognizer.open_attempts == 3
    assert [e.text for e in events if e.type == RecognitionEventType.FINAL] == [spoken_text(0)]


@pytest.mark.asyncio
async def test_exhausted_retries_fail_with_asr_unavailable(consultation, asr_settings):
    recognizer = FakeRecognizer(fail_opens=100)
    consultation.transition_to(SessionState.STREAMING)
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    with pytest.raises(ASRUnavailableError):
        await session.feed(make_frame(0))
    events = await collect(session)

    # one initial connect plus max_reconnect_attempts retries
    assert recognizer.open_attempts == 1 + asr_settings.max_reconnect_attempts
    assert session.failed
    assert consultation.state == SessionState.FAILED
    assert consultation.failure_code == "ASR_UNAVAILABLE"
    assert [e.type for e in events] == [RecognitionEventType.ERROR, RecognitionEventType.CLOSED]
    assert events[0].error_code == "ASR_UNAVAILABLE"

    with pytest.raises(ASRUnavailableError):
        await session.feed(make_frame(1))


@pytest.mark.asyncio
async def test_zero_frames_close_yields_only_closed(consultation, asr_settings):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, asr_settings)

    await session.close()
    events = await collect(session)

    assert [e.type for e in events] == [RecognitionEventType.CLOSED]
    assert recognizer.open_attempts == 0
    assert build_transcript(events).is_empty


@pytest.mark.asyncio
async def test_frame_sequence_must_increase(consultation, asr_settings):
    session = TranscriptionSession(consultation, FakeRecognizer(), asr_settings)
    await session.feed(make_frame(3))

    with pytest.raises(FrameOrderError):
        await session.feed(make_frame(3))
    with pytest.raises(FrameOrderError):
        await session.feed(make_frame(1))
    await session.abort()


@pytest.mark.asyncio
async def test_feed_after_close_is_rejected(consultation, asr_settings):
    session = TranscriptionSession(consultation, FakeRecognizer(), asr_settings)
    await session.feed(make_frame(0))
    await session.close()

    with pytest.raises(SessionNotReadyError):
        await session.feed(make_frame(1))


@pytest.mark.asyncio
async def test_abort_closes_stream_without_draining(consultation, asr_settings):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, asr_settings)
    await session.feed(make_frame(0))

    await session.abort()
    events = await collect(session)

    assert recognizer.streams[0].aborted
    assert not recognizer.streams[0].finished
    assert events[-1].type == RecognitionEventType.CLOSED
    assert session.unacknowledged_frames == 0
    assert not session.is_open


def slow_backoff_settings() -> ASRSettings:
    return ASRSettings(
        api_key="",
        max_reconnect_attempts=3,
        initial_backoff_seconds=0.2,
        max_backoff_seconds=0.2,
        finalize_timeout_seconds=2.0,
    )


@pytest.mark.asyncio
async def test_frame_waiting_on_reconnect_is_rejected_after_abort(consultation):
    recognizer = FakeRecognizer()
    session = TranscriptionSession(consultation, recognizer, slow_backoff_settings())
    await session.feed(make_frame(0))

    recognizer.streams[0].fail("socket reset")
    assert await wait_until(lambda: not session.is_open)
    waiting = asyncio.create_task(session.feed(make_frame(1)))
    await asyncio.sleep(0)

    await session.abort()
    with pytest.raises(SessionNotReadyError):
        await waiting
    events = await collect(session)

    assert not session.is_open
    assert len(recognizer.streams) == 1
    assert recognizer.streams[0].aborted
    assert events[-1].type == RecognitionEventType.CLOSED


@pytest.mark.asyncio
async def test_abort_during_feed_reconnect_opens_no_new_stream(consultation):
    recognizer = FakeRecognizer(drop_after=1)
    session = TranscriptionSession(consultation, recognizer, slow_backoff_settings())
    await session.feed(make_frame(0))

    reconnecting = asyncio.create_task(session.feed(make_frame(1)))
    assert await wait_until(lambda: recognizer.streams[0].dropped and not session.is_open)

    await session.abort()
    await reconnecting
    events = await collect(session)

    assert recognizer.open_attempts == 1
    assert not session.is_open
    assert not session.failed
    assert [e.type for e in events][-1] == RecognitionEventType.CLOSED


@pytest.mark.asyncio
async def test_silent_final_acknowledges_audio_without_emitting_text(consultation, asr_settings):
    recognizer = FakeRecognizer(muted=True)
    session = TranscriptionSession(consultation, recognizer, asr_settings)
    for sequence in range(5):
        await session.feed(make_frame(sequence))
    assert session.unacknowledged_frames == 5

    recognizer.streams[0].emit(RecognitionEvent.final("", 0, 500))
    assert await wait_until(lambda: session.unacknowledged_frames == 0)
    assert session.acknowledged_ms == 500

    await session.abort()
    events = await collect(session)
    assert [e.type for e in events] == [RecognitionEventType.CLOSED]
