"""
Idle session reaper tests.
"""

import asyncio
import time

import pytest

from clinicstream.core.config import SessionSettings
from clinicstream.domain.entities.consultation_session import AudioParams
from clinicstream.domain.enums.consultation import SessionState
from clinicstream.workers.session_reaper import _sweep_once, run_session_reaper_forever

from conftest import API_KEY, FakeChannel, MemoryRecordSink, build_gateway, frame_payload, wait_until


def start_session(gateway, channel, consultation_id):
    return asyncio.create_task(
        gateway.handle(
            channel,
            consultation_id,
            credentials=API_KEY,
            clinic_id="clinic-1",
            physician_id="dr-ana",
            patient_id="patient-1",
            audio=AudioParams(),
        )
    )


def is_streaming(registry, consultation_id):
    live = registry.get(consultation_id)
    return live is not None and live.state == SessionState.STREAMING and live.aggregator.final_segments


@pytest.mark.asyncio
async def test_idle_session_is_finalized_and_stored(asr_settings, structuring_settings):
    sink = MemoryRecordSink()
    gateway, registry, _ = build_gateway(asr_settings, structuring_settings, sink=sink)
    idle_channel = FakeChannel([frame_payload(0)])
    busy_channel = FakeChannel([frame_payload(1)])
    idle_task = start_session(gateway, idle_channel, "consult-idle")
    busy_task = start_session(gateway, busy_channel, "consult-busy")
    assert await wait_until(lambda: is_streaming(registry, "consult-idle") and is_streaming(registry, "consult-busy"))

    registry.get("consult-idle").transcription.last_activity = time.monotonic() - 60

    reaped = await _sweep_once(registry, gateway, idle_timeout_seconds=30)
    await idle_task

    assert reaped == ["consult-idle"]
    assert idle_channel.of_type("transcript")[0]["text"] == "Doctor: fala 0"
    assert idle_channel.sent[-1] == {"type": "closed", "state": "CLOSED"}
    assert [record.consultation_id for record in sink.records] == ["consult-idle"]
    assert "consult-busy" in registry

    busy_channel.inbound.put_nowait(None)
    await busy_task
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_sweep_without_idle_sessions_is_a_no_op(asr_settings, structuring_settings):
    gateway, registry, _ = build_gateway(asr_settings, structuring_settings)
    assert await _sweep_once(registry, gateway, idle_timeout_seconds=30) == []


@pytest.mark.asyncio
async def test_disabled_reaper_returns_immediately(asr_settings, structuring_settings):
    gateway, registry, _ = build_gateway(asr_settings, structuring_settings)
    await asyncio.wait_for(
        run_session_reaper_forever(registry, gateway, SessionSettings(reaper_enabled=False)), timeout=1
    )
