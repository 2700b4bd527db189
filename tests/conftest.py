"""
Shared fakes for recognizer, language model and client channel.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from clinicstream.adapters.services.api_key_authorizer import ApiKeySessionAuthorizer
from clinicstream.application.dto.structuring_dto import TokenUsage
from clinicstream.application.ports.services.client_channel import ClientChannel, ClientDisconnected
from clinicstream.application.ports.services.language_model import LanguageModel, ModelResponse
from clinicstream.application.ports.services.speech_recognizer import RecognizerStream, SpeechRecognizer
from clinicstream.application.services.ingest_gateway import AudioIngestGateway
from clinicstream.application.services.session_registry import SessionRegistry
from clinicstream.application.services.structuring_engine import ClinicalStructuringEngine
from clinicstream.application.use_cases.structure_consultation import StructureConsultationUseCase
from clinicstream.core.auth import AuthService
from clinicstream.core.config import ASRSettings, SecuritySettings, Settings, StructuringSettings
from clinicstream.core.exceptions import RecognizerConnectionError
from clinicstream.domain.entities.consultation_session import AudioFrame, AudioParams, ConsultationSession
from clinicstream.domain.events.recognition import RecognitionEvent

# linear16, 16 kHz, mono
BYTES_PER_MS = 32
FRAME_BYTES = 3200  # 100 ms


def frame_payload(sequence: int) -> bytes:
    """Payload whose first byte identifies the frame."""
    return bytes([sequence % 256]) * FRAME_BYTES


def make_frame(sequence: int) -> AudioFrame:
    return AudioFrame(
        sequence=sequence,
        payload=frame_payload(sequence),
        offset_ms=sequence * 100,
        duration_ms=100,
    )


def spoken_text(sequence: int) -> str:
    return f"fala {sequence}"


class FakeRecognizerStream(RecognizerStream):
    """Emits a partial and a final per chunk, positioned on its own timeline."""

    def __init__(self, recognizer: "FakeRecognizer", index: int) -> None:
        self._recognizer = recognizer
        self.index = index
        self._queue: "asyncio.Queue[Optional[RecognitionEvent]]" = asyncio.Queue()
        self._position_ms = 0
        self.chunks: List[bytes] = []
        self.finished = False
        self.aborted = False
        self.dropped = False

    async def feed(self, chunk: bytes) -> None:
        if self.dropped or self.aborted or self.finished:
            raise RecognizerConnectionError("fake stream is closed")
        drop_after = self._recognizer.drop_after
        if self.index == 0 and drop_after is not None and len(self.chunks) == drop_after:
            self.dropped = True
            raise RecognizerConnectionError("simulated network drop")

        self.chunks.append(chunk)
        start = self._position_ms
        end = start + len(chunk) // BYTES_PER_MS
        self._position_ms = end
        if self._recognizer.muted:
            return
        sequence = chunk[0]
        label = self._recognizer.label_for(sequence)
        text = spoken_text(sequence)
        if self._recognizer.emit_partials:
            self._queue.put_nowait(RecognitionEvent.partial(text.split()[0], start, end, 0.4, label))
        self._queue.put_nowait(RecognitionEvent.final(text, start, end, 0.9, label))

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def emit(self, event: RecognitionEvent) -> None:
        self._queue.put_nowait(event)

    def fail(self, message: str = "socket reset") -> None:
        self._queue.put_nowait(RecognitionEvent.error("ASR_STREAM_ERROR", message))

    async def finish(self) -> None:
        self.finished = True
        self._queue.put_nowait(None)

    async def abort(self) -> None:
        self.aborted = True
        self._queue.put_nowait(None)


class FakeRecognizer(SpeechRecognizer):
    """Recognizer double with drop and connect-failure injection."""

    def __init__(
        self,
        *,
        labels: Sequence[Optional[str]] = ("0",),
        drop_after: Optional[int] = None,
        fail_opens: int = 0,
        emit_partials: bool = True,
        muted: bool = False,
    ) -> None:
        self.labels = list(labels)
        self.drop_after = drop_after
        self.fail_opens = fail_opens
        self.emit_partials = emit_partials
        self.muted = muted
        self.open_attempts = 0
        self.streams: List[FakeRecognizerStream] = []

    def label_for(self, sequence: int) -> Optional[str]:
        return self.labels[sequence % len(self.labels)]

    async def open(self, params: AudioParams) -> RecognizerStream:
        self.open_attempts += 1
        if self.open_attempts <= self.fail_opens:
            raise RecognizerConnectionError("connection refused")
        stream = FakeRecognizerStream(self, len(self.streams))
        self.streams.append(stream)
        return stream


class StubLanguageModel(LanguageModel):
    """Returns scripted responses; the last one repeats."""

    def __init__(
        self,
        responses: Sequence[Union[str, Exception]] = (),
        *,
        configured: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.responses = list(responses)
        self.configured = configured
        self.delay = delay
        self.prompts: List[str] = []
        self.systems: List[Optional[str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, prompt: str, schema_hint: Dict[str, Any], *, system: Optional[str] = None) -> ModelResponse:
        self.prompts.append(prompt)
        self.systems.append(system)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return ModelResponse(
            text=item,
            usage=TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150),
            model="stub-model",
        )

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeChannel(ClientChannel):
    """Client connection fed from a script of inbound messages."""

    def __init__(self, inbound: Sequence[Optional[Union[bytes, str]]] = ()) -> None:
        self.inbound: "asyncio.Queue[Optional[Union[bytes, str]]]" = asyncio.Queue()
        for message in inbound:
            self.inbound.put_nowait(message)
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> Optional[Union[bytes, str]]:
        return await self.inbound.get()

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.close_code is not None:
            raise ClientDisconnected()
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == kind]


STOP = json.dumps({"type": "stop"})


def valid_structured_json(**overrides: Any) -> str:
    body = {
        "anamnese": "QUEIXA PRINCIPAL: cefaleia há três dias.",
        "suggestions": [
            {
                "kind": "exame",
                "description": "Hemograma completo",
                "rationale": "Investigar quadro infeccioso",
                "confidence": 0.8,
            },
            {
                "kind": "medication",
                "description": "Dipirona 500 mg",
                "rationale": "Analgesia",
                "confidence": 0.7,
                "dosage": "500 mg",
                "frequency": "6/6h",
                "duration": "3 dias",
            },
        ],
    }
    body.update(overrides)
    return json.dumps(body, ensure_ascii=False)


async def wait_until(predicate: Callable[[], bool], attempts: int = 200) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


@pytest.fixture
def asr_settings() -> ASRSettings:
    return ASRSettings(
        api_key="",
        max_reconnect_attempts=3,
        initial_backoff_seconds=0.0,
        max_backoff_seconds=0.0,
        finalize_timeout_seconds=2.0,
    )


@pytest.fixture
def structuring_settings() -> StructuringSettings:
    return StructuringSettings(max_attempts=3, request_timeout_seconds=1.0)


@pytest.fixture
def consultation() -> ConsultationSession:
    return ConsultationSession(
        consultation_id="consult-1",
        clinic_id="clinic-1",
        physician_id="dr-ana",
        patient_id="patient-1",
    )


API_KEY = "test-key"


class MemoryRecordSink:
    def __init__(self) -> None:
        self.records: List[Any] = []

    async def store(self, record: Any) -> None:
        self.records.append(record)


def build_gateway(asr_settings, structuring_settings, recognizer=None, model=None, sink=None):
    """Gateway wired to fakes; returns (gateway, registry, use_case)."""
    registry = SessionRegistry(recognizer or FakeRecognizer(), asr_settings)
    auth = AuthService(SecuritySettings(auth_enabled=True, api_keys=f"{API_KEY}:dr-ana"))
    engine = ClinicalStructuringEngine(model or StubLanguageModel([valid_structured_json()]), structuring_settings)
    use_case = StructureConsultationUseCase(engine, record_sink=sink if sink is not None else MemoryRecordSink())
    settings = Settings(structuring=structuring_settings, asr=asr_settings)
    gateway = AudioIngestGateway(registry, ApiKeySessionAuthorizer(auth), use_case, settings)
    return gateway, registry, use_case


@pytest.fixture
def api(monkeypatch, asr_settings, structuring_settings):
    """App with every collaborator replaced by a fake; auth uses API_KEY."""
    from clinicstream.api import deps
    from clinicstream.app import create_app
    from clinicstream.core import auth as auth_module

    monkeypatch.setattr(
        auth_module, "_auth_service", AuthService(SecuritySettings(auth_enabled=True, api_keys=f"{API_KEY}:dr-ana"))
    )
    recognizer = FakeRecognizer(labels=("0", "1"))
    model = StubLanguageModel([valid_structured_json()])
    sink = MemoryRecordSink()
    gateway, registry, use_case = build_gateway(
        asr_settings, structuring_settings, recognizer=recognizer, model=model, sink=sink
    )

    app = create_app()
    app.dependency_overrides[deps.get_speech_recognizer] = lambda: recognizer
    app.dependency_overrides[deps.get_language_model] = lambda: model
    app.dependency_overrides[deps.get_session_registry] = lambda: registry
    app.dependency_overrides[deps.get_ingest_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_structure_use_case] = lambda: use_case

    return SimpleNamespace(app=app, registry=registry, recognizer=recognizer, model=model, sink=sink)
