"""FastAPI dependency providers.

One instance of each collaborator per process; tests replace them through
``app.dependency_overrides``.
"""

from functools import lru_cache

from ..adapters.external.deepgram_recognizer import DeepgramSpeechRecognizer
from ..adapters.external.openai_language_model import OpenAILanguageModel
from ..adapters.services.api_key_authorizer import ApiKeySessionAuthorizer
from ..adapters.services.exam_catalog import InMemoryExamCatalog
from ..adapters.services.record_sinks import AuditConsultationRecordSink, MetricsTokenUsageSink
from ..application.ports.repositories.consultation_record_sink import ConsultationRecordSink
from ..application.ports.repositories.token_usage_sink import TokenUsageSink
from ..application.ports.services.exam_catalog import ExamCatalog
from ..application.ports.services.language_model import LanguageModel
from ..application.ports.services.session_authorizer import SessionAuthorizer
from ..application.ports.services.speech_recognizer import SpeechRecognizer
from ..application.services.ingest_gateway import AudioIngestGateway
from ..application.services.session_registry import SessionRegistry
from ..application.services.structuring_engine import ClinicalStructuringEngine
from ..application.use_cases.structure_consultation import StructureConsultationUseCase
from ..core.ai_client import ChatClient
from ..core.auth import get_auth_service
from ..core.config import get_settings


@lru_cache()
def get_language_model() -> LanguageModel:
    """Get language model instance (OpenAI or Azure OpenAI)."""
    return OpenAILanguageModel(ChatClient(get_settings()))


@lru_cache()
def get_speech_recognizer() -> SpeechRecognizer:
    """Get streaming recognizer instance."""
    return DeepgramSpeechRecognizer(get_settings().asr)


@lru_cache()
def get_exam_catalog() -> ExamCatalog:
    return InMemoryExamCatalog()


@lru_cache()
def get_record_sink() -> ConsultationRecordSink:
    return AuditConsultationRecordSink()


@lru_cache()
def get_token_usage_sink() -> TokenUsageSink:
    return MetricsTokenUsageSink()


@lru_cache()
def get_session_authorizer() -> SessionAuthorizer:
    return ApiKeySessionAuthorizer(get_auth_service())


@lru_cache()
def get_structuring_engine() -> ClinicalStructuringEngine:
    return ClinicalStructuringEngine(
        get_language_model(), get_settings().structuring, usage_sink=get_token_usage_sink()
    )


@lru_cache()
def get_structure_use_case() -> StructureConsultationUseCase:
    return StructureConsultationUseCase(
        get_structuring_engine(), exam_catalog=get_exam_catalog(), record_sink=get_record_sink()
    )


@lru_cache()
def get_session_registry() -> SessionRegistry:
    """Process-wide registry of live sessions."""
    return SessionRegistry(get_speech_recognizer(), get_settings().asr)


@lru_cache()
def get_ingest_gateway() -> AudioIngestGateway:
    return AudioIngestGateway(
        get_session_registry(),
        get_session_authorizer(),
        get_structure_use_case(),
        get_settings(),
    )
