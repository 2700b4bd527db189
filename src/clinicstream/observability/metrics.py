"""
Custom metrics for Clinic-Stream using OpenTelemetry.

Counters and histograms for language model calls, structuring outcomes,
recognizer reconnects and session lifecycle. Instruments are created on first
use; without a configured MeterProvider they record nothing.
"""
import logging
from typing import Optional

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram

logger = logging.getLogger(__name__)

meter = metrics.get_meter("clinicstream")

# Initialize custom metrics (lazy initialization)
_metrics_initialized = False
_ai_request_counter: Optional[Counter] = None
_ai_latency_histogram: Optional[Histogram] = None
_ai_token_counter: Optional[Counter] = None
_structuring_counter: Optional[Counter] = None
_structuring_attempts_histogram: Optional[Histogram] = None
_asr_reconnect_counter: Optional[Counter] = None
_session_transition_counter: Optional[Counter] = None
_error_counter: Optional[Counter] = None
_token_usage_counter: Optional[Counter] = None


def _initialize_metrics() -> None:
    """Initialize custom metrics instruments."""
    global _metrics_initialized, _ai_request_counter, _ai_latency_histogram, _ai_token_counter
    global _structuring_counter, _structuring_attempts_histogram, _asr_reconnect_counter
    global _session_transition_counter, _error_counter, _token_usage_counter

    if _metrics_initialized:
        return

    _ai_request_counter = meter.create_counter(
        name="clinicstream.ai.requests",
        description="Total number of language model requests",
        unit="1",
    )
    _ai_latency_histogram = meter.create_histogram(
        name="clinicstream.ai.latency",
        description="Language model request latency in milliseconds",
        unit="ms",
    )
    _ai_token_counter = meter.create_counter(
        name="clinicstream.ai.tokens",
        description="Total tokens used in language model requests",
        unit="1",
    )
    _structuring_counter = meter.create_counter(
        name="clinicstream.structuring.calls",
        description="Structuring calls by outcome",
        unit="1",
    )
    _structuring_attempts_histogram = meter.create_histogram(
        name="clinicstream.structuring.attempts",
        description="Model attempts used per structuring call",
        unit="1",
    )
    _asr_reconnect_counter = meter.create_counter(
        name="clinicstream.asr.reconnects",
        description="Recognizer reconnect attempts by outcome",
        unit="1",
    )
    _session_transition_counter = meter.create_counter(
        name="clinicstream.sessions.transitions",
        description="Consultation session lifecycle transitions",
        unit="1",
    )
    _error_counter = meter.create_counter(
        name="clinicstream.errors",
        description="Total application errors",
        unit="1",
    )
    _token_usage_counter = meter.create_counter(
        name="clinicstream.structuring.tokens",
        description="Tokens billed per structuring call, all attempts included",
        unit="1",
    )

    _metrics_initialized = True
    logger.info("Custom metrics initialized successfully")


def record_ai_request(model: str, latency_ms: float, tokens: int, success: bool = True) -> None:
    """
    Record a language model request metric.

    Args:
        model: Model name (e.g., "gpt-4o-mini")
        latency_ms: Request latency in milliseconds
        tokens: Total tokens used
        success: Whether the request succeeded
    """
    try:
        _initialize_metrics()
        _ai_request_counter.add(1, {"model": model, "status": "success" if success else "error"})
        _ai_latency_histogram.record(latency_ms, {"model": model})
        if tokens:
            _ai_token_counter.add(tokens, {"model": model})
        if not success:
            _error_counter.add(1, {"type": "ai_request", "model": model})
    except Exception as e:
        logger.warning(f"Failed to record AI request metric: {e}")


def record_structuring_outcome(outcome: str, attempts: int) -> None:
    """Record a structuring call result (SUCCESS or an error code)."""
    try:
        _initialize_metrics()
        _structuring_counter.add(1, {"outcome": outcome})
        _structuring_attempts_histogram.record(attempts, {"outcome": outcome})
    except Exception as e:
        logger.warning(f"Failed to record structuring metric: {e}")


def record_asr_reconnect(success: bool) -> None:
    """Record one recognizer reconnect attempt."""
    try:
        _initialize_metrics()
        _asr_reconnect_counter.add(1, {"status": "success" if success else "error"})
    except Exception as e:
        logger.warning(f"Failed to record ASR reconnect metric: {e}")


def record_session_transition(state: str) -> None:
    """Record a session entering ``state``."""
    try:
        _initialize_metrics()
        _session_transition_counter.add(1, {"state": state})
    except Exception as e:
        logger.warning(f"Failed to record session transition metric: {e}")


def record_error(error_type: str, error_message: Optional[str] = None) -> None:
    """
    Record an application error.

    Args:
        error_type: Type of error (e.g., "asr", "structuring", "gateway")
        error_message: Optional error message
    """
    try:
        _initialize_metrics()
        attributes = {"type": error_type}
        if error_message:
            attributes["message"] = error_message[:100]
        _error_counter.add(1, attributes)
    except Exception as e:
        logger.warning(f"Failed to record error metric: {e}")


def record_token_usage(model: str, prompt_tokens: int, completion_tokens: int, success: bool = True) -> None:
    """Record tokens consumed by one structuring call."""
    try:
        _initialize_metrics()
        status = "success" if success else "error"
        _token_usage_counter.add(prompt_tokens, {"model": model, "kind": "prompt", "status": status})
        _token_usage_counter.add(completion_tokens, {"model": model, "kind": "completion", "status": status})
    except Exception as e:
        logger.warning(f"Failed to record token usage metric: {e}")
