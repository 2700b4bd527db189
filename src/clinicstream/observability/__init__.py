"""
Observability module for tracing, metrics and audit logging.

Provides:
- Custom tracing spans for recognizer connects and model calls
- Custom metrics for AI requests, structuring, token usage, reconnects and sessions
- Structured audit events
"""

from .tracing import (
    trace_operation,
    set_span_status,
    add_span_attribute,
)

from .metrics import (
    record_ai_request,
    record_structuring_outcome,
    record_asr_reconnect,
    record_session_transition,
    record_error,
    record_token_usage,
)

from .audit import audit_log_event

__all__ = [
    # Tracing
    "trace_operation",
    "set_span_status",
    "add_span_attribute",
    # Metrics
    "record_ai_request",
    "record_structuring_outcome",
    "record_asr_reconnect",
    "record_session_transition",
    "record_error",
    "record_token_usage",
    # Audit
    "audit_log_event",
]
