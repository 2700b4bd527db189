"""
Domain-specific error types for business rule violations.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Live session errors
# ---------------------------------------------------------------------------


class SessionNotReadyError(DomainError):
    """Audio frame received while the session is not streaming."""

    def __init__(self, consultation_id: str, state: str) -> None:
        message = f"Session '{consultation_id}' is not accepting audio (state: {state})"
        super().__init__(
            message, "SESSION_NOT_READY", {"consultation_id": consultation_id, "state": state}
        )


class ASRUnavailableError(DomainError):
    """Speech recognizer unreachable after the bounded reconnect budget."""

    def __init__(self, consultation_id: str, attempts: int, reason: str = "") -> None:
        message = f"Speech recognition unavailable for session '{consultation_id}' after {attempts} attempts"
        super().__init__(
            message,
            "ASR_UNAVAILABLE",
            {"consultation_id": consultation_id, "attempts": attempts, "reason": reason},
        )


class SessionNotFoundError(DomainError):
    """No live session for the consultation."""

    def __init__(self, consultation_id: str) -> None:
        message = f"No live session for consultation '{consultation_id}'"
        super().__init__(message, "SESSION_NOT_FOUND", {"consultation_id": consultation_id})


class SessionConflictError(DomainError):
    """A live session already streams for the consultation."""

    def __init__(self, consultation_id: str) -> None:
        message = f"Consultation '{consultation_id}' already has a live session"
        super().__init__(message, "SESSION_CONFLICT", {"consultation_id": consultation_id})


class InvalidSessionTransitionError(DomainError):
    """Illegal lifecycle transition."""

    def __init__(self, consultation_id: str, current: str, target: str) -> None:
        message = f"Session '{consultation_id}' cannot move from {current} to {target}"
        super().__init__(
            message,
            "INVALID_SESSION_TRANSITION",
            {"consultation_id": consultation_id, "current": current, "target": target},
        )


class FrameOrderError(DomainError):
    """Audio frame sequence numbers must strictly increase."""

    def __init__(self, consultation_id: str, last_sequence: int, sequence: int) -> None:
        message = (
            f"Frame {sequence} for session '{consultation_id}' is not after frame {last_sequence}"
        )
        super().__init__(
            message,
            "FRAME_ORDER_VIOLATION",
            {"consultation_id": consultation_id, "last_sequence": last_sequence, "sequence": sequence},
        )


class UnauthorizedSessionError(DomainError):
    """Caller may not open or control this consultation session."""

    def __init__(self, message: str = "Not authorized for this consultation", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "UNAUTHORIZED", details)


# ---------------------------------------------------------------------------
# Structuring errors
# ---------------------------------------------------------------------------


class EmptyInputError(DomainError):
    """Blank transcript handed to the structuring engine."""

    def __init__(self) -> None:
        super().__init__("Transcript is empty; nothing to structure", "EMPTY_INPUT")


class MissingCredentialsError(DomainError):
    """Language model endpoint is not configured."""

    def __init__(self, service: str = "language model") -> None:
        message = f"Credentials for the {service} are not configured"
        super().__init__(message, "MISSING_CREDENTIALS", {"service": service})


class SchemaValidationFailedError(DomainError):
    """Model output never passed schema validation within the attempt budget."""

    def __init__(self, attempts: int, last_error: str) -> None:
        message = f"Model output failed schema validation after {attempts} attempts"
        super().__init__(
            message,
            "AI_SCHEMA_VALIDATION_FAILED",
            {"attempts": attempts, "last_error": last_error},
        )


class ModelTimeoutError(DomainError):
    """Every model attempt timed out."""

    def __init__(self, attempts: int, timeout_seconds: float) -> None:
        message = f"Language model timed out on all {attempts} attempts ({timeout_seconds}s each)"
        super().__init__(
            message, "MODEL_TIMEOUT", {"attempts": attempts, "timeout_seconds": timeout_seconds}
        )


class ModelUnavailableError(DomainError):
    """Every model attempt failed at the transport or API level."""

    def __init__(self, attempts: int, last_error: str) -> None:
        message = f"Language model unavailable after {attempts} attempts"
        super().__init__(
            message, "MODEL_UNAVAILABLE", {"attempts": attempts, "last_error": last_error}
        )
