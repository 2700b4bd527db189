"""
Infrastructure exceptions for Clinic-Stream.

Business-rule failures live in domain/errors.py; the classes here describe
configuration problems and failures of the external services the
application talks to.
"""

from typing import Any, Dict, Optional


class ClinicStreamException(Exception):
    """Base exception class for Clinic-Stream infrastructure errors."""

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


class ConfigurationError(ClinicStreamException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONFIG_ERROR", details)


class ExternalServiceError(ClinicStreamException):
    """Raised when there's an external service error."""

    def __init__(
        self, service: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.service = service
        full_message = f"{service} service error: {message}"
        super().__init__(full_message, "EXTERNAL_SERVICE_ERROR", details)


class LanguageModelError(ExternalServiceError):
    """Raised when the language model API call fails (rate limit, auth, 5xx)."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.status_code = status_code
        super().__init__("LanguageModel", message, {**(details or {}), "status_code": status_code})


class RecognizerConnectionError(ExternalServiceError):
    """Raised when the streaming recognizer connection cannot be opened or drops."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("SpeechRecognizer", message, details)
