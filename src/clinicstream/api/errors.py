from typing import Dict

from ..domain.errors import DomainError


class APIError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 400, details: dict = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details


class ValidationError(APIError):
    def __init__(self, message: str, details: dict = None):
        super().__init__("INVALID_INPUT", message, 422, details)


class NotFoundError(APIError):
    def __init__(self, message: str, details: dict = None):
        super().__init__("NOT_FOUND", message, 404, details)


class UnauthorizedError(APIError):
    def __init__(self, message: str = "Unauthorized", details: dict = None):
        super().__init__("UNAUTHORIZED", message, 401, details)


# Domain error code -> HTTP status; anything else is a 400
DOMAIN_ERROR_STATUS: Dict[str, int] = {
    "SESSION_NOT_FOUND": 404,
    "SESSION_CONFLICT": 409,
    "INVALID_SESSION_TRANSITION": 409,
    "UNAUTHORIZED": 401,
    "MISSING_CREDENTIALS": 503,
    "ASR_UNAVAILABLE": 503,
    "AI_SCHEMA_VALIDATION_FAILED": 502,
    "MODEL_TIMEOUT": 502,
    "MODEL_UNAVAILABLE": 502,
}


def status_for_domain_error(error: DomainError) -> int:
    return DOMAIN_ERROR_STATUS.get(error.error_code, 400)
