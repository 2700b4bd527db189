import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from ..schemas.common import ApiResponse, ErrorResponse


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


def ok(request: Request, data: Any = None, message: str = "") -> ApiResponse[Any]:
    return ApiResponse(success=True, message=message, request_id=_request_id(request), data=data)


def error_response(
    request: Request, status_code: int, error: str, message: str, details: Optional[dict] = None
) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, request_id=_request_id(request), details=details or {})
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
