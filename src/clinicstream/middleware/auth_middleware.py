"""
API key enforcement for HTTP routes.

Health checks, service info and API docs are public. WebSocket routes
authorize through the session authorizer instead (BaseHTTPMiddleware only
sees HTTP requests).
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.auth import get_auth_service
from ..domain.errors import UnauthorizedSessionError

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/favicon.ico", "/docs", "/redoc", "/openapi.json", "/health", "/health/ready"})
PUBLIC_PREFIXES = ("/docs/", "/redoc/")


def is_public_path(path: str) -> bool:
    return (path.rstrip("/") or "/") in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def _unauthorized(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "success": False,
            "error": "UNAUTHORIZED",
            "message": "Authentication required for this endpoint",
            "details": {
                "path": request.url.path,
                "method": request.method,
                "hint": "Provide X-API-Key header or Authorization Bearer token",
            },
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Rejects non-public requests without a known API key; sets ``request.state.user_id``."""

    async def dispatch(self, request: Request, call_next):
        if is_public_path(request.url.path):
            return await call_next(request)

        try:
            user_id = get_auth_service().get_user_from_request(
                api_key=request.headers.get("X-API-Key"),
                auth_header=request.headers.get("Authorization"),
            )
        except UnauthorizedSessionError as e:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"{request.method} {request.url.path} from {client} refused: {e.message}")
            return _unauthorized(request)

        request.state.user_id = user_id
        return await call_next(request)
