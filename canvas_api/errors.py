"""
API error types and exception handlers

Every failure leaves the API as JSON:

    {"error": "<Italian message>", ...extra, "details": "<internal text>"}

`details` is only attached when ENVIRONMENT=development.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings

logger = logging.getLogger(__name__)


# ============================================================
# Error types
# ============================================================

class ApiError(Exception):
    """Base error rendered by the global handler"""

    status_code: int = 500
    default_message: str = "Errore interno del server"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        self.extra = extra or {}
        self.headers = headers or {}
        super().__init__(self.message)


class BadRequestError(ApiError):
    status_code = 400
    default_message = "Richiesta non valida"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Non autorizzato"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Risorsa non trovata"


class PayloadTooLargeError(ApiError):
    status_code = 413
    default_message = "Richiesta troppo grande"


class RateLimitExceededError(ApiError):
    """429 carrying the retry hint and X-RateLimit-* headers"""

    status_code = 429
    default_message = "Troppi tentativi. Riprova più tardi."

    def __init__(self, retry_after: int, limit: int, reset_at: str):
        super().__init__(
            extra={
                "retryAfter": retry_after,
                "message": f"Attendi {retry_after} secondi prima di riprovare.",
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": reset_at,
            },
        )
        self.retry_after = retry_after


class ServerMisconfiguredError(ApiError):
    status_code = 500
    default_message = "Configurazione del server non valida"


class UpstreamSaturatedError(ApiError):
    status_code = 503
    default_message = "Servizio AI temporaneamente saturo. Riprova più tardi."


class GatewayTimeoutError(ApiError):
    status_code = 504
    default_message = "Tempo di elaborazione esaurito"


# ============================================================
# Rendering
# ============================================================

def error_payload(
    message: str,
    /,
    *,
    details: Optional[str] = None,
    development: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    """Build the error envelope; details only in development"""
    payload: Dict[str, Any] = {"error": message}
    payload.update(extra)
    if development and details:
        payload["details"] = details
    return payload


_HTTP_MESSAGES = {
    404: "Risorsa non trovata",
    405: "Metodo non consentito",
}


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Install the JSON error handlers on the app"""

    development = settings.is_development

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            f"{request.method} {request.url.path} -> {exc.status_code}: "
            f"{exc.message} ({exc.details or '-'})"
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(
                exc.message, details=exc.details, development=development, **exc.extra
            ),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = _HTTP_MESSAGES.get(exc.status_code)
        if message is None:
            message = exc.detail if isinstance(exc.detail, str) else "Errore HTTP"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=error_payload(
                "Richiesta non valida", details=str(exc.errors()), development=development
            ),
        )

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=error_payload(
                "Errore interno del server", details=str(exc), development=development
            ),
        )
