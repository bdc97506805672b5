"""
CSRF / origin guard

State-changing requests (anything but GET/HEAD/OPTIONS) must come from an
allow-listed origin. The origin is taken from the Origin header, or from the
scheme+host of Referer when Origin is absent.

Allow-list entries are exact origins or patterns with `*` wildcards, e.g.
`https://*.vercel.app`. A request without any origin is only accepted in
development.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import Settings
from ..services.logging_service import central_logging
from .metrics import record_csrf_block

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

DEFAULT_DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:4173",
]


def get_allowed_origins(settings: Settings) -> List[str]:
    """ALLOWED_ORIGINS when set, otherwise localhost ports plus deployment URLs"""
    configured = settings.allowed_origins_list
    if configured:
        return configured

    origins = list(DEFAULT_DEV_ORIGINS)
    if settings.VERCEL_URL:
        origins.append(f"https://{settings.VERCEL_URL}")
    if settings.PRODUCTION_URL:
        origins.append(settings.PRODUCTION_URL.rstrip("/"))
    return origins


def get_request_origin(headers) -> Optional[str]:
    """Origin header, or scheme://host parsed from Referer"""
    origin = headers.get("origin")
    if origin:
        return origin

    referer = headers.get("referer")
    if not referer:
        return None
    try:
        parts = urlsplit(referer)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def _pattern_to_regex(pattern: str) -> "re.Pattern[str]":
    escaped = re.escape(pattern).replace(r"\*", "[^/]*")
    return re.compile(f"^{escaped}$")


def wildcard_origins_regex(allowed_origins: Sequence[str]) -> Optional[str]:
    """The wildcard entries as one regex (for CORS allow_origin_regex)"""
    patterns = [_pattern_to_regex(o).pattern for o in allowed_origins if "*" in o]
    if not patterns:
        return None
    return "|".join(f"(?:{p})" for p in patterns)


def is_origin_allowed(
    origin: Optional[str],
    allowed_origins: Sequence[str],
    allow_missing_origin: bool = False,
) -> bool:
    if not origin:
        return allow_missing_origin

    for allowed in allowed_origins:
        if allowed == origin:
            return True
        if "*" in allowed and _pattern_to_regex(allowed).match(origin):
            return True
    return False


def check_csrf(
    request: Request,
    allowed_origins: Sequence[str],
    allow_missing_origin: bool = False,
) -> bool:
    """True when the request may proceed"""
    if request.method.upper() in SAFE_METHODS:
        return True
    origin = get_request_origin(request.headers)
    return is_origin_allowed(origin, allowed_origins, allow_missing_origin)


def csrf_denied_response() -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": "Validazione CSRF fallita",
            "message": "Origine della richiesta non consentita",
        },
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Rejects cross-origin state-changing requests with 403

    Paths in `exempt_paths` carry their own authentication (shared secret) and
    are called server-to-server, so they skip the origin check.
    """

    def __init__(
        self,
        app,
        allowed_origins: Sequence[str],
        allow_missing_origin: bool = False,
        exempt_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.allowed_origins = list(allowed_origins)
        self.allow_missing_origin = allow_missing_origin
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        if not check_csrf(request, self.allowed_origins, self.allow_missing_origin):
            origin = get_request_origin(request.headers)
            logger.warning(
                f"CSRF blocked: {request.method} {request.url.path} "
                f"origin={origin or '<none>'}"
            )
            record_csrf_block(request.method.upper())
            await central_logging.audit(
                "csrf.blocked",
                client_id=request.client.host if request.client else None,
                details={"path": request.url.path, "origin": origin},
            )
            return csrf_denied_response()

        return await call_next(request)
