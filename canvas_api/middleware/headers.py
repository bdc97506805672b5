"""
Response header policy

Cache-Control by strategy, the fixed security header bundle, an optional CSP
and the JSON content type, applied to every response by
HeaderPolicyMiddleware.

References:
- OWASP Secure Headers: https://owasp.org/www-project-secure-headers/
- MDN Cache-Control: https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/Cache-Control
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional, Union

from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class CacheStrategy(str, Enum):
    NO_CACHE = "no-cache"
    SHORT = "short"  # 5 minutes
    MEDIUM = "medium"  # 1 hour
    LONG = "long"  # 1 day
    IMMUTABLE = "immutable"  # versioned assets


CACHE_CONTROL = {
    CacheStrategy.NO_CACHE: "no-cache, no-store, must-revalidate, max-age=0",
    CacheStrategy.SHORT: "public, max-age=300, stale-while-revalidate=60",
    CacheStrategy.MEDIUM: "public, max-age=3600, stale-while-revalidate=300",
    CacheStrategy.LONG: "public, max-age=86400, stale-while-revalidate=3600",
    CacheStrategy.IMMUTABLE: "public, max-age=31536000, immutable",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; "
    "font-src 'self' data:; "
    "connect-src 'self' https://api.groq.com https://openrouter.ai "
    "https://*.supabase.co https://*.neon.tech; "
    "frame-ancestors 'none'; "
    "base-uri 'self'; "
    "form-action 'self'"
)

HSTS_VALUE = "max-age=31536000; includeSubDomains"


def get_cache_control(strategy: Union[CacheStrategy, str]) -> str:
    """Cache-Control value for a strategy; unknown strategies get no-cache"""
    try:
        return CACHE_CONTROL[CacheStrategy(strategy)]
    except ValueError:
        return "no-cache"


@dataclass(frozen=True)
class HeaderPolicy:
    cache: Union[CacheStrategy, str] = CacheStrategy.NO_CACHE
    security: bool = True
    csp: bool = False
    json: bool = True
    hsts: bool = False


def apply_header_policy(headers: MutableHeaders, policy: HeaderPolicy) -> None:
    """Set the headers described by `policy` on a response"""
    headers["Cache-Control"] = get_cache_control(policy.cache)
    if policy.cache == CacheStrategy.NO_CACHE:
        headers["Pragma"] = "no-cache"
        headers["Expires"] = "0"

    if policy.security:
        for name, value in SECURITY_HEADERS.items():
            headers[name] = value
        if policy.hsts:
            headers["Strict-Transport-Security"] = HSTS_VALUE

    if policy.csp:
        headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY

    if policy.json and headers.get("content-type", "").startswith("application/json"):
        headers["Content-Type"] = "application/json; charset=utf-8"
        headers["Vary"] = "Accept-Encoding"


class HeaderPolicyMiddleware(BaseHTTPMiddleware):
    """
    Applies `default` to every response, or the override registered for the
    exact request path
    """

    def __init__(
        self,
        app,
        default: HeaderPolicy = HeaderPolicy(),
        overrides: Optional[Mapping[str, HeaderPolicy]] = None,
    ):
        super().__init__(app)
        self.default = default
        self.overrides = dict(overrides or {})

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        policy = self.overrides.get(request.url.path, self.default)
        apply_header_policy(response.headers, policy)
        return response
