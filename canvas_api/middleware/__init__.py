"""
Middleware chain

Header policy, origin guard and request timeout run as ASGI middleware; body
validation and rate limiting run as per-route FastAPI dependencies.
"""

from .csrf import CSRFMiddleware, check_csrf, get_allowed_origins, is_origin_allowed
from .headers import CacheStrategy, HeaderPolicy, HeaderPolicyMiddleware, apply_header_policy
from .rate_limiter import RateLimit, RateLimiter, get_rate_limit, get_rate_limiter
from .timeout import RequestTimeoutMiddleware, TimeoutPolicy, race
from .validation import ValidatedBody, validate_body

__all__ = [
    "CSRFMiddleware",
    "check_csrf",
    "get_allowed_origins",
    "is_origin_allowed",
    "CacheStrategy",
    "HeaderPolicy",
    "HeaderPolicyMiddleware",
    "apply_header_policy",
    "RateLimit",
    "RateLimiter",
    "get_rate_limit",
    "get_rate_limiter",
    "RequestTimeoutMiddleware",
    "TimeoutPolicy",
    "race",
    "ValidatedBody",
    "validate_body",
]
