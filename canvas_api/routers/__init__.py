"""
API router module
"""

from .ai import TIMEOUTS as AI_TIMEOUTS
from .ai import router as ai_router
from .audio import TIMEOUTS as AUDIO_TIMEOUTS
from .audio import router as audio_router
from .auth import router as auth_router
from .ops import router as ops_router

ROUTERS = [ai_router, audio_router, auth_router, ops_router]

# Per-path deadlines for RequestTimeoutMiddleware
TIMEOUTS = {**AI_TIMEOUTS, **AUDIO_TIMEOUTS}

__all__ = [
    "ai_router",
    "audio_router",
    "auth_router",
    "ops_router",
    "ROUTERS",
    "TIMEOUTS",
]
