"""
AI Collaboration Canvas API
FastAPI application

Request path:
    CORS -> header policy -> origin guard -> timeout -> route
         -> body validation -> rate limit -> handler
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .db import close_database
from .errors import register_exception_handlers
from .llm.client import close_llm_clients
from .middleware.csrf import CSRFMiddleware, get_allowed_origins, wildcard_origins_regex
from .middleware.headers import HeaderPolicy, HeaderPolicyMiddleware
from .middleware.metrics import setup_metrics
from .middleware.rate_limiter import get_rate_limiter, run_periodic_sweep
from .middleware.timeout import RequestTimeoutMiddleware, TimeoutPolicy
from .routers import ROUTERS, TIMEOUTS
from .services.logging_service import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)

# Server-to-server, authenticated by X-Migration-Secret
CSRF_EXEMPT_PATHS = ("/api/db-migrate",)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the rate-limit sweeper; close outbound clients on shutdown"""
    settings: Settings = app.state.settings
    limiter = get_rate_limiter()
    sweeper = asyncio.create_task(
        run_periodic_sweep(limiter, settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)
    )
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await close_llm_clients()
        await limiter.store.close()
        await close_database()
        await shutdown_logging()
        logger.info("Shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
    Backend of the AI Collaboration Canvas

    ## Features
    - **AI**: BPMN diagrams, VBA macros, assistant chat, implementation plans
    - **Audio**: workshop recording to mapped workflows
    - **Auth**: email/password accounts with JWT sessions
    - **Ops**: health, database check and migration
    """,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ============================================================
    # Middleware (added innermost first)
    # ============================================================

    allowed_origins = get_allowed_origins(settings)

    app.add_middleware(
        RequestTimeoutMiddleware,
        default=TimeoutPolicy(seconds=settings.REQUEST_TIMEOUT_SECONDS),
        overrides=TIMEOUTS,
    )
    app.add_middleware(
        CSRFMiddleware,
        allowed_origins=allowed_origins,
        allow_missing_origin=settings.is_development,
        exempt_paths=CSRF_EXEMPT_PATHS,
    )
    app.add_middleware(
        HeaderPolicyMiddleware,
        default=HeaderPolicy(csp=settings.ENABLE_CSP, hsts=settings.is_production),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o for o in allowed_origins if "*" not in o],
        allow_origin_regex=wildcard_origins_regex(allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    # ============================================================
    # Errors / routers / metrics
    # ============================================================

    register_exception_handlers(app, settings)

    for router in ROUTERS:
        app.include_router(router)

    if settings.ENABLE_METRICS:
        setup_metrics(app, settings.APP_VERSION, settings.ENVIRONMENT)

    return app


app = create_app()
