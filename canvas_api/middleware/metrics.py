"""
Prometheus metrics

Custom counters for AI calls, auth attempts and the middleware chain, plus
the HTTP instrumentator exposed at /metrics.

References:
- prometheus-fastapi-instrumentator: https://github.com/trallnag/prometheus-fastapi-instrumentator
- Prometheus docs: https://prometheus.io/docs/
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Histogram, Info
from prometheus_fastapi_instrumentator import Instrumentator, metrics

logger = logging.getLogger(__name__)

# ============================================================
# Custom metrics
# ============================================================

AI_REQUEST_COUNTER = Counter(
    "canvas_ai_requests_total",
    "Total AI provider calls",
    ["provider", "model", "status"],
)

AI_REQUEST_LATENCY = Histogram(
    "canvas_ai_request_duration_seconds",
    "AI provider call latency",
    ["provider", "model"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0],
)

AI_FALLBACK_COUNTER = Counter(
    "canvas_ai_fallbacks_total",
    "Requests answered by a fallback strategy",
    ["endpoint", "strategy"],
)

AUTH_COUNTER = Counter(
    "canvas_auth_attempts_total",
    "Authentication attempts",
    ["action", "status"],  # action: login/register/me
)

RATE_LIMIT_COUNTER = Counter(
    "canvas_rate_limit_hits_total",
    "Requests denied by the rate limiter",
    ["endpoint"],
)

CSRF_BLOCK_COUNTER = Counter(
    "canvas_csrf_blocks_total",
    "State-changing requests denied by the origin guard",
    ["method"],
)

TIMEOUT_COUNTER = Counter(
    "canvas_request_timeouts_total",
    "Requests that exceeded their deadline",
    ["policy", "responded"],
)

APP_INFO = Info(
    "canvas_api",
    "Application information",
)


def setup_metrics(app: FastAPI, version: str, environment: str):
    """
    Attach the HTTP instrumentator and expose /metrics
    """
    APP_INFO.info({"version": version, "environment": environment})

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/api/health", "/metrics", "/docs", "/redoc", "/openapi.json"],
        inprogress_name="canvas_http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.add(
        metrics.default(metric_namespace="canvas", metric_subsystem="api")
    )
    instrumentator.add(
        metrics.latency(
            metric_namespace="canvas",
            metric_subsystem="api",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        )
    )

    instrumentator.instrument(app)
    instrumentator.expose(app, include_in_schema=False)

    logger.info("Prometheus metrics initialized at /metrics")
    return instrumentator


# ============================================================
# Recording helpers
# ============================================================

def record_ai_request(provider: str, model: str, status: str, duration: float):
    """Record one AI provider call"""
    AI_REQUEST_COUNTER.labels(provider=provider, model=model, status=status).inc()
    AI_REQUEST_LATENCY.labels(provider=provider, model=model).observe(duration)


def record_fallback(endpoint: str, strategy: str):
    AI_FALLBACK_COUNTER.labels(endpoint=endpoint, strategy=strategy).inc()


def record_auth_attempt(action: str, success: bool):
    """Record an authentication attempt"""
    status = "success" if success else "failure"
    AUTH_COUNTER.labels(action=action, status=status).inc()


def record_rate_limit_hit(endpoint: str):
    RATE_LIMIT_COUNTER.labels(endpoint=endpoint).inc()


def record_csrf_block(method: str):
    CSRF_BLOCK_COUNTER.labels(method=method).inc()


def record_timeout(policy: str, responded: bool):
    TIMEOUT_COUNTER.labels(policy=policy, responded="yes" if responded else "no").inc()
