"""
Response header policy tests
"""

import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from starlette.datastructures import MutableHeaders

from canvas_api.middleware.headers import (
    CONTENT_SECURITY_POLICY,
    CacheStrategy,
    HeaderPolicy,
    HeaderPolicyMiddleware,
    apply_header_policy,
    get_cache_control,
)


class TestCacheControl:
    @pytest.mark.parametrize("strategy,expected", [
        (CacheStrategy.NO_CACHE, "no-cache, no-store, must-revalidate, max-age=0"),
        (CacheStrategy.SHORT, "public, max-age=300, stale-while-revalidate=60"),
        (CacheStrategy.MEDIUM, "public, max-age=3600, stale-while-revalidate=300"),
        (CacheStrategy.LONG, "public, max-age=86400, stale-while-revalidate=3600"),
        (CacheStrategy.IMMUTABLE, "public, max-age=31536000, immutable"),
    ])
    def test_strategies(self, strategy, expected):
        assert get_cache_control(strategy) == expected

    def test_string_strategy(self):
        assert get_cache_control("short") == get_cache_control(CacheStrategy.SHORT)

    def test_unknown_strategy_falls_back(self):
        assert get_cache_control("forever") == "no-cache"


class TestApplyHeaderPolicy:
    def _headers(self, content_type="application/json"):
        return MutableHeaders(raw=[(b"content-type", content_type.encode())])

    def test_default_policy(self):
        headers = self._headers()

        apply_header_policy(headers, HeaderPolicy())

        assert headers["Pragma"] == "no-cache"
        assert headers["Expires"] == "0"
        assert headers["X-Frame-Options"] == "DENY"
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["Content-Type"] == "application/json; charset=utf-8"
        assert headers["Vary"] == "Accept-Encoding"
        assert "Content-Security-Policy" not in headers
        assert "Strict-Transport-Security" not in headers

    def test_cached_policy_has_no_pragma(self):
        headers = self._headers()

        apply_header_policy(headers, HeaderPolicy(cache=CacheStrategy.LONG))

        assert "Pragma" not in headers
        assert headers["Cache-Control"].startswith("public, max-age=86400")

    def test_csp_and_hsts(self):
        headers = self._headers()

        apply_header_policy(headers, HeaderPolicy(csp=True, hsts=True))

        assert headers["Content-Security-Policy"] == CONTENT_SECURITY_POLICY
        assert headers["Strict-Transport-Security"].startswith("max-age=31536000")

    def test_security_bundle_can_be_disabled(self):
        headers = self._headers()

        apply_header_policy(headers, HeaderPolicy(security=False, hsts=True))

        assert "X-Frame-Options" not in headers
        assert "Strict-Transport-Security" not in headers

    def test_non_json_content_type_untouched(self):
        headers = self._headers("text/plain; charset=utf-8")

        apply_header_policy(headers, HeaderPolicy())

        assert headers["Content-Type"] == "text/plain; charset=utf-8"
        assert "Vary" not in headers


class TestHeaderPolicyMiddleware:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(
            HeaderPolicyMiddleware,
            default=HeaderPolicy(),
            overrides={"/static": HeaderPolicy(cache=CacheStrategy.IMMUTABLE, json=False)},
        )

        @app.get("/data")
        async def data():
            return {"ok": True}

        @app.get("/static")
        async def static():
            return PlainTextResponse("asset")

        return TestClient(app)

    def test_default_applied(self, client):
        response = client.get("/data")

        assert response.headers["cache-control"].startswith("no-cache")
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        assert response.headers["x-frame-options"] == "DENY"

    def test_override_by_path(self, client):
        response = client.get("/static")

        assert response.headers["cache-control"] == "public, max-age=31536000, immutable"
        assert response.headers["x-frame-options"] == "DENY"
