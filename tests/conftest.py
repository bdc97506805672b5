"""
Shared pytest fixtures

Environment defaults are set before any canvas_api import, since settings
are read once at import time.
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("OPENROUTER_API_KEY", "test-openrouter-key")
os.environ.setdefault("MIGRATION_SECRET", "test-migration-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:5173,https://*.vercel.app")
os.environ.setdefault("LOGGING_BACKEND", "none")
os.environ.setdefault("ENABLE_METRICS", "false")

from fastapi.testclient import TestClient  # noqa: E402

from canvas_api.llm.client import (  # noqa: E402
    LLMConfigurationError,
    LLMError,
    get_groq_client,
    get_openrouter_client,
)
from canvas_api.main import create_app  # noqa: E402
from canvas_api.middleware.rate_limiter import (  # noqa: E402
    InMemoryRateLimitStore,
    RateLimiter,
    configure_rate_limiter,
)
from canvas_api.routers.ops import database_or_none  # noqa: E402
from canvas_api.services.user_repository import (  # noqa: E402
    EmailAlreadyRegisteredError,
    UserRecord,
    UserRepository,
    get_user_repository,
)

ALLOWED_ORIGIN = "http://localhost:5173"


# ============================================================
# Fakes
# ============================================================

class InMemoryUserRepository(UserRepository):
    def __init__(self):
        self.users: Dict[str, UserRecord] = {}

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        return next((u for u in self.users.values() if u.email == email), None)

    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def create(self, email: str, password_hash: str, plan: str = "free") -> UserRecord:
        if await self.get_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)
        user = UserRecord(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=password_hash,
            plan=plan,
            created_at=datetime.now(timezone.utc),
        )
        self.users[user.id] = user
        return user


class FakeDatabase:
    """Stands in for canvas_api.db.Database"""

    def __init__(self, tables: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.tables = list(tables or [])
        self.error = error
        self.created = False

    async def ping(self) -> bool:
        if self.error:
            raise self.error
        return True

    async def current_time(self) -> datetime:
        if self.error:
            raise self.error
        return datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def list_tables(self) -> List[str]:
        if self.error:
            raise self.error
        return self.tables

    async def create_all(self) -> List[str]:
        if self.error:
            raise self.error
        self.created = True
        self.tables = ["api_usage", "companies", "evaluations", "users", "workflows"]
        return self.tables


class StubLLMClient:
    """
    LLMClient double

    `replies` are consumed in order by complete(); an Exception instance is
    raised instead of returned. Calls are recorded in `calls`.
    """

    def __init__(self, name: str = "stub", replies=None, transcription: str = "", configured: bool = True):
        self.name = name
        self.replies = list(replies or [])
        self.transcription = transcription
        self.configured = configured
        self.calls: List[dict] = []

    def _next(self):
        if not self.configured:
            raise LLMConfigurationError(f"{self.name}: API key not configured")
        if not self.replies:
            raise LLMError(f"{self.name}: no stubbed reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, messages, model, **kwargs) -> str:
        self.calls.append({"messages": messages, "model": model, **kwargs})
        return self._next()

    async def transcribe(self, audio: bytes, model: str, filename: str = "audio.webm", language: str = "it") -> str:
        self.calls.append({"audio": audio, "model": model, "filename": filename, "language": language})
        if isinstance(self.transcription, Exception):
            raise self.transcription
        return self.transcription

    async def close(self):
        return None


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Every test starts with an empty in-memory limiter"""
    limiter = RateLimiter(InMemoryRateLimitStore())
    configure_rate_limiter(limiter)
    yield limiter
    configure_rate_limiter(None)


@pytest.fixture
def user_repository():
    return InMemoryUserRepository()


@pytest.fixture
def fake_database():
    return FakeDatabase(tables=["api_usage", "companies", "evaluations", "users", "workflows"])


@pytest.fixture
def groq_stub():
    return StubLLMClient(name="groq")


@pytest.fixture
def openrouter_stub():
    return StubLLMClient(name="openrouter")


@pytest.fixture
def app(user_repository, fake_database, groq_stub, openrouter_stub):
    application = create_app()
    application.dependency_overrides[get_user_repository] = lambda: user_repository
    application.dependency_overrides[database_or_none] = lambda: fake_database
    application.dependency_overrides[get_groq_client] = lambda: groq_stub
    application.dependency_overrides[get_openrouter_client] = lambda: openrouter_stub
    return application


@pytest.fixture
def client(app):
    """TestClient sending an allow-listed Origin on every request"""
    return TestClient(app, headers={"Origin": ALLOWED_ORIGIN})
