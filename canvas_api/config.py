"""
Application settings

All environment variables are read here, through pydantic-settings, so every
other module sees typed values.

Usage:
    from canvas_api.config import settings
    print(settings.GROQ_CHAT_MODEL)
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # ============================================================
    # Base
    # ============================================================

    APP_NAME: str = Field(default="AI Collaboration Canvas API")
    APP_VERSION: str = Field(default="0.1.0")
    ENVIRONMENT: str = Field(
        default="production",
        description="development | production | test",
    )
    GIT_COMMIT_SHA: Optional[str] = Field(default=None)

    # ============================================================
    # LLM providers
    # ============================================================

    GROQ_API_KEY: Optional[str] = Field(default=None)
    GROQ_BASE_URL: str = Field(default="https://api.groq.com/openai/v1")
    OPENROUTER_API_KEY: Optional[str] = Field(default=None)
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    OPENROUTER_REFERER: str = Field(
        default="https://ai-collaboration-canvas.vercel.app",
        description="HTTP-Referer sent to OpenRouter for app attribution",
    )
    OPENROUTER_TITLE: str = Field(default="AI Collaboration Canvas")

    GROQ_CHAT_MODEL: str = Field(default="llama-3.3-70b-versatile")
    GROQ_WHISPER_MODEL: str = Field(default="whisper-large-v3-turbo")
    OPENROUTER_CHAT_MODEL: str = Field(default="meta-llama/llama-3.3-70b-instruct:free")
    SUGGESTIONS_PRIMARY_MODEL: str = Field(default="deepseek/deepseek-r1:free")
    SUGGESTIONS_FALLBACK_MODEL: str = Field(default="meta-llama/llama-3.3-70b-instruct:free")
    EXTRACTION_MODEL: str = Field(default="google/gemini-2.0-flash-exp:free")

    LLM_TIMEOUT_SECONDS: float = Field(default=20.0)
    LLM_MAX_RETRIES: int = Field(default=2)
    LLM_RETRY_DELAY_SECONDS: float = Field(default=0.5)

    # ============================================================
    # Database
    # ============================================================

    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Postgres URL (Neon/Supabase); postgres:// is accepted",
    )
    DATABASE_POOL_SIZE: int = Field(default=5)
    MIGRATION_SECRET: Optional[str] = Field(default=None)

    # ============================================================
    # Authentication
    # ============================================================

    JWT_SECRET: Optional[str] = Field(default=None)
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_EXPIRATION_DAYS: int = Field(default=7)
    BCRYPT_ROUNDS: int = Field(default=10)

    # ============================================================
    # Origins / CSRF / headers
    # ============================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        default=None,
        description="Comma separated allow-list, '*' wildcards allowed",
    )
    VERCEL_URL: Optional[str] = Field(default=None)
    PRODUCTION_URL: Optional[str] = Field(default=None)
    ENABLE_CSP: bool = Field(default=False)

    # ============================================================
    # Rate limiting / timeouts
    # ============================================================

    RATE_LIMIT_BACKEND: str = Field(default="memory", description="memory | redis")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = Field(default=3600.0)
    REQUEST_TIMEOUT_SECONDS: float = Field(default=25.0)

    # ============================================================
    # Logging / metrics
    # ============================================================

    LOG_LEVEL: str = Field(default="INFO")
    LOGGING_BACKEND: str = Field(default="none", description="none | elasticsearch | loki")
    ELASTICSEARCH_URL: str = Field(default="http://localhost:9200")
    ELASTICSEARCH_INDEX: str = Field(default="canvas-api-logs")
    LOKI_URL: str = Field(default="http://localhost:3100")
    ENABLE_METRICS: bool = Field(default=False)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        """ALLOWED_ORIGINS split into a list (empty when unset)"""
        if not self.ALLOWED_ORIGINS:
            return []
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def version_tag(self) -> Optional[str]:
        if self.GIT_COMMIT_SHA:
            return self.GIT_COMMIT_SHA[:7]
        return None


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


settings = get_settings()
