"""
OpenAI-compatible LLM client (Groq, OpenRouter)

- chat(): POST /chat/completions, returns the raw response dict
- complete(): chat() and return the first choice's text
- transcribe(): POST /audio/transcriptions (Whisper, multipart)

Timeouts and 5xx responses are retried with linear backoff. 4xx responses
are raised immediately as typed errors.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, get_settings
from ..middleware.metrics import record_ai_request

logger = logging.getLogger(__name__)


# ============================================================
# Errors
# ============================================================

class LLMError(Exception):
    """Base LLM error"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(f"{message} ({cause})" if cause else message)


class LLMConfigurationError(LLMError):
    """Provider key missing"""


class LLMConnectionError(LLMError):
    """Provider unreachable"""


class LLMTimeoutError(LLMError):
    pass


class LLMRateLimitError(LLMError):
    def __init__(self, message: str, retry_after: Optional[int] = None, cause=None):
        super().__init__(message, cause)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    pass


class LLMModelNotFoundError(LLMError):
    pass


class LLMServerError(LLMError):
    def __init__(self, message: str, status_code: int, cause=None):
        super().__init__(message, cause)
        self.status_code = status_code


class LLMResponseError(LLMError):
    """Malformed or empty provider output"""


def is_saturation_error(exc: BaseException) -> bool:
    """Provider overloaded: 429, 503/529 or a 'capacity' message"""
    if isinstance(exc, LLMRateLimitError):
        return True
    if isinstance(exc, LLMServerError) and exc.status_code in (503, 529):
        return True
    text = str(exc).lower()
    return "capacity" in text or "rate limit" in text


# ============================================================
# Client
# ============================================================

@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: Optional[str]
    extra_headers: Dict[str, str] = field(default_factory=dict)


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if value and value.isdigit():
        return int(value)
    return None


def _error_for_status(provider: str, response: httpx.Response) -> LLMError:
    status = response.status_code
    snippet = response.text[:300]
    if status in (401, 403):
        return LLMAuthenticationError(f"{provider}: authentication failed ({status})")
    if status == 404:
        return LLMModelNotFoundError(f"{provider}: model not found - {snippet}")
    if status == 429:
        return LLMRateLimitError(f"{provider}: rate limit - {snippet}", retry_after=_retry_after(response))
    if status >= 500:
        return LLMServerError(f"{provider}: server error {status} - {snippet}", status_code=status)
    return LLMError(f"{provider}: client error {status} - {snippet}")


class LLMClient:
    """Client for one OpenAI-compatible provider"""

    def __init__(
        self,
        provider: ProviderConfig,
        timeout: float = 20.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            provider: base URL, key and extra headers of the provider
            timeout: per-request timeout (seconds)
            max_retries: total attempts for retryable failures
            retry_delay: base delay between attempts (seconds, linear)
            transport: custom httpx transport (tests use httpx.MockTransport)
        """
        self.provider = provider
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

        headers = dict(provider.extra_headers)
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"

        self.client = httpx.AsyncClient(
            base_url=provider.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def configured(self) -> bool:
        return bool(self.provider.api_key)

    def _require_key(self):
        if not self.configured:
            raise LLMConfigurationError(f"{self.provider.name}: API key not configured")

    async def _post(self, path: str, model: str, **kwargs) -> httpx.Response:
        self._require_key()
        last_error: Optional[LLMError] = None

        for attempt in range(self.max_retries):
            started = time.monotonic()
            try:
                response = await self.client.post(path, **kwargs)
            except httpx.TimeoutException as e:
                last_error = LLMTimeoutError(f"{self.name}: request timeout", cause=e)
            except httpx.TransportError as e:
                last_error = LLMConnectionError(f"{self.name}: connection failed", cause=e)
            else:
                duration = time.monotonic() - started
                if response.is_success:
                    record_ai_request(self.name, model, "success", duration)
                    return response
                record_ai_request(self.name, model, str(response.status_code), duration)
                error = _error_for_status(self.name, response)
                if not isinstance(error, LLMServerError):
                    raise error
                last_error = error

            if attempt < self.max_retries - 1:
                logger.warning(f"{last_error.message}, retrying ({attempt + 1}/{self.max_retries})")
                await asyncio.sleep(self.retry_delay * (attempt + 1))

        raise last_error

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Chat completion (non-streaming)

        Raises:
            LLMConfigurationError: no API key
            LLMTimeoutError / LLMConnectionError: after the last attempt
            LLMRateLimitError, LLMAuthenticationError, LLMServerError, ...
        """
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if top_p is not None:
            payload["top_p"] = top_p
        if response_format:
            payload["response_format"] = response_format

        response = await self._post("/chat/completions", model, json=payload)
        try:
            return response.json()
        except ValueError as e:
            raise LLMResponseError(f"{self.name}: response is not JSON", cause=e)

    async def complete(self, messages: List[Dict[str, str]], model: str, **kwargs) -> str:
        """First choice's message content ("" when the provider sent none)"""
        data = await self.chat(messages, model, **kwargs)
        try:
            content = data["choices"][0]["message"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMResponseError(f"{self.name}: unexpected response shape", cause=e)
        return content or ""

    async def transcribe(
        self,
        audio: bytes,
        model: str,
        filename: str = "audio.webm",
        language: str = "it",
    ) -> str:
        """Whisper transcription as plain text"""
        response = await self._post(
            "/audio/transcriptions",
            model,
            files={"file": (filename, audio, "application/octet-stream")},
            data={"model": model, "language": language, "response_format": "text"},
        )
        return response.text.strip()

    async def close(self):
        await self.client.aclose()


# ============================================================
# Provider singletons
# ============================================================

_groq_client: Optional[LLMClient] = None
_openrouter_client: Optional[LLMClient] = None


def groq_provider(settings: Settings) -> ProviderConfig:
    return ProviderConfig(name="groq", base_url=settings.GROQ_BASE_URL, api_key=settings.GROQ_API_KEY)


def openrouter_provider(settings: Settings) -> ProviderConfig:
    return ProviderConfig(
        name="openrouter",
        base_url=settings.OPENROUTER_BASE_URL,
        api_key=settings.OPENROUTER_API_KEY,
        extra_headers={
            "HTTP-Referer": settings.OPENROUTER_REFERER,
            "X-Title": settings.OPENROUTER_TITLE,
        },
    )


def _build(provider: ProviderConfig, settings: Settings) -> LLMClient:
    return LLMClient(
        provider,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
        retry_delay=settings.LLM_RETRY_DELAY_SECONDS,
    )


def get_groq_client() -> LLMClient:
    global _groq_client
    if _groq_client is None:
        settings = get_settings()
        _groq_client = _build(groq_provider(settings), settings)
    return _groq_client


def get_openrouter_client() -> LLMClient:
    global _openrouter_client
    if _openrouter_client is None:
        settings = get_settings()
        _openrouter_client = _build(openrouter_provider(settings), settings)
    return _openrouter_client


async def close_llm_clients():
    """Close both provider clients (app shutdown)"""
    global _groq_client, _openrouter_client
    for client in (_groq_client, _openrouter_client):
        if client is not None:
            await client.close()
    _groq_client = None
    _openrouter_client = None
