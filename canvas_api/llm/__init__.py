"""
LLM providers

OpenAI-compatible client for Groq / OpenRouter and the fallback-chain runner.
"""

from .client import (
    LLMClient,
    LLMError,
    get_groq_client,
    get_openrouter_client,
    close_llm_clients,
)
from .fallback import FallbackExhausted, FallbackResult, Strategy, run_fallback_chain

__all__ = [
    "LLMClient",
    "LLMError",
    "get_groq_client",
    "get_openrouter_client",
    "close_llm_clients",
    "FallbackExhausted",
    "FallbackResult",
    "Strategy",
    "run_fallback_chain",
]
