"""
LLM Adapters - the model service behind one interface
"""

from typing import Optional

from sovtrack.config import get_settings
from .base import (
    BaseLLMAdapter,
    LLMConfig,
    LLMMessage,
    LLMResponse,
    LLMUsage,
    LLMProviderType,
    LLMAdapterError,
    LLMRateLimitError,
    LLMAuthenticationError,
    LLMTimeoutError,
    LLMInvalidRequestError,
)
from .openai_adapter import OpenAIAdapter


def get_adapter(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    config: Optional[LLMConfig] = None,
) -> BaseLLMAdapter:
    """
    Build the adapter every pipeline stage shares.

    Any OpenAI-compatible gateway works; point OPENAI_BASE_URL at it.
    An adapter without a key still builds, and every stage then runs on
    its fallbacks.
    """
    settings = get_settings()
    if config is None:
        config = LLMConfig(
            model=settings.OPENAI_DEFAULT_MODEL,
            timeout=settings.LLM_REQUEST_TIMEOUT,
        )
    return OpenAIAdapter(api_key=api_key, config=config, base_url=base_url)


__all__ = [
    # Factory
    "get_adapter",
    # Base classes
    "BaseLLMAdapter",
    "LLMConfig",
    "LLMMessage",
    "LLMResponse",
    "LLMUsage",
    "LLMProviderType",
    # Exceptions
    "LLMAdapterError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "LLMTimeoutError",
    "LLMInvalidRequestError",
    # Adapters
    "OpenAIAdapter",
]
