"""
Base LLM Adapter Interface
The model service is consumed through this interface only
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum


class LLMProviderType(str, Enum):
    """Supported model service flavours"""
    OPENAI = "openai"  # any OpenAI-compatible chat/completions endpoint


@dataclass
class LLMConfig:
    """Configuration for LLM request"""
    model: str
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = 2000
    timeout: int = 60  # seconds
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    json_object: bool = False  # ask for response_format={"type": "json_object"}
    extra_params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMMessage:
    """A message in the conversation"""
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class LLMUsage:
    """Token usage information"""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class LLMResponse:
    """Standardized completion result"""
    content: str
    raw_response: Dict[str, Any]

    provider: LLMProviderType
    model: str
    finish_reason: Optional[str] = None

    usage: Optional[LLMUsage] = None

    request_time: Optional[datetime] = None
    response_time: Optional[datetime] = None
    latency_ms: Optional[int] = None


class BaseLLMAdapter(ABC):
    """
    Abstract base class for model adapters.

    Pipeline stages never talk HTTP themselves; they hand a prompt to an
    adapter and get back free text that may or may not be valid JSON.
    """

    # Rough characters-per-token ratio used when no tokenizer is available
    CHARS_PER_TOKEN = 4

    def __init__(self, api_key: Optional[str], config: Optional[LLMConfig] = None):
        self.api_key = api_key
        self.config = config

    @property
    @abstractmethod
    def provider(self) -> LLMProviderType:
        """Return the provider type"""
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Return the default model for this provider"""
        pass

    @property
    def is_configured(self) -> bool:
        """True when credentials are present"""
        return bool(self.api_key)

    @abstractmethod
    async def execute_chat(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig] = None,
    ) -> LLMResponse:
        """
        Execute a chat conversation.

        Args:
            messages: List of messages in the conversation
            config: Optional configuration override

        Returns:
            LLMResponse with standardized response data

        Raises:
            LLMAdapterError: on any transport, auth, quota or payload problem
        """
        pass

    async def execute(
        self,
        prompt: str,
        config: Optional[LLMConfig] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """Execute a single prompt"""
        messages = []
        if system_prompt:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=prompt))
        return await self.execute_chat(messages, config)

    def estimate_tokens(self, text: str) -> int:
        """Approximate token count"""
        return max(1, len(text) // self.CHARS_PER_TOKEN) if text else 0

    def truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        """Cut text down to roughly max_tokens tokens"""
        if self.estimate_tokens(text) <= max_tokens:
            return text
        return text[: max_tokens * self.CHARS_PER_TOKEN]

    def _calculate_latency(self, start: datetime, end: datetime) -> int:
        """Calculate latency in milliseconds"""
        return int((end - start).total_seconds() * 1000)


class LLMAdapterError(Exception):
    """Base exception for LLM adapter errors"""
    def __init__(self, message: str, provider: LLMProviderType, details: Optional[Dict] = None):
        super().__init__(message)
        self.provider = provider
        self.details = details or {}


class LLMRateLimitError(LLMAdapterError):
    """Rate limit exceeded"""
    pass


class LLMAuthenticationError(LLMAdapterError):
    """Authentication failed"""
    pass


class LLMTimeoutError(LLMAdapterError):
    """Request timed out"""
    pass


class LLMInvalidRequestError(LLMAdapterError):
    """Invalid request parameters"""
    pass
