"""
OpenAI-compatible chat/completions Adapter
"""

from datetime import datetime
from typing import List, Optional

import httpx
import tiktoken

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

settings = get_settings()


class OpenAIAdapter(BaseLLMAdapter):
    """Adapter for the OpenAI chat/completions API and compatible gateways"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[LLMConfig] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key or settings.OPENAI_API_KEY, config)
        self.api_base = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self._transport = transport
        self._tokenizer = None

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.OPENAI

    @property
    def default_model(self) -> str:
        return settings.OPENAI_DEFAULT_MODEL

    def _get_tokenizer(self):
        """Get tiktoken encoder for token counting"""
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.default_model)
            except KeyError:
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    def estimate_tokens(self, text: str) -> int:
        """Estimate tokens using tiktoken"""
        encoder = self._get_tokenizer()
        return len(encoder.encode(text))

    def truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        encoder = self._get_tokenizer()
        tokens = encoder.encode(text)
        if len(tokens) <= max_tokens:
            return text
        return encoder.decode(tokens[:max_tokens])

    def _build_payload(self, messages: List[LLMMessage], cfg: LLMConfig) -> dict:
        payload = {
            "model": cfg.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }

        # Search-preview models reject sampling params, so they are optional
        if cfg.temperature is not None:
            payload["temperature"] = cfg.temperature
        if cfg.max_tokens is not None:
            payload["max_tokens"] = cfg.max_tokens
        if cfg.top_p is not None:
            payload["top_p"] = cfg.top_p
        if cfg.frequency_penalty is not None:
            payload["frequency_penalty"] = cfg.frequency_penalty
        if cfg.presence_penalty is not None:
            payload["presence_penalty"] = cfg.presence_penalty
        if cfg.stop_sequences:
            payload["stop"] = cfg.stop_sequences
        if cfg.json_object:
            payload["response_format"] = {"type": "json_object"}
        payload.update(cfg.extra_params)
        return payload

    async def execute_chat(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig] = None,
    ) -> LLMResponse:
        """Execute a chat conversation"""
        cfg = config or self.config or LLMConfig(model=self.default_model)
        if not self.api_key:
            raise LLMAuthenticationError("No API key configured", self.provider)

        request_time = datetime.utcnow()
        payload = self._build_payload(messages, cfg)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=cfg.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_base}/chat/completions",
                    json=payload,
                    headers=headers,
                )
        except httpx.TimeoutException:
            raise LLMTimeoutError(
                f"Request timed out after {cfg.timeout}s",
                self.provider,
            )
        except httpx.RequestError as e:
            raise LLMAdapterError(
                f"Request failed: {str(e)}",
                self.provider,
            )

        response_time = datetime.utcnow()

        if response.status_code == 401:
            raise LLMAuthenticationError(
                "Invalid API key",
                self.provider,
                {"status_code": response.status_code}
            )
        elif response.status_code == 429:
            raise LLMRateLimitError(
                "Rate limit exceeded",
                self.provider,
                {"status_code": response.status_code}
            )
        elif response.status_code == 400:
            raise LLMInvalidRequestError(
                f"Invalid request: {response.text}",
                self.provider,
                {"status_code": response.status_code, "response": response.text}
            )
        elif response.status_code != 200:
            raise LLMAdapterError(
                f"API error: {response.text}",
                self.provider,
                {"status_code": response.status_code, "response": response.text}
            )

        try:
            data = response.json()
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMAdapterError(
                f"Malformed completion payload: {e}",
                self.provider,
                {"response": response.text},
            )

        usage_data = data.get("usage") or {}
        usage = LLMUsage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        )

        return LLMResponse(
            content=content,
            raw_response=data,
            provider=self.provider,
            model=cfg.model,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
            request_time=request_time,
            response_time=response_time,
            latency_ms=self._calculate_latency(request_time, response_time),
        )
