"""
Shared model-call plumbing for pipeline stages
"""

import logging
from typing import Optional

from sovtrack.adapters.llm import BaseLLMAdapter, LLMConfig, LLMResponse, LLMAdapterError
from sovtrack.config import get_settings
from .exceptions import MalformedReply, UpstreamUnavailable

logger = logging.getLogger(__name__)


class LLMStage:
    """
    Base for stages that talk to the model.

    Every adapter failure surfaces as UpstreamUnavailable so stages can
    recover with their own fallbacks.
    """

    stage_name = "llm"

    def __init__(self, adapter: BaseLLMAdapter):
        self.adapter = adapter
        self.settings = get_settings()

    async def _call(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_object: bool = False,
    ) -> LLMResponse:
        if not self.adapter.is_configured:
            raise UpstreamUnavailable("No model credentials configured", self.stage_name)

        config = LLMConfig(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.settings.LLM_REQUEST_TIMEOUT,
            json_object=json_object,
        )
        try:
            return await self.adapter.execute(prompt, config, system_prompt)
        except LLMAdapterError as e:
            logger.warning("%s call failed on %s: %s", self.stage_name, model, e)
            raise UpstreamUnavailable(f"{self.stage_name} call failed: {e}", self.stage_name, e)

    async def _complete(self, prompt: str, model: str, **kwargs) -> str:
        response = await self._call(prompt, model, **kwargs)
        return response.content or ""

    def _malformed(self, reply: Optional[str], what: str) -> MalformedReply:
        """Record an undecodable reply; the caller carries on with its fallback"""
        error = MalformedReply(
            f"Malformed {what} reply",
            {"stage": self.stage_name, "reply": (reply or "")[:200]},
        )
        logger.warning("%s: %s", error.message, error.details)
        return error
