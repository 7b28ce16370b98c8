"""
Response Generator
Submits prompts to the model and stores each completion
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack import prompts
from sovtrack.adapters.llm import BaseLLMAdapter, LLMResponse
from sovtrack.models import AIResponse, Category, Prompt
from .base import LLMStage
from .exceptions import AnalysisCancelled, ValidationFailure
from .prompt_generator import GeneratedPrompt
from .session import CancellationToken, gather_bounded

logger = logging.getLogger(__name__)


@dataclass
class GeneratedResponse:
    """A stored response with its prompt and category"""
    ai_response: AIResponse
    prompt: Prompt
    category: Category


@dataclass
class ResponseFailure:
    """A prompt whose model call failed"""
    prompt: Prompt
    category: Category
    error: Exception


@dataclass
class ResponseBatch:
    """Outcome of one response run"""
    responses: List[GeneratedResponse] = field(default_factory=list)
    failures: List[ResponseFailure] = field(default_factory=list)
    invalid: int = 0

    @property
    def ai_responses(self) -> List[AIResponse]:
        return [r.ai_response for r in self.responses]


class ResponseGenerator(LLMStage):
    """
    Runs prompts against the model on a bounded pool.

    One prompt's failure is captured as a ResponseFailure and never cancels
    its siblings. Completed responses are stored in input order.
    """

    stage_name = "response_generation"

    def __init__(self, db: AsyncSession, adapter: BaseLLMAdapter):
        super().__init__(adapter)
        self.db = db

    @staticmethod
    def build_request(prompt_text: str) -> str:
        """Prompt text plus the instruction to name brands explicitly"""
        return prompts.render("response_instruction", prompt_text=prompt_text)

    @staticmethod
    def validate(items: Sequence[GeneratedPrompt]) -> List[GeneratedPrompt]:
        """Drop items missing a prompt, a category or prompt text"""
        valid = []
        for item in items:
            prompt = getattr(item, "prompt", None)
            category = getattr(item, "category", None)
            text = getattr(prompt, "prompt_text", None) if prompt is not None else None
            if prompt is None or category is None or not (text or "").strip():
                error = ValidationFailure(
                    "Skipping structurally invalid prompt",
                    {"prompt_id": str(getattr(prompt, "id", None))},
                )
                logger.warning("%s: %s", error.message, error.details)
                continue
            valid.append(item)
        return valid

    async def _run_one(self, item: GeneratedPrompt, cancel_token: Optional[CancellationToken]) -> LLMResponse:
        if cancel_token:
            cancel_token.raise_if_cancelled()
        return await self._call(
            self.build_request(item.prompt.prompt_text),
            self.settings.RESPONSE_MODEL,
            max_tokens=self.settings.RESPONSE_MAX_TOKENS,
        )

    async def run_responses(
        self,
        items: Sequence[GeneratedPrompt],
        brand_id: UUID,
        user_id: Optional[str],
        session_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResponseBatch:
        """
        Generate and store one AIResponse per valid prompt.

        Raises:
            AnalysisCancelled: after storing completed work, if the token fired
        """
        valid = self.validate(items)
        batch = ResponseBatch(invalid=len(items) - len(valid))

        async def worker(item: GeneratedPrompt) -> LLMResponse:
            return await self._run_one(item, cancel_token)

        results = await gather_bounded(valid, worker, self.settings.PIPELINE_CONCURRENCY)

        cancelled = 0
        for item, result in zip(valid, results):
            if isinstance(result, AnalysisCancelled):
                cancelled += 1
                continue
            if isinstance(result, Exception):
                logger.warning(
                    "Response failed for prompt %s: %s", item.prompt.id, result,
                )
                batch.failures.append(ResponseFailure(prompt=item.prompt, category=item.category, error=result))
                continue

            usage = result.usage
            ai_response = AIResponse(
                prompt_id=item.prompt.id,
                brand_id=brand_id,
                user_id=user_id,
                response_text=result.content or "",
                analysis_session_id=session_id,
                model_name=result.model,
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
                latency_ms=result.latency_ms,
            )
            self.db.add(ai_response)
            batch.responses.append(GeneratedResponse(ai_response=ai_response, prompt=item.prompt, category=item.category))

        await self.db.flush()
        logger.info(
            "Session %s: %d responses stored, %d failed, %d invalid",
            session_id, len(batch.responses), len(batch.failures), batch.invalid,
        )

        if cancelled:
            error = AnalysisCancelled(
                f"Response generation cancelled: {cancel_token.reason}",
                {"stored_responses": len(batch.responses), "skipped": cancelled},
            )
            error.batch = batch
            raise error
        return batch

    async def get_responses(self, session_id: str, brand_id: Optional[UUID] = None) -> List[AIResponse]:
        query = select(AIResponse).where(AIResponse.analysis_session_id == session_id)
        if brand_id is not None:
            query = query.where(AIResponse.brand_id == brand_id)
        result = await self.db.execute(query.order_by(AIResponse.created_at))
        return list(result.scalars().all())
