"""
Prompt Generator
Two-step question generation per category: keywords, then questions
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack import prompts
from sovtrack.adapters.llm import BaseLLMAdapter
from sovtrack.adapters.parsing import (
    ReplyDecoder,
    ReplyShape,
    match_keyed_object,
    match_object_field_array,
    match_string_array,
)
from sovtrack.config import GENERIC_COMPETITOR_NAMES
from sovtrack.models import Brand, Category, Prompt
from .base import LLMStage
from .exceptions import (
    AnalysisCancelled,
    FatalPrerequisiteMissing,
    UpstreamUnavailable,
    ValidationFailure,
)
from .session import CancellationToken, gather_bounded

logger = logging.getLogger(__name__)

QUESTION_FIELDS = ("query", "question", "prompt")


@dataclass
class GeneratedPrompt:
    """A stored prompt and the category it belongs to"""
    prompt: Prompt
    category: Category


@dataclass
class CategoryQuestions:
    """Model output for one category before persistence"""
    category: Category
    keywords: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    keywords_fallback: bool = False
    questions_fallback: bool = False


class PromptGenerator(LLMStage):
    """
    Generates user-style questions that should surface the brand without
    naming it.

    Categories are independent: their model calls run on a bounded pool and
    results are stored after the join, in category order. A category that
    raises is logged and contributes nothing.
    """

    stage_name = "prompt_generation"

    def __init__(self, db: AsyncSession, adapter: BaseLLMAdapter):
        super().__init__(adapter)
        self.db = db
        self.keyword_decoder = ReplyDecoder(
            matchers=[
                (ReplyShape.STRING_ARRAY, match_string_array),
                (ReplyShape.KEYED_OBJECT, match_keyed_object("keywords")),
            ],
            limit=self.settings.KEYWORDS_PER_CATEGORY,
            salvage_ignore=["keywords"],
        )
        self.question_decoder = ReplyDecoder(
            matchers=[
                (ReplyShape.STRING_ARRAY, match_string_array),
                (ReplyShape.OBJECT_FIELD_ARRAY, match_object_field_array(QUESTION_FIELDS)),
                (ReplyShape.KEYED_OBJECT, match_keyed_object("questions")),
            ],
            limit=self.settings.PROMPTS_PER_CATEGORY,
            salvage_ignore=QUESTION_FIELDS + ("questions",),
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @staticmethod
    def is_local(brand: Brand, location: Optional[str]) -> bool:
        return bool(brand.is_local_brand and location)

    def build_keyword_request(self, category_name: str, brand: Brand, location: Optional[str]) -> str:
        if self.is_local(brand, location):
            return prompts.render("keyword_local", category=category_name, location=location)
        return prompts.render("keyword_global", category=category_name, domain=brand.domain)

    def build_question_request(
        self,
        category_name: str,
        brand: Brand,
        keywords: Sequence[str],
        competitors: Sequence[str],
        location: Optional[str],
    ) -> str:
        context = dict(
            category=category_name,
            domain=brand.domain,
            brand_name=brand.brand_name,
            keywords=list(keywords),
            competitors=list(competitors) or list(GENERIC_COMPETITOR_NAMES),
            location=location,
        )
        name = "question_local" if self.is_local(brand, location) else "question_global"
        return prompts.render(name, **context)

    def fallback_keywords(self, category_name: str) -> List[str]:
        return prompts.render_fallbacks("keywords", category=category_name)

    def fallback_questions(self, category_name: str, brand: Brand, location: Optional[str]) -> List[str]:
        if self.is_local(brand, location):
            return prompts.render_fallbacks("questions_local", category=category_name, location=location)
        return prompts.render_fallbacks("questions_global", category=category_name)

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    async def generate_keywords(self, category_name: str, brand: Brand, location: Optional[str]) -> CategoryQuestions:
        result = CategoryQuestions(category=None)
        try:
            reply = await self._complete(
                self.build_keyword_request(category_name, brand, location),
                self.settings.KEYWORD_MODEL,
                temperature=self.settings.KEYWORD_TEMPERATURE,
                max_tokens=self.settings.KEYWORD_MAX_TOKENS,
            )
            decoded = self.keyword_decoder.decode(reply, fallback=lambda: self.fallback_keywords(category_name))
            if decoded.is_fallback:
                self._malformed(reply, "keyword")
            result.keywords = decoded.items
            result.keywords_fallback = decoded.is_fallback
        except UpstreamUnavailable as e:
            logger.warning("Keyword call failed for %s: %s", category_name, e)
            result.keywords = self.fallback_keywords(category_name)
            result.keywords_fallback = True
        return result

    async def generate_questions(
        self,
        category_name: str,
        brand: Brand,
        keywords: Sequence[str],
        competitors: Sequence[str],
        location: Optional[str],
    ) -> List[str]:
        """Up to five questions; an empty list means the caller should fall back"""
        try:
            reply = await self._complete(
                self.build_question_request(category_name, brand, keywords, competitors, location),
                self.settings.QUESTION_MODEL,
                max_tokens=self.settings.QUESTION_MAX_TOKENS,
            )
        except UpstreamUnavailable as e:
            logger.warning("Question call failed for %s: %s", category_name, e)
            return []
        decoded = self.question_decoder.decode(reply)
        if decoded.shape == ReplyShape.EMPTY:
            self._malformed(reply, "question")
        return decoded.items

    async def questions_for_category(
        self,
        category: Category,
        brand: Brand,
        competitors: Sequence[str],
        location: Optional[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> CategoryQuestions:
        if cancel_token:
            cancel_token.raise_if_cancelled()

        result = await self.generate_keywords(category.category_name, brand, location)
        result.category = category

        if cancel_token:
            cancel_token.raise_if_cancelled()

        questions = await self.generate_questions(
            category.category_name, brand, result.keywords, competitors, location
        )
        if not questions:
            questions = self.fallback_questions(category.category_name, brand, location)
            result.questions_fallback = True
        result.questions = questions
        return result

    # ------------------------------------------------------------------
    # Stage entry points
    # ------------------------------------------------------------------

    async def generate_prompts(
        self,
        categories: List[Category],
        brand: Brand,
        competitors: Sequence[str],
        location: Optional[str] = None,
        session_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        created_by: Optional[str] = None,
    ) -> List[GeneratedPrompt]:
        """
        Generate and store prompts for each category.

        Returns GeneratedPrompt pairs in category order. If the token fires,
        categories that already finished are stored before AnalysisCancelled
        is raised.
        """
        location = location or brand.location

        async def worker(category: Category) -> CategoryQuestions:
            return await self.questions_for_category(category, brand, competitors, location, cancel_token)

        results = await gather_bounded(categories, worker, self.settings.PIPELINE_CONCURRENCY)

        generated: List[GeneratedPrompt] = []
        cancelled = False
        for category, result in zip(categories, results):
            if isinstance(result, AnalysisCancelled):
                cancelled = True
                continue
            if isinstance(result, Exception):
                logger.error(
                    "Prompt generation failed for category %s: %s",
                    category.category_name, result, exc_info=result,
                )
                continue

            for text in result.questions:
                text = text.strip() if isinstance(text, str) else ""
                if not text:
                    continue
                prompt = Prompt(
                    category_id=category.id,
                    brand_id=brand.id,
                    prompt_text=text,
                    created_by=created_by,
                    analysis_session_id=session_id,
                )
                self.db.add(prompt)
                generated.append(GeneratedPrompt(prompt=prompt, category=category))

        await self.db.flush()
        logger.info("Generated %d prompts across %d categories", len(generated), len(categories))

        if cancelled:
            raise AnalysisCancelled(
                "Prompt generation cancelled",
                {"stored_prompts": len(generated)},
            )
        return generated

    async def get_prompts(self, brand_id: UUID, session_id: Optional[str] = None) -> List[GeneratedPrompt]:
        """Stored prompts with their categories, resolved by separate lookups"""
        query = select(Prompt).where(Prompt.brand_id == brand_id)
        if session_id is not None:
            query = query.where(Prompt.analysis_session_id == session_id)
        result = await self.db.execute(query.order_by(Prompt.created_at))
        prompt_rows = list(result.scalars().all())

        category_ids = {p.category_id for p in prompt_rows}
        categories = {}
        if category_ids:
            cat_result = await self.db.execute(select(Category).where(Category.id.in_(category_ids)))
            categories = {c.id: c for c in cat_result.scalars().all()}

        return [
            GeneratedPrompt(prompt=p, category=categories.get(p.category_id))
            for p in prompt_rows
        ]

    async def update_prompt_text(self, prompt_id: UUID, text: str) -> Prompt:
        """Overwrite a prompt's text in place"""
        text = (text or "").strip()
        if not text:
            raise ValidationFailure("Prompt text cannot be empty", {"prompt_id": str(prompt_id)})

        prompt = await self.db.get(Prompt, prompt_id)
        if not prompt:
            raise FatalPrerequisiteMissing(f"Prompt {prompt_id} not found")

        prompt.prompt_text = text
        await self.db.flush()
        return prompt
