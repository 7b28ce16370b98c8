"""
Category Extractor
Up to four business categories for a domain
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack import prompts
from sovtrack.adapters.llm import BaseLLMAdapter
from sovtrack.adapters.parsing import (
    DecodedReply,
    ReplyDecoder,
    ReplyShape,
    match_keyed_object,
    match_string_array,
)
from sovtrack.config import FALLBACK_CATEGORIES
from sovtrack.models import Brand, Category
from .base import LLMStage
from .exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class CategoryExtractor(LLMStage):
    """
    Extracts categories with a single model call.

    Decode order: JSON (array, or {"categories": [...]}) -> quoted-string
    salvage -> fixed fallback list. An empty JSON list is a legal answer.
    """

    stage_name = "category_extraction"

    def __init__(self, db: AsyncSession, adapter: BaseLLMAdapter):
        super().__init__(adapter)
        self.db = db
        self.decoder = ReplyDecoder(
            matchers=[
                (ReplyShape.STRING_ARRAY, match_string_array),
                (ReplyShape.KEYED_OBJECT, match_keyed_object("categories")),
            ],
            limit=self.settings.MAX_CATEGORIES,
            salvage_ignore=["categories"],
        )

    def decode(self, reply: str) -> DecodedReply:
        return self.decoder.decode(reply, fallback=lambda: list(FALLBACK_CATEGORIES))

    async def extract_categories(self, domain: str, profile_text: Optional[str] = None) -> List[str]:
        """Never raises for model or parsing problems"""
        prompt = prompts.render(
            "category",
            domain=domain,
            profile_text=profile_text or domain,
        )

        try:
            reply = await self._complete(
                prompt,
                self.settings.CATEGORY_MODEL,
                system_prompt=prompts.system_prompt("category"),
                temperature=self.settings.CATEGORY_TEMPERATURE,
                json_object=True,
            )
        except UpstreamUnavailable as e:
            logger.warning("Using fallback categories for %s: %s", domain, e)
            return list(FALLBACK_CATEGORIES)[: self.settings.MAX_CATEGORIES]

        decoded = self.decode(reply)
        if decoded.shape == ReplyShape.FALLBACK:
            self._malformed(reply, "category")
            logger.warning("Using fallback categories for %s", domain)
        else:
            logger.info("Extracted %d categories for %s (%s)", len(decoded.items), domain, decoded.shape.value)
        return decoded.items

    async def save_categories(
        self,
        brand: Brand,
        categories: List[str],
        session_id: Optional[str] = None,
    ) -> List[Category]:
        """Find-or-create one Category per name, in input order"""
        saved: List[Category] = []
        for name in categories:
            name = name.strip()
            if not name:
                continue
            category = await self._find_or_create(brand, name, session_id)
            if category not in saved:
                saved.append(category)
        return saved

    async def get_categories(self, brand_id) -> List[Category]:
        result = await self.db.execute(
            select(Category)
            .where(Category.brand_id == brand_id)
            .order_by(Category.created_at)
        )
        return list(result.scalars().all())

    async def _find(self, brand_id, name: str) -> Optional[Category]:
        result = await self.db.execute(
            select(Category).where(
                Category.brand_id == brand_id,
                Category.category_name == name,
            )
        )
        return result.scalar_one_or_none()

    async def _find_or_create(self, brand: Brand, name: str, session_id: Optional[str]) -> Category:
        existing = await self._find(brand.id, name)
        if existing:
            return existing

        category = Category(brand_id=brand.id, category_name=name, analysis_session_id=session_id)
        try:
            async with self.db.begin_nested():
                self.db.add(category)
        except IntegrityError:
            # Created concurrently by another run
            existing = await self._find(brand.id, name)
            if existing is None:
                raise
            return existing
        return category
