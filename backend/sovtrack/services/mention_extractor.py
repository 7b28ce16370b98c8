"""
Mention Extractor
One Mention per company present in a response
"""

import logging
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack.adapters.parsing import BrandMatch, detect_companies, domain_aliases
from sovtrack.config import get_settings
from sovtrack.models import AIResponse, Brand, Mention, Prompt
from .response_generator import GeneratedResponse
from .session import session_filter

logger = logging.getLogger(__name__)


class MentionExtractor:
    """
    Presence-based mention extraction.

    A company named three times in one response still yields one Mention.
    Re-extracting a response replaces its Mentions for that session, so
    repeated runs never grow the count.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    def detect(
        self,
        text: str,
        brand: Brand,
        competitors: Sequence[str],
    ) -> List[BrandMatch]:
        return detect_companies(
            text,
            brand.brand_name,
            competitors,
            brand_aliases=domain_aliases(brand.domain),
            fuzzy=self.settings.MENTION_FUZZY_MATCHING,
            threshold=self.settings.MENTION_FUZZY_THRESHOLD,
        )

    async def _category_for(self, response: AIResponse) -> Optional[UUID]:
        prompt = await self.db.get(Prompt, response.prompt_id)
        return prompt.category_id if prompt else None

    async def extract_mentions(
        self,
        response: AIResponse,
        brand: Brand,
        competitors: Sequence[str],
        category_id: Optional[UUID] = None,
        session_id: Optional[str] = None,
    ) -> List[Mention]:
        """Replace the Mentions of one response with a fresh extraction"""
        session_id = session_id or response.analysis_session_id
        if category_id is None:
            category_id = await self._category_for(response)

        await self.db.execute(
            delete(Mention).where(
                Mention.response_id == response.id,
                session_filter(Mention.analysis_session_id, session_id),
            )
        )

        mentions = []
        for match in self.detect(response.response_text or "", brand, competitors):
            mention = Mention(
                prompt_id=response.prompt_id,
                response_id=response.id,
                category_id=category_id,
                brand_id=brand.id,
                user_id=response.user_id,
                company_name=match.normalized_name,
                is_own_brand=match.is_own_brand,
                mentioned_text=match.mentioned_text[:500],
                match_type=match.match_type,
                confidence=match.match_confidence,
                context_snippet=match.context_snippet,
                analysis_session_id=session_id,
            )
            self.db.add(mention)
            mentions.append(mention)

        await self.db.flush()
        return mentions

    async def extract_for_responses(
        self,
        responses: Sequence[GeneratedResponse],
        brand: Brand,
        competitors: Sequence[str],
        session_id: Optional[str] = None,
    ) -> Dict[UUID, List[Mention]]:
        """Extract every response of a batch; keyed by response id"""
        extracted: Dict[UUID, List[Mention]] = {}
        for item in responses:
            extracted[item.ai_response.id] = await self.extract_mentions(
                item.ai_response,
                brand,
                competitors,
                category_id=item.category.id if item.category else None,
                session_id=session_id,
            )
        total = sum(len(m) for m in extracted.values())
        logger.info("Extracted %d mentions from %d responses", total, len(extracted))
        return extracted

    async def get_mentions(
        self,
        session_id: Optional[str],
        response_ids: Optional[Sequence[UUID]] = None,
        brand_id: Optional[UUID] = None,
    ) -> List[Mention]:
        query = select(Mention).where(session_filter(Mention.analysis_session_id, session_id))
        if response_ids is not None:
            if not response_ids:
                return []
            query = query.where(Mention.response_id.in_(list(response_ids)))
        if brand_id is not None:
            query = query.where(Mention.brand_id == brand_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())
