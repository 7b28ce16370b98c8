"""
Share of Voice Calculator Service
Aggregates stored mentions into per-company counts and shares
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack.config import get_settings
from sovtrack.models import AIResponse, Brand, Mention, Prompt, ShareOfVoiceRecord
from .session import session_filter

logger = logging.getLogger(__name__)


@dataclass
class ShareOfVoiceResult:
    """Pure calculation output, before persistence"""
    mention_counts: Dict[str, int] = field(default_factory=dict)
    share_of_voice: Dict[str, float] = field(default_factory=dict)
    total_mentions: int = 0
    target_mentions: int = 0
    total_responses: int = 0
    brand_share: float = 0.0
    coverage: float = 0.0
    ai_visibility_score: float = 0.0


def candidate_names(brand_name: str, competitors: Iterable[str]) -> List[str]:
    """Brand first, then competitors, without case-insensitive duplicates"""
    names = [brand_name]
    seen = {brand_name.lower()}
    for name in competitors:
        if not isinstance(name, str) or not name.strip():
            continue
        if name.strip().lower() in seen:
            continue
        seen.add(name.strip().lower())
        names.append(name.strip())
    return names


def compute_share_of_voice(
    brand_name: str,
    competitors: Iterable[str],
    companies_by_response: Mapping[object, Iterable[str]],
    total_responses: int,
    share_weight: float = 0.4,
    coverage_weight: float = 0.6,
    total_prompts: Optional[int] = None,
) -> ShareOfVoiceResult:
    """
    Share of voice from the companies found in each response.

    Counts are distinct responses per company; names outside the candidate
    list are ignored. With no mentions at all every share is 0.

    aiVisibilityScore = 100 * (share_weight * brand_share / 100
                               + coverage_weight * coverage)
    where coverage is the fraction of prompts whose response named the
    brand. Prompts that got no response count against coverage; without
    total_prompts the response count is the denominator.
    """
    candidates = candidate_names(brand_name, competitors)
    canonical = {name.lower(): name for name in candidates}

    mention_counts = {name: 0 for name in candidates}
    for companies in companies_by_response.values():
        present = {canonical[c.lower()] for c in companies if isinstance(c, str) and c.lower() in canonical}
        for name in present:
            mention_counts[name] += 1

    total_mentions = sum(mention_counts.values())
    if total_mentions > 0:
        share_of_voice = {
            name: round(100.0 * count / total_mentions, 2)
            for name, count in mention_counts.items()
        }
    else:
        share_of_voice = {name: 0.0 for name in candidates}

    target_mentions = mention_counts[brand_name]
    brand_share = share_of_voice[brand_name]
    asked = total_responses if total_prompts is None else max(total_prompts, total_responses)
    coverage = target_mentions / asked if asked > 0 else 0.0
    score = 100.0 * (share_weight * brand_share / 100.0 + coverage_weight * coverage)

    return ShareOfVoiceResult(
        mention_counts=mention_counts,
        share_of_voice=share_of_voice,
        total_mentions=total_mentions,
        target_mentions=target_mentions,
        total_responses=total_responses,
        brand_share=brand_share,
        coverage=round(coverage, 4),
        ai_visibility_score=round(score, 2),
    )


class ShareOfVoiceCalculator:
    """
    Calculates Share of Voice for a brand over one session's responses.

    Always recomputes from the stored Mention set; nothing is patched
    incrementally.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def _filter_by_category(self, responses: Sequence[AIResponse], category_id: UUID) -> List[AIResponse]:
        prompt_ids = {r.prompt_id for r in responses}
        if not prompt_ids:
            return []
        result = await self.db.execute(
            select(Prompt.id).where(Prompt.id.in_(prompt_ids), Prompt.category_id == category_id)
        )
        in_category = set(result.scalars().all())
        return [r for r in responses if r.prompt_id in in_category]

    async def _companies_by_response(
        self,
        response_ids: List[UUID],
        session_id: Optional[str],
    ) -> Dict[UUID, List[str]]:
        companies: Dict[UUID, List[str]] = {rid: [] for rid in response_ids}
        if not response_ids:
            return companies
        query = select(Mention.response_id, Mention.company_name).where(Mention.response_id.in_(response_ids))
        # Legacy runs are scoped by the response list alone
        if session_id is not None:
            query = query.where(Mention.analysis_session_id == session_id)
        result = await self.db.execute(query)
        for response_id, company_name in result.all():
            companies[response_id].append(company_name)
        return companies

    async def calculate_sov(
        self,
        brand: Brand,
        competitors: Sequence[str],
        responses: Sequence[AIResponse],
        category_id: Optional[UUID] = None,
        session_id: Optional[str] = None,
        preserve_old_records: bool = False,
        user_id: Optional[str] = None,
        total_prompts: Optional[int] = None,
    ) -> ShareOfVoiceRecord:
        """
        Calculate and store Share of Voice.

        Args:
            brand: Brand being measured
            competitors: Competitor names counted alongside the brand
            responses: The session's responses
            category_id: Restrict to one category (legacy per-category mode)
            session_id: Session whose mentions are counted; None counts
                every mention of the given responses
            preserve_old_records: Keep earlier records instead of replacing them
            user_id: Owner recorded on the row
            total_prompts: Prompts asked, including ones that failed;
                the coverage denominator

        Returns:
            The new ShareOfVoiceRecord
        """
        responses = list(responses)
        if category_id is not None:
            responses = await self._filter_by_category(responses, category_id)

        response_ids = [r.id for r in responses]
        companies = await self._companies_by_response(response_ids, session_id)

        result = compute_share_of_voice(
            brand.brand_name,
            competitors,
            companies,
            total_responses=len(responses),
            share_weight=self.settings.VISIBILITY_SHARE_WEIGHT,
            coverage_weight=self.settings.VISIBILITY_COVERAGE_WEIGHT,
            total_prompts=total_prompts if category_id is None else None,
        )

        if not preserve_old_records:
            conditions = [
                ShareOfVoiceRecord.brand_id == brand.id,
                session_filter(ShareOfVoiceRecord.analysis_session_id, session_id),
            ]
            if category_id is not None:
                conditions.append(ShareOfVoiceRecord.category_id == category_id)
            else:
                conditions.append(ShareOfVoiceRecord.category_id.is_(None))
            await self.db.execute(delete(ShareOfVoiceRecord).where(*conditions))

        record = ShareOfVoiceRecord(
            brand_id=brand.id,
            category_id=category_id,
            user_id=user_id or brand.owner_user_id,
            analysis_session_id=session_id,
            domain=brand.domain,
            brand_name=brand.brand_name,
            competitors=list(competitors),
            total_mentions=result.total_mentions,
            target_mentions=result.target_mentions,
            total_responses=result.total_responses,
            mention_counts=result.mention_counts,
            share_of_voice=result.share_of_voice,
            brand_share=result.brand_share,
            ai_visibility_score=result.ai_visibility_score,
        )
        self.db.add(record)
        await self.db.flush()

        logger.info(
            "SOV for %s (session %s): brand share %.2f%%, visibility %.2f, %d mentions over %d responses",
            brand.brand_name, session_id, result.brand_share,
            result.ai_visibility_score, result.total_mentions, result.total_responses,
        )
        return record

    async def latest_for_session(self, session_id: str) -> Optional[ShareOfVoiceRecord]:
        """Most recent record for a session"""
        result = await self.db.execute(
            select(ShareOfVoiceRecord)
            .where(ShareOfVoiceRecord.analysis_session_id == session_id)
            .order_by(ShareOfVoiceRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_for_brand(self, brand_id: UUID) -> Optional[ShareOfVoiceRecord]:
        """Most recent record for a brand, any session"""
        result = await self.db.execute(
            select(ShareOfVoiceRecord)
            .where(ShareOfVoiceRecord.brand_id == brand_id)
            .order_by(ShareOfVoiceRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def records_for_brand(self, brand_id: UUID) -> List[ShareOfVoiceRecord]:
        result = await self.db.execute(
            select(ShareOfVoiceRecord)
            .where(ShareOfVoiceRecord.brand_id == brand_id)
            .order_by(ShareOfVoiceRecord.created_at)
        )
        return list(result.scalars().all())
