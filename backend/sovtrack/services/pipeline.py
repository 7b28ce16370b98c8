"""
Analysis Pipeline
Runs every stage for one domain and records progress on a snapshot
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack.adapters.llm import BaseLLMAdapter
from sovtrack.models import (
    AIResponse,
    AnalysisSnapshot,
    AnalysisStage,
    AnalysisStatus,
    Brand,
    Mention,
    ShareOfVoiceRecord,
)
from .category_extractor import CategoryExtractor
from .competitor_extractor import CompetitorExtractor
from .domain_profiler import DomainProfiler, display_name_from_domain, normalize_domain
from .exceptions import AnalysisCancelled, FatalPrerequisiteMissing
from .mention_extractor import MentionExtractor
from .prompt_generator import GeneratedPrompt, PromptGenerator
from .response_generator import ResponseBatch, ResponseGenerator
from .session import AnalysisContext, CancellationToken, new_session_id
from .sov_calculator import ShareOfVoiceCalculator
from .sync_manager import SyncManager, apply_sov_to_snapshot

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Everything one run produced"""
    context: AnalysisContext
    brand: Brand
    snapshot: Optional[AnalysisSnapshot] = None
    prompts: List[GeneratedPrompt] = field(default_factory=list)
    batch: ResponseBatch = field(default_factory=ResponseBatch)
    sov_record: Optional[ShareOfVoiceRecord] = None

    @property
    def session_id(self) -> str:
        return self.context.session_id

    def as_dict(self) -> Dict[str, Any]:
        snapshot = self.snapshot
        return {
            "analysis_id": self.session_id,
            "status": snapshot.status.value if snapshot else AnalysisStatus.COMPLETED.value,
            "current_stage": self.context.stage.value,
            "domain": self.context.domain,
            "brand_name": self.brand.brand_name,
            "categories": list(self.context.categories),
            "competitors": list(self.context.competitors),
            "prompt_count": len(self.prompts),
            "response_count": len(self.batch.responses),
            "failed_responses": len(self.batch.failures),
            "share_of_voice": self.sov_record,
            "analysis_time_ms": snapshot.analysis_time_ms if snapshot else None,
        }


class AnalysisPipeline:
    """
    DomainProfiler -> CategoryExtractor -> CompetitorExtractor ->
    PromptGenerator -> ResponseGenerator -> MentionExtractor ->
    ShareOfVoiceCalculator

    All per-run values travel on an AnalysisContext. Model work fans out
    inside stages; database writes stay on this session, after each join.
    """

    def __init__(self, db: AsyncSession, adapter: BaseLLMAdapter):
        self.db = db
        self.adapter = adapter
        self.profiler = DomainProfiler(adapter)
        self.categories = CategoryExtractor(db, adapter)
        self.competitors = CompetitorExtractor(db, adapter)
        self.prompts = PromptGenerator(db, adapter)
        self.responses = ResponseGenerator(db, adapter)
        self.mentions = MentionExtractor(db)
        self.calculator = ShareOfVoiceCalculator(db)
        self.sync = SyncManager(db)

    # ------------------------------------------------------------------
    # Brand & snapshot bookkeeping
    # ------------------------------------------------------------------

    async def _upsert_brand(self, ctx: AnalysisContext, is_local_brand: bool) -> Brand:
        """One Brand per owner, or a fresh Brand per isolated session"""
        brand = None
        if not ctx.isolated:
            result = await self.db.execute(
                select(Brand).where(
                    Brand.owner_user_id == ctx.user_id,
                    Brand.is_admin_analysis.is_(False),
                )
            )
            brand = result.scalars().first()

        if brand is None:
            brand = Brand(
                owner_user_id=ctx.user_id,
                is_admin_analysis=ctx.isolated,
                analysis_session_id=ctx.session_id if ctx.isolated else None,
                competitors=[],
            )
            self.db.add(brand)

        brand.domain = ctx.domain
        brand.brand_name = ctx.brand_name
        brand.description = ctx.description
        brand.is_local_brand = is_local_brand
        brand.location = ctx.location
        await self.db.flush()
        return brand

    async def _get_snapshot(self, session_id: str) -> Optional[AnalysisSnapshot]:
        result = await self.db.execute(
            select(AnalysisSnapshot).where(AnalysisSnapshot.analysis_id == session_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _checkpoint(snapshot: AnalysisSnapshot, ctx: AnalysisContext):
        snapshot.current_stage = ctx.stage
        snapshot.brand_id = ctx.brand_id
        snapshot.brand_name = ctx.brand_name
        snapshot.brand_information = ctx.description
        snapshot.categories = list(ctx.categories)
        snapshot.competitors = list(ctx.competitors)

    @staticmethod
    def _finish(snapshot: AnalysisSnapshot, status: AnalysisStatus, error: Optional[str] = None):
        snapshot.status = status
        snapshot.error_message = error
        snapshot.completed_at = datetime.utcnow()
        if snapshot.started_at:
            snapshot.analysis_time_ms = int((snapshot.completed_at - snapshot.started_at).total_seconds() * 1000)

    async def _fail(self, snapshot: AnalysisSnapshot, ctx: AnalysisContext, error: Exception):
        status = AnalysisStatus.CANCELLED if isinstance(error, AnalysisCancelled) else AnalysisStatus.FAILED
        self._checkpoint(snapshot, ctx)
        self._finish(snapshot, status, str(error))
        await self.db.flush()
        logger.error("Analysis %s %s at stage %s: %s", ctx.session_id, status.value, ctx.stage.value, error)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    async def run(
        self,
        domain: str,
        user_id: str,
        brand_name: Optional[str] = None,
        isolated: bool = False,
        is_local_brand: bool = False,
        website_content: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        session_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Run a full analysis.

        Model and parsing failures degrade to fallbacks and never abort the
        run. The snapshot is marked failed or cancelled before any
        exception propagates.
        """
        domain = normalize_domain(domain)
        ctx = AnalysisContext(
            session_id=session_id or new_session_id("admin_analysis" if isolated else "analysis"),
            user_id=user_id,
            domain=domain,
            brand_name=brand_name or display_name_from_domain(domain),
            isolated=isolated,
        )

        snapshot = AnalysisSnapshot(
            analysis_id=ctx.session_id,
            owner_user_id=user_id,
            domain=domain,
            brand_name=ctx.brand_name,
            status=AnalysisStatus.IN_PROGRESS,
            current_stage=AnalysisStage.NOT_STARTED,
            started_at=datetime.utcnow(),
        )
        self.db.add(snapshot)
        await self.db.flush()
        logger.info("Starting analysis %s for %s", ctx.session_id, domain)

        try:
            return await self._run_stages(ctx, snapshot, is_local_brand, website_content, cancel_token)
        except Exception as e:
            await self._fail(snapshot, ctx, e)
            raise

    async def _run_stages(
        self,
        ctx: AnalysisContext,
        snapshot: AnalysisSnapshot,
        is_local_brand: bool,
        website_content: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> AnalysisResult:
        # Profile
        profile = await self.profiler.profile(ctx.domain)
        ctx.profile_text = profile.profile_text
        ctx.description = profile.description
        if is_local_brand:
            ctx.location = await self.profiler.extract_location(profile.description)
        ctx.advance(AnalysisStage.PROFILING_DONE)

        brand = await self._upsert_brand(ctx, is_local_brand)
        ctx.brand_id = brand.id
        self._checkpoint(snapshot, ctx)
        if cancel_token:
            cancel_token.raise_if_cancelled()

        # Categories
        ctx.categories = await self.categories.extract_categories(ctx.domain, ctx.profile_text)
        category_rows = await self.categories.save_categories(brand, ctx.categories, ctx.session_id)
        ctx.advance(AnalysisStage.CATEGORIES_READY)
        self._checkpoint(snapshot, ctx)
        if cancel_token:
            cancel_token.raise_if_cancelled()

        # Competitors
        extraction = await self.competitors.extract_competitors(brand, website_content, ctx.session_id)
        ctx.competitors = list(extraction.competitors)
        if brand.competitors and list(brand.competitors) != ctx.competitors:
            # A reused brand's history follows the new list
            report = await self.sync.update_competitors(brand.id, ctx.competitors)
            logger.info(
                "Competitors for %s changed; %d stored records synced, %d failed",
                brand.brand_name, report.updated_count, report.failed_count,
            )
        else:
            brand.competitors = list(ctx.competitors)
        ctx.advance(AnalysisStage.COMPETITORS_READY)
        self._checkpoint(snapshot, ctx)
        await self.db.flush()

        # Prompts
        generated = await self.prompts.generate_prompts(
            category_rows,
            brand,
            ctx.competitors,
            location=ctx.location,
            session_id=ctx.session_id,
            cancel_token=cancel_token,
            created_by=ctx.user_id,
        )
        ctx.advance(AnalysisStage.PROMPTS_READY)
        self._checkpoint(snapshot, ctx)
        snapshot.prompts = [
            {"id": str(g.prompt.id), "category_id": str(g.category.id), "prompt_text": g.prompt.prompt_text}
            for g in generated
        ]

        result = AnalysisResult(context=ctx, brand=brand, snapshot=snapshot, prompts=generated)
        await self._run_measurement(result, cancel_token)

        self._finish(snapshot, AnalysisStatus.COMPLETED)
        await self.db.flush()
        logger.info(
            "Analysis %s completed: %d prompts, %d responses, brand share %.2f%%",
            ctx.session_id, len(generated), len(result.batch.responses),
            result.sov_record.brand_share if result.sov_record else 0.0,
        )
        return result

    async def _run_measurement(self, result: AnalysisResult, cancel_token: Optional[CancellationToken]):
        """Responses -> mentions -> SOV; SOV starts only after both finish"""
        ctx = result.context
        brand = result.brand

        result.batch = await self.responses.run_responses(
            result.prompts, brand.id, ctx.user_id, ctx.session_id, cancel_token,
        )
        ctx.advance(AnalysisStage.RESPONSES_READY)
        if result.snapshot:
            self._checkpoint(result.snapshot, ctx)

        await self.mentions.extract_for_responses(
            result.batch.responses, brand, ctx.competitors, session_id=ctx.session_id,
        )
        ctx.advance(AnalysisStage.MENTIONS_EXTRACTED)

        result.sov_record = await self.calculator.calculate_sov(
            brand,
            ctx.competitors,
            result.batch.ai_responses,
            session_id=ctx.session_id,
            preserve_old_records=ctx.isolated,
            total_prompts=len(result.prompts),
            user_id=ctx.user_id,
        )
        ctx.advance(AnalysisStage.SOV_CALCULATED)
        if result.snapshot:
            self._checkpoint(result.snapshot, ctx)
            apply_sov_to_snapshot(result.snapshot, result.sov_record)

    # ------------------------------------------------------------------
    # Re-entry
    # ------------------------------------------------------------------

    async def regenerate_prompts(
        self,
        brand_id: UUID,
        session_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[GeneratedPrompt]:
        """New prompts for an existing brand; earlier stages stay valid"""
        brand = await self.db.get(Brand, brand_id)
        if not brand:
            raise FatalPrerequisiteMissing(f"Brand {brand_id} not found")

        category_rows = await self.categories.get_categories(brand.id)
        if not category_rows:
            raise FatalPrerequisiteMissing(f"No categories found for brand {brand.brand_name}")

        ctx = AnalysisContext(
            session_id=session_id or new_session_id("prompts"),
            user_id=brand.owner_user_id,
            domain=brand.domain,
            brand_id=brand.id,
            brand_name=brand.brand_name,
            location=brand.location,
            categories=[c.category_name for c in category_rows],
            competitors=list(brand.competitors or []),
            stage=AnalysisStage.COMPETITORS_READY,
        )
        generated = await self.prompts.generate_prompts(
            category_rows,
            brand,
            ctx.competitors,
            location=ctx.location,
            session_id=ctx.session_id,
            cancel_token=cancel_token,
            created_by=ctx.user_id,
        )
        ctx.advance(AnalysisStage.PROMPTS_READY)
        return generated

    async def rerun_session(
        self,
        session_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AnalysisResult:
        """
        Regenerate responses, mentions and SOV for a session's stored prompts.

        Earlier responses and mentions of the session are replaced.
        """
        snapshot = await self._get_snapshot(session_id)
        if not snapshot:
            raise FatalPrerequisiteMissing(f"Analysis {session_id} not found")
        if not snapshot.brand_id:
            raise FatalPrerequisiteMissing(f"Analysis {session_id} has no brand")

        brand = await self.db.get(Brand, snapshot.brand_id)
        if not brand:
            raise FatalPrerequisiteMissing(f"Brand {snapshot.brand_id} not found")

        generated = await self.prompts.get_prompts(brand.id, session_id)
        if not generated:
            raise FatalPrerequisiteMissing(f"No prompts found for analysis {session_id}")

        ctx = AnalysisContext(
            session_id=session_id,
            user_id=snapshot.owner_user_id,
            domain=brand.domain,
            brand_id=brand.id,
            brand_name=brand.brand_name,
            description=brand.description,
            location=brand.location,
            categories=list(snapshot.categories or []),
            competitors=list(brand.competitors or []),
            isolated=bool(brand.is_admin_analysis),
            stage=AnalysisStage.PROMPTS_READY,
        )

        old_responses = select(AIResponse.id).where(
            AIResponse.analysis_session_id == session_id,
            AIResponse.brand_id == brand.id,
        )
        await self.db.execute(
            delete(Mention).where(
                Mention.analysis_session_id == session_id,
                Mention.response_id.in_(old_responses),
            )
        )
        await self.db.execute(
            delete(AIResponse).where(
                AIResponse.analysis_session_id == session_id,
                AIResponse.brand_id == brand.id,
            )
        )

        snapshot.status = AnalysisStatus.IN_PROGRESS
        snapshot.started_at = datetime.utcnow()
        snapshot.completed_at = None
        await self.db.flush()

        result = AnalysisResult(context=ctx, brand=brand, snapshot=snapshot, prompts=generated)
        try:
            await self._run_measurement(result, cancel_token)
        except Exception as e:
            await self._fail(snapshot, ctx, e)
            raise

        self._finish(snapshot, AnalysisStatus.COMPLETED)
        await self.db.flush()
        return result
