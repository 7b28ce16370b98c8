"""
Analysis Tasks
Full pipeline runs and competitor syncs outside the request path
"""

import asyncio
from typing import Dict, List, Optional
from uuid import UUID

from celery.utils.log import get_task_logger
from sqlalchemy.exc import SQLAlchemyError

from sovtrack.workers.celery_app import celery_app
from sovtrack.utils.database import get_db_context, close_db
from sovtrack.adapters.llm import get_adapter
from sovtrack.schemas import AnalysisRequest, AnalysisSummary
from sovtrack.services import (
    AnalysisPipeline,
    CancellationToken,
    FatalPrerequisiteMissing,
    PipelineError,
    SyncManager,
)

logger = get_task_logger(__name__)


def run_async(coro):
    """Run async function in sync context"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(
    bind=True,
    name="sovtrack.workers.tasks.analysis_tasks.run_brand_analysis",
    max_retries=0,
)
def run_brand_analysis(
    self,
    domain: str,
    user_id: str,
    brand_name: Optional[str] = None,
    isolated: bool = False,
    is_local_brand: bool = False,
    website_content: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Dict:
    """
    Run a full analysis for a domain.

    Returns:
        Dict with the analysis summary, or an error
    """
    request = AnalysisRequest(
        domain=domain,
        user_id=user_id,
        brand_name=brand_name,
        isolated=isolated,
        is_local_brand=is_local_brand,
        website_content=website_content,
    )
    logger.info(f"Starting analysis for {request.domain} (user {request.user_id})")

    return run_async(_run_analysis(request, timeout))


async def _run_analysis(request: AnalysisRequest, timeout: Optional[float]) -> Dict:
    try:
        async with get_db_context() as db:
            pipeline = AnalysisPipeline(db, get_adapter())
            try:
                result = await pipeline.run(
                    request.domain,
                    request.user_id,
                    brand_name=request.brand_name,
                    isolated=request.isolated,
                    is_local_brand=request.is_local_brand,
                    website_content=request.website_content,
                    cancel_token=CancellationToken(timeout) if timeout else None,
                )
            except PipelineError as e:
                # Keep the failed snapshot and any completed work
                await db.commit()
                logger.error(f"Analysis for {request.domain} stopped: {e}")
                return {"error": str(e), "domain": request.domain}
            summary = AnalysisSummary.from_result(result.as_dict())
        return summary.model_dump(mode="json")
    finally:
        # The engine is bound to this task's event loop
        await close_db()


@celery_app.task(
    bind=True,
    name="sovtrack.workers.tasks.analysis_tasks.rerun_analysis_session",
    max_retries=0,
)
def rerun_analysis_session(self, session_id: str) -> Dict:
    """Regenerate responses, mentions and SOV for a stored analysis"""
    return run_async(_rerun_session(session_id))


async def _rerun_session(session_id: str) -> Dict:
    try:
        async with get_db_context() as db:
            pipeline = AnalysisPipeline(db, get_adapter())
            try:
                result = await pipeline.rerun_session(session_id)
            except PipelineError as e:
                await db.commit()
                logger.error(f"Rerun of {session_id} stopped: {e}")
                return {"error": str(e), "analysis_id": session_id}
            summary = AnalysisSummary.from_result(result.as_dict())
        return summary.model_dump(mode="json")
    finally:
        await close_db()


@celery_app.task(
    bind=True,
    name="sovtrack.workers.tasks.analysis_tasks.sync_brand_competitors",
    max_retries=3,
    default_retry_delay=30,
)
def sync_brand_competitors(
    self,
    brand_id: str,
    competitors: List[str],
    recalculate: bool = False,
) -> Dict:
    """
    Propagate a brand's new competitor list to its stored records.

    Returns:
        Dict with per-record outcomes
    """
    try:
        return run_async(_sync_competitors(UUID(brand_id), competitors, recalculate))
    except FatalPrerequisiteMissing as e:
        logger.error(f"Competitor sync for {brand_id} aborted: {e}")
        return {"error": str(e), "brand_id": brand_id}
    except SQLAlchemyError as e:
        logger.warning(f"Competitor sync for {brand_id} failed, retrying: {e}")
        raise self.retry(exc=e)


async def _sync_competitors(brand_id: UUID, competitors: List[str], recalculate: bool) -> Dict:
    try:
        async with get_db_context() as db:
            report = await SyncManager(db).update_competitors(brand_id, competitors, recalculate=recalculate)
            result = {
                "brand_id": str(report.brand_id),
                "competitors": report.competitors,
                "updated": report.updated_count,
                "failed": report.failed_count,
                "outcomes": [
                    {
                        "kind": o.kind,
                        "record_id": o.record_id,
                        "success": o.success,
                        "error": o.error,
                        "old_count": o.old_count,
                        "new_count": o.new_count,
                        "removed_keys": o.removed_keys,
                    }
                    for o in report.outcomes
                ],
            }
        logger.info(f"Synced competitors for brand {brand_id}: {result['updated']} updated, {result['failed']} failed")
        return result
    finally:
        await close_db()
