#!/usr/bin/env python3
"""
Analysis Runner
Runs the share-of-voice pipeline, or one of its maintenance operations,
directly against the configured database.

Usage:
    export OPENAI_API_KEY=your_key

    python scripts/run_analysis.py run acme-widgets.com --user demo
    python scripts/run_analysis.py run acme-widgets.com --user demo --isolated --local
    python scripts/run_analysis.py rerun analysis_1718000000000_1a2b3c4d
    python scripts/run_analysis.py sync <brand-id> "Rival Co" "Other Inc" --recalculate
    python scripts/run_analysis.py delete-prompt <session-id> <prompt-id>
"""

import argparse
import asyncio
import json
import logging
import sys
from uuid import UUID

# Add parent directory to path
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from sovtrack.adapters.llm import get_adapter
from sovtrack.config import get_settings
from sovtrack.schemas import AnalysisRequest, AnalysisSummary, CompetitorUpdate
from sovtrack.services import AnalysisPipeline, CancellationToken, PipelineError, SyncManager
from sovtrack.utils import close_db, get_db_context, init_db

logger = logging.getLogger("run_analysis")


def print_summary(summary: AnalysisSummary):
    print()
    print("=" * 60)
    print(f"Analysis {summary.analysis_id}: {summary.status}")
    print("=" * 60)
    print(f"Brand:       {summary.brand_name} ({summary.domain})")
    print(f"Categories:  {', '.join(summary.categories)}")
    print(f"Competitors: {', '.join(summary.competitors)}")
    print(f"Prompts:     {summary.prompt_count}")
    print(f"Responses:   {summary.response_count} ({summary.failed_responses} failed)")

    sov = summary.share_of_voice
    if sov:
        print()
        print(f"{'Company':<30} {'Mentions':>8} {'Share':>8}")
        for name, share in sorted(sov.share_of_voice.items(), key=lambda kv: -kv[1]):
            print(f"{name:<30} {sov.mention_counts.get(name, 0):>8} {share:>7.2f}%")
        print()
        print(f"AI visibility score: {sov.ai_visibility_score:.2f}")


async def cmd_run(args) -> int:
    request = AnalysisRequest(
        domain=args.domain,
        user_id=args.user,
        brand_name=args.brand,
        isolated=args.isolated,
        is_local_brand=args.local,
    )
    async with get_db_context() as db:
        pipeline = AnalysisPipeline(db, get_adapter())
        try:
            result = await pipeline.run(
                request.domain,
                request.user_id,
                brand_name=request.brand_name,
                isolated=request.isolated,
                is_local_brand=request.is_local_brand,
                cancel_token=CancellationToken(args.timeout) if args.timeout else None,
            )
        except PipelineError as e:
            await db.commit()
            logger.error(f"Analysis stopped: {e}")
            return 1
        print_summary(AnalysisSummary.from_result(result.as_dict()))
    return 0


async def cmd_rerun(args) -> int:
    async with get_db_context() as db:
        pipeline = AnalysisPipeline(db, get_adapter())
        try:
            result = await pipeline.rerun_session(args.session_id)
        except PipelineError as e:
            await db.commit()
            logger.error(f"Rerun stopped: {e}")
            return 1
        print_summary(AnalysisSummary.from_result(result.as_dict()))
    return 0


async def cmd_sync(args) -> int:
    update = CompetitorUpdate(competitors=args.competitors, recalculate=args.recalculate)
    async with get_db_context() as db:
        report = await SyncManager(db).update_competitors(
            UUID(args.brand_id), update.competitors, recalculate=update.recalculate
        )
    print(f"Competitors: {', '.join(report.competitors)}")
    print(f"Updated {report.updated_count} records, {report.failed_count} failed")
    for outcome in report.outcomes:
        if not outcome.success:
            print(f"  {outcome.kind} {outcome.record_id}: {outcome.error}")
    return 0 if report.failed_count == 0 else 2


async def cmd_delete_prompt(args) -> int:
    async with get_db_context() as db:
        record = await SyncManager(db).delete_prompt(args.session_id, UUID(args.prompt_id))
        print(json.dumps(record.share_of_voice, indent=2))
    return 0


COMMANDS = {
    "run": cmd_run,
    "rerun": cmd_rerun,
    "sync": cmd_sync,
    "delete-prompt": cmd_delete_prompt,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Brand share-of-voice analysis")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a full analysis for a domain")
    run.add_argument("domain")
    run.add_argument("--user", required=True, help="Owner user id")
    run.add_argument("--brand", help="Brand name (defaults to the domain stem)")
    run.add_argument("--isolated", action="store_true", help="Fresh brand, keep earlier records")
    run.add_argument("--local", action="store_true", help="Generate location-specific prompts")
    run.add_argument("--timeout", type=float, help="Cancel after this many seconds")

    rerun = sub.add_parser("rerun", help="Regenerate responses and SOV for a stored analysis")
    rerun.add_argument("session_id")

    sync = sub.add_parser("sync", help="Replace a brand's competitors")
    sync.add_argument("brand_id")
    sync.add_argument("competitors", nargs="*")
    sync.add_argument("--recalculate", action="store_true")

    delete = sub.add_parser("delete-prompt", help="Remove a prompt from a session")
    delete.add_argument("session_id")
    delete.add_argument("prompt_id")

    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, get_settings().LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    await init_db()
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
