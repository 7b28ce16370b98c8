"""
Competitor Sync Manager
Keeps historical SOV records and analysis snapshots consistent with a
brand's current competitor list
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack.models import (
    AIResponse,
    AnalysisSnapshot,
    AnalysisStatus,
    Brand,
    Mention,
    Prompt,
    ShareOfVoiceRecord,
)
from .exceptions import FatalPrerequisiteMissing, ValidationFailure
from .mention_extractor import MentionExtractor
from .sov_calculator import ShareOfVoiceCalculator

logger = logging.getLogger(__name__)

# Snapshots in other states are left untouched
SYNCABLE_SNAPSHOT_STATUSES = (AnalysisStatus.COMPLETED, AnalysisStatus.IN_PROGRESS)


@dataclass
class SyncOutcome:
    """Result of syncing one stored record"""
    kind: str                   # "share_of_voice" or "snapshot"
    record_id: str
    success: bool
    error: Optional[str] = None
    old_count: int = 0
    new_count: int = 0
    removed_keys: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SyncReport:
    """Per-record outcome list for one competitor change"""
    brand_id: UUID
    competitors: List[str]
    outcomes: List[SyncOutcome] = field(default_factory=list)
    recalculated: Optional[ShareOfVoiceRecord] = None

    @property
    def updated_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


def clean_competitor_list(competitors: Sequence[str]) -> List[str]:
    """Trimmed, unique as entered, order kept"""
    cleaned: List[str] = []
    for name in competitors:
        if not isinstance(name, str):
            raise ValidationFailure(f"Competitor names must be strings, got {type(name).__name__}")
        name = name.strip()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


def without_keys(values: Optional[dict], keys: Sequence[str]) -> dict:
    """Copy of a JSON map minus keys; JSON columns are reassigned, never mutated"""
    return {k: v for k, v in (values or {}).items() if k not in keys}


def apply_sov_to_snapshot(snapshot: AnalysisSnapshot, record: ShareOfVoiceRecord):
    """Copy a record's results onto a snapshot"""
    snapshot.share_of_voice = dict(record.share_of_voice or {})
    snapshot.mention_counts = dict(record.mention_counts or {})
    snapshot.total_mentions = record.total_mentions
    snapshot.brand_share = record.brand_share
    snapshot.ai_visibility_score = record.ai_visibility_score
    snapshot.competitors = list(record.competitors or [])


class SyncManager:
    """
    Best-effort propagation of competitor edits.

    Every SOV record and snapshot of the brand is updated in its own
    savepoint. A failing record is rolled back alone, reported in the
    outcome list, and the rest continue.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.mentions = MentionExtractor(db)
        self.calculator = ShareOfVoiceCalculator(db)

    async def _get_brand(self, brand_id: UUID) -> Brand:
        brand = await self.db.get(Brand, brand_id)
        if not brand:
            raise FatalPrerequisiteMissing(f"Brand {brand_id} not found")
        return brand

    @staticmethod
    def _apply(record, competitors: List[str], removed: Sequence[str], brand_name: Optional[str]) -> List[str]:
        """Rewrite one record's competitor list and drop removed keys"""
        if not isinstance(competitors, list):
            raise ValueError("Invalid competitors array after update")

        old = list(record.competitors or [])
        drop = [name for name in set(old) | set(removed) if name not in competitors and name != brand_name]

        dropped = sorted(k for k in (record.share_of_voice or {}) if k in drop)
        dropped += sorted(k for k in (record.mention_counts or {}) if k in drop and k not in dropped)

        record.competitors = list(competitors)
        if record.share_of_voice is not None:
            record.share_of_voice = without_keys(record.share_of_voice, drop)
        if record.mention_counts is not None:
            record.mention_counts = without_keys(record.mention_counts, drop)
        return dropped

    async def _sync_record(
        self,
        kind: str,
        record,
        competitors: List[str],
        removed: Sequence[str],
        brand_name: Optional[str],
    ) -> SyncOutcome:
        record_id = str(record.analysis_id if kind == "snapshot" else record.id)
        old_count = len(record.competitors or [])
        try:
            async with self.db.begin_nested():
                dropped = self._apply(record, competitors, removed, brand_name)
            return SyncOutcome(
                kind=kind,
                record_id=record_id,
                success=True,
                old_count=old_count,
                new_count=len(competitors),
                removed_keys=dropped,
            )
        except (SQLAlchemyError, ValueError, TypeError) as e:
            logger.error("Failed to sync %s %s: %s", kind, record_id, e)
            return SyncOutcome(
                kind=kind,
                record_id=record_id,
                success=False,
                error=str(e),
                old_count=old_count,
            )

    async def update_competitors(
        self,
        brand_id: UUID,
        competitors: Sequence[str],
        recalculate: bool = False,
    ) -> SyncReport:
        """
        Set a brand's competitors and propagate to its history.

        Raises:
            FatalPrerequisiteMissing: if the brand does not exist
        """
        brand = await self._get_brand(brand_id)
        new_list = clean_competitor_list(competitors)
        removed = [name for name in (brand.competitors or []) if name not in new_list]

        brand.competitors = list(new_list)
        await self.db.flush()

        report = SyncReport(brand_id=brand.id, competitors=list(new_list))

        records = await self.calculator.records_for_brand(brand.id)
        for record in records:
            report.outcomes.append(
                await self._sync_record("share_of_voice", record, new_list, removed, brand.brand_name)
            )

        result = await self.db.execute(
            select(AnalysisSnapshot).where(
                AnalysisSnapshot.brand_id == brand.id,
                AnalysisSnapshot.status.in_(SYNCABLE_SNAPSHOT_STATUSES),
            )
        )
        for snapshot in result.scalars().all():
            report.outcomes.append(
                await self._sync_record("snapshot", snapshot, new_list, removed, brand.brand_name)
            )

        logger.info(
            "Competitor sync for %s: %d updated, %d failed",
            brand.brand_name, report.updated_count, report.failed_count,
        )

        if recalculate:
            session_id = brand.analysis_session_id
            if session_id is None and records:
                session_id = records[-1].analysis_session_id
            if session_id is not None:
                report.recalculated = await self.recalculate_session(brand.id, session_id)

        return report

    async def add_competitor(self, brand_id: UUID, name: str, recalculate: bool = False) -> SyncReport:
        brand = await self._get_brand(brand_id)
        name = (name or "").strip()
        if not name:
            raise ValidationFailure("Competitor name cannot be empty")
        current = list(brand.competitors or [])
        if name not in current:
            current.append(name)
        return await self.update_competitors(brand_id, current, recalculate=recalculate)

    async def remove_competitor(self, brand_id: UUID, name: str, recalculate: bool = False) -> SyncReport:
        brand = await self._get_brand(brand_id)
        current = [c for c in (brand.competitors or []) if c != name]
        return await self.update_competitors(brand_id, current, recalculate=recalculate)

    async def _update_snapshot(self, session_id: str, record: ShareOfVoiceRecord) -> Optional[AnalysisSnapshot]:
        result = await self.db.execute(
            select(AnalysisSnapshot).where(AnalysisSnapshot.analysis_id == session_id)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot:
            apply_sov_to_snapshot(snapshot, record)
        return snapshot

    async def _session_responses(self, brand_id: UUID, session_id: str) -> List[AIResponse]:
        result = await self.db.execute(
            select(AIResponse)
            .where(AIResponse.brand_id == brand_id, AIResponse.analysis_session_id == session_id)
            .order_by(AIResponse.created_at)
        )
        return list(result.scalars().all())

    async def _session_prompt_count(self, brand_id: UUID, session_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Prompt).where(
                Prompt.brand_id == brand_id, Prompt.analysis_session_id == session_id,
            )
        )
        return result.scalar_one()

    async def recalculate_session(
        self,
        brand_id: UUID,
        session_id: str,
        preserve_old_records: bool = True,
    ) -> ShareOfVoiceRecord:
        """Re-extract every session response with the current list, then recompute"""
        brand = await self._get_brand(brand_id)
        competitors = list(brand.competitors or [])
        responses = await self._session_responses(brand.id, session_id)

        for response in responses:
            await self.mentions.extract_mentions(response, brand, competitors, session_id=session_id)

        record = await self.calculator.calculate_sov(
            brand,
            competitors,
            responses,
            session_id=session_id,
            preserve_old_records=preserve_old_records,
            total_prompts=await self._session_prompt_count(brand.id, session_id),
        )
        await self._update_snapshot(session_id, record)
        await self.db.flush()
        return record

    async def delete_prompt(self, session_id: str, prompt_id: UUID) -> ShareOfVoiceRecord:
        """
        Remove a prompt with its session responses and mentions, then
        recompute the session's share of voice.
        """
        prompt = await self.db.get(Prompt, prompt_id)
        if not prompt:
            raise FatalPrerequisiteMissing(f"Prompt {prompt_id} not found")
        brand = await self._get_brand(prompt.brand_id)

        result = await self.db.execute(
            select(AIResponse.id).where(
                AIResponse.prompt_id == prompt.id,
                AIResponse.analysis_session_id == session_id,
            )
        )
        response_ids = list(result.scalars().all())

        if response_ids:
            await self.db.execute(
                delete(Mention).where(
                    Mention.response_id.in_(response_ids),
                    Mention.analysis_session_id == session_id,
                )
            )
            await self.db.execute(delete(AIResponse).where(AIResponse.id.in_(response_ids)))
        await self.db.delete(prompt)
        await self.db.flush()

        competitors = list(brand.competitors or [])
        responses = await self._session_responses(brand.id, session_id)
        record = await self.calculator.calculate_sov(
            brand,
            competitors,
            responses,
            session_id=session_id,
            preserve_old_records=True,
            total_prompts=await self._session_prompt_count(brand.id, session_id),
        )

        snapshot = await self._update_snapshot(session_id, record)
        if snapshot:
            snapshot.prompts = [p for p in (snapshot.prompts or []) if p.get("id") != str(prompt_id)]
        await self.db.flush()

        logger.info(
            "Deleted prompt %s from session %s (%d responses removed)",
            prompt_id, session_id, len(response_ids),
        )
        return record
