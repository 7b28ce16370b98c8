"""
Tests for Celery task wrappers, called directly without a broker
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from sovtrack.services import AnalysisCancelled, FatalPrerequisiteMissing, SyncOutcome, SyncReport
from sovtrack.workers.tasks import analysis_tasks
from sovtrack.workers.tasks import run_brand_analysis, rerun_analysis_session, sync_brand_competitors

TASKS = "sovtrack.workers.tasks.analysis_tasks"


@pytest.fixture
def session():
    db = MagicMock()
    db.commit = AsyncMock()
    return db


@pytest.fixture
def patched(session):
    """Route the tasks to a mock session and record engine disposal"""
    @asynccontextmanager
    async def fake_context():
        yield session

    close_db = AsyncMock()
    with patch(f"{TASKS}.get_db_context", fake_context), \
            patch(f"{TASKS}.close_db", close_db), \
            patch(f"{TASKS}.get_adapter", return_value=MagicMock()), \
            patch(f"{TASKS}.AnalysisPipeline") as pipeline_cls:
        yield pipeline_cls.return_value, close_db


def result_dict(**overrides):
    data = {
        "analysis_id": "analysis_1_abcdef12",
        "status": "completed",
        "current_stage": "sov_calculated",
        "domain": "acme-widgets.com",
        "brand_name": "Acme-widgets",
        "categories": ["Industrial Widgets"],
        "competitors": ["Widget World"],
        "prompt_count": 2,
        "response_count": 2,
        "failed_responses": 0,
        "share_of_voice": None,
        "analysis_time_ms": 120,
    }
    data.update(overrides)
    return data


def test_run_async():
    async def answer():
        return 42

    assert analysis_tasks.run_async(answer()) == 42


class TestRunBrandAnalysis:

    def test_success_returns_summary(self, patched):
        pipeline, close_db = patched
        result = MagicMock()
        result.as_dict.return_value = result_dict()
        pipeline.run = AsyncMock(return_value=result)

        summary = run_brand_analysis("https://www.acme-widgets.com", "user-1", isolated=True)

        assert summary["analysis_id"] == "analysis_1_abcdef12"
        assert summary["share_of_voice"] is None
        args, kwargs = pipeline.run.call_args
        assert args == ("acme-widgets.com", "user-1")
        assert kwargs["isolated"] is True
        assert kwargs["cancel_token"] is None
        close_db.assert_awaited_once()

    def test_timeout_builds_token(self, patched):
        pipeline, _ = patched
        result = MagicMock()
        result.as_dict.return_value = result_dict()
        pipeline.run = AsyncMock(return_value=result)

        run_brand_analysis("acme-widgets.com", "user-1", timeout=600)

        assert pipeline.run.call_args.kwargs["cancel_token"] is not None

    def test_pipeline_error_commits_and_reports(self, patched, session):
        pipeline, close_db = patched
        pipeline.run = AsyncMock(side_effect=AnalysisCancelled("deadline exceeded"))

        outcome = run_brand_analysis("acme-widgets.com", "user-1")

        assert outcome == {"error": "deadline exceeded", "domain": "acme-widgets.com"}
        session.commit.assert_awaited_once()
        close_db.assert_awaited_once()

    def test_invalid_request(self, patched):
        pipeline, _ = patched
        with pytest.raises(ValidationError):
            run_brand_analysis("localhost", "user-1")
        pipeline.run.assert_not_called()

    def test_unexpected_error_propagates(self, patched):
        pipeline, close_db = patched
        pipeline.run = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            run_brand_analysis("acme-widgets.com", "user-1")
        close_db.assert_awaited_once()


class TestRerunAnalysisSession:

    def test_missing_session(self, patched, session):
        pipeline, _ = patched
        pipeline.rerun_session = AsyncMock(side_effect=FatalPrerequisiteMissing("Analysis s1 not found"))

        outcome = rerun_analysis_session("s1")

        assert outcome == {"error": "Analysis s1 not found", "analysis_id": "s1"}

    def test_success(self, patched):
        pipeline, _ = patched
        result = MagicMock()
        result.as_dict.return_value = result_dict(analysis_id="s1")
        pipeline.rerun_session = AsyncMock(return_value=result)

        assert rerun_analysis_session("s1")["analysis_id"] == "s1"


class TestSyncBrandCompetitors:

    def test_outcomes_reported(self, patched):
        brand_id = uuid4()
        report = SyncReport(
            brand_id=brand_id,
            competitors=["A", "C"],
            outcomes=[
                SyncOutcome(kind="share_of_voice", record_id="r1", success=True, old_count=2, new_count=2, removed_keys=["B"]),
                SyncOutcome(kind="snapshot", record_id="s1", success=False, error="corrupt record"),
            ],
        )
        manager = MagicMock()
        manager.update_competitors = AsyncMock(return_value=report)

        with patch(f"{TASKS}.SyncManager", return_value=manager):
            outcome = sync_brand_competitors(str(brand_id), ["A", "C"], recalculate=True)

        assert outcome["brand_id"] == str(brand_id)
        assert outcome["updated"] == 1
        assert outcome["failed"] == 1
        assert outcome["outcomes"][0]["removed_keys"] == ["B"]
        assert outcome["outcomes"][1]["error"] == "corrupt record"
        assert manager.update_competitors.call_args.kwargs["recalculate"] is True

    def test_missing_brand(self, patched):
        brand_id = str(uuid4())
        manager = MagicMock()
        manager.update_competitors = AsyncMock(side_effect=FatalPrerequisiteMissing("Brand not found"))

        with patch(f"{TASKS}.SyncManager", return_value=manager):
            outcome = sync_brand_competitors(brand_id, ["A"])

        assert outcome == {"error": "Brand not found", "brand_id": brand_id}

    def test_database_error_retried(self, patched):
        manager = MagicMock()
        manager.update_competitors = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("locked")))

        # Called directly, retry re-raises the original error
        with patch(f"{TASKS}.SyncManager", return_value=manager):
            with pytest.raises(OperationalError):
                sync_brand_competitors(str(uuid4()), ["A"])
