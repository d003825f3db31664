"""Tests for job wiring through the assembled pipeline."""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import FakeArchive
from edgar_ingest.config import config_from_dict
from edgar_ingest.models import JobStatus, ProcessingRecord
from edgar_ingest.pipeline import build_pipeline
from edgar_ingest.state import utcnow


@pytest.fixture
def pipeline(tmp_path):
    config = config_from_dict({
        "data_dir": str(tmp_path),
        "pipeline": {"item_delay": 0, "batch_delay": 0, "retry_delay": 0, "lookback_days": 2},
        "filing_types": {name: {"enabled": name == "insider"}
                         for name in ("insider", "form8k", "form13f", "form13dg", "form6k", "form20f")},
        "jobs": {"auto_backfill": {"enabled": False}},
    })
    p = build_pipeline(config, transport=FakeArchive().transport)
    yield p
    p.close()


class TestJobs:
    def test_only_enabled_filing_types_are_wired(self, pipeline):
        assert list(pipeline.orchestrators) == ["insider"]

    def test_default_schedules_apply(self, pipeline):
        job = pipeline.scheduler.jobs["filing_sync"]
        assert job.schedule == "0 18 * * 1-5"
        assert pipeline.scheduler.jobs["auto_backfill"].enabled is False

    def test_filing_sync_downloads_lookback_then_retries(self, pipeline):
        orchestrator = pipeline.orchestrators["insider"]
        orchestrator.download_for_date = MagicMock(return_value=2)
        pipeline.engines["insider"].retry_failed_downloads = MagicMock(return_value=1)

        run = pipeline.scheduler.trigger("filing_sync")

        assert run.status == JobStatus.COMPLETED
        assert run.files_downloaded == 7
        days = [c.args[0] for c in orchestrator.download_for_date.call_args_list]
        today = utcnow().date()
        assert days == [today - timedelta(days=2), today - timedelta(days=1), today]

    def test_retention_cleanup(self, pipeline):
        pipeline.db.create_record(ProcessingRecord("0000000001-00-000001", "4", filing_date=date(2000, 1, 3)))
        pipeline.db.create_record(ProcessingRecord("0000000001-24-000001", "4",
                                                   filing_date=utcnow().date()))
        run = pipeline.scheduler.trigger("retention_cleanup")
        assert run.files_downloaded == 1
        assert pipeline.db.get_record("0000000001-00-000001") is None

    def test_disabled_job_not_started(self, pipeline):
        assert pipeline.scheduler.trigger("auto_backfill") is None
