"""Tests for retry selection, backoff, gap detection and backfill."""

import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from conftest import filing_text, filing_url
from edgar_ingest.backfill import RetryBackfillEngine
from edgar_ingest.errors import OperationCancelled, ValidationError
from edgar_ingest.models import ProcessingRecord, ProcessingStatus as S

START = date(2024, 3, 1)
NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


def seed(db, acc, day=START, form="4", status=S.COMPLETED, retry_count=0, **kwargs):
    db.create_record(ProcessingRecord(accession_number=acc, form_type=form, filing_date=day,
                                      status=status, retry_count=retry_count,
                                      source_url=filing_url("320193", acc), **kwargs))


@pytest.fixture
def engine(orchestrator, db, pipeline_config):
    return RetryBackfillEngine(orchestrator, db, pipeline_config)


class TestFindMissingDates:
    def test_reports_exactly_the_empty_dates(self, engine, db):
        days = [START + timedelta(days=i) for i in range(10)]
        for i, day in enumerate(days, start=1):
            if i not in (3, 7):
                seed(db, f"0000000001-24-{i:06d}", day=day)

        assert engine.find_missing_dates(days[0], days[-1], today=NOW.date()) == [days[2], days[6]]

    def test_other_forms_do_not_count(self, engine, db):
        seed(db, "0000000001-24-000001", form="8-K")
        assert engine.find_missing_dates(START, START, today=NOW.date()) == [START]

    def test_skip_weekends(self, engine):
        engine.config.skip_weekends = True
        # 2024-03-02 and 03-03 are a weekend
        assert engine.find_missing_dates(date(2024, 3, 1), date(2024, 3, 4), today=NOW.date()) == [
            date(2024, 3, 1), date(2024, 3, 4)]

    def test_invalid_ranges(self, engine):
        with pytest.raises(ValidationError):
            engine.find_missing_dates(START, START - timedelta(days=1), today=NOW.date())
        with pytest.raises(ValidationError):
            engine.find_missing_dates(START, NOW.date() + timedelta(days=1), today=NOW.date())

    def test_no_network_access(self, engine, archive):
        engine.find_missing_dates(START, START + timedelta(days=5), today=NOW.date())
        assert archive.total == 0


class TestBackfill:
    def test_backfills_only_missing_dates(self, engine, db):
        days = [START + timedelta(days=i) for i in range(10)]
        for i, day in enumerate(days, start=1):
            if i not in (3, 7):
                seed(db, f"0000000001-24-{i:06d}", day=day)
        engine.orchestrator.download_for_date = MagicMock(return_value=4)

        result = engine.backfill_date_range(days[0], days[-1], today=NOW.date())

        assert result.total_days == 10
        assert result.missing_days == 2
        assert result.backfilled_days == 2
        assert result.total_filings == 8
        assert result.missing_dates == [days[2], days[6]]
        called = [c.args[0] for c in engine.orchestrator.download_for_date.call_args_list]
        assert called == [days[2], days[6]]

    def test_failing_day_still_counts_as_attempted(self, engine):
        engine.orchestrator.download_for_date = MagicMock(side_effect=[RuntimeError("boom"), 3])
        result = engine.backfill_date_range(START, START + timedelta(days=1), today=NOW.date())
        assert result.backfilled_days == 2
        assert result.total_filings == 3
        assert result.backfilled_days <= result.missing_days <= result.total_days

    def test_cancellation_propagates(self, engine):
        engine.orchestrator.download_for_date = MagicMock(side_effect=OperationCancelled("stop"))
        with pytest.raises(OperationCancelled):
            engine.backfill_date_range(START, START, today=NOW.date())

    def test_backfill_recent_days_window(self, engine):
        engine.orchestrator.download_for_date = MagicMock(return_value=0)
        result = engine.backfill_recent_days(3, today=date(2024, 3, 10))
        assert result.total_days == 4
        called = [c.args[0] for c in engine.orchestrator.download_for_date.call_args_list]
        assert called == [date(2024, 3, 7), date(2024, 3, 8), date(2024, 3, 9), date(2024, 3, 10)]

    def test_auto_backfill_disabled(self, engine):
        engine.config.auto_backfill = False
        engine.orchestrator.download_for_date = MagicMock()
        result = engine.auto_backfill(today=NOW.date())
        assert result.total_days == 0
        engine.orchestrator.download_for_date.assert_not_called()

    def test_auto_backfill_uses_configured_window(self, engine):
        engine.config.max_backfill_days = 5
        engine.orchestrator.download_for_date = MagicMock(return_value=1)
        result = engine.auto_backfill(today=NOW.date())
        assert result.total_days == 6
        assert result.total_filings == 6


class TestRetry:
    def test_retry_bound(self, engine, db):
        seed(db, "0000320193-24-000001", status=S.FAILED, retry_count=3)
        seed(db, "0000320193-24-000002", status=S.FAILED, retry_count=2)
        engine.orchestrator.download_by_accession_number = MagicMock(return_value=True)

        assert engine.retry_failed_downloads(3, ignore_backoff=True) == 1
        engine.orchestrator.download_by_accession_number.assert_called_once()
        assert engine.orchestrator.download_by_accession_number.call_args.args[0] == "0000320193-24-000002"

    def test_retry_completes_failed_filing(self, engine, db, archive):
        acc = "0000320193-24-000001"
        seed(db, acc, status=S.FAILED, retry_count=1, error_message="HTTP 503",
             last_attempt_at=NOW - timedelta(hours=2))
        archive.add(filing_url("320193", acc), filing_text(acc))

        assert engine.retry_failed_downloads(now=NOW) == 1

        record = db.get_record(acc)
        assert record.status == S.COMPLETED
        assert record.retry_count == 1
        assert record.error_message is None

    def test_retry_that_fails_again_increments_count(self, engine, db, archive):
        acc = "0000320193-24-000001"
        seed(db, acc, status=S.FAILED, retry_count=1)
        archive.add(filing_url("320193", acc), "busy", status=503)

        assert engine.retry_failed_downloads(ignore_backoff=True) == 0
        assert db.get_record(acc).retry_count == 2

    def test_backoff_not_elapsed_is_skipped(self, engine, db):
        seed(db, "0000320193-24-000001", status=S.FAILED, retry_count=1,
             last_attempt_at=NOW - timedelta(seconds=10))
        engine.orchestrator.download_by_accession_number = MagicMock()
        assert engine.retry_failed_downloads(now=NOW) == 0
        engine.orchestrator.download_by_accession_number.assert_not_called()

    def test_retry_delay_grows_and_is_capped(self, engine):
        cfg = engine.config
        cfg.retry_backoff_base, cfg.retry_backoff_max, cfg.blocked_backoff_multiplier = 60, 600, 4

        def delay(n, kind="network"):
            record = ProcessingRecord("0000320193-24-000001", "4", retry_count=n, error_kind=kind)
            return engine.retry_delay(record).total_seconds()

        assert [delay(n) for n in (1, 2, 3, 4, 5)] == [60, 120, 240, 480, 600]
        assert delay(1, "blocked") == 240

    def test_cancellation_stops_retry_loop(self, engine, db):
        seed(db, "0000320193-24-000001", status=S.FAILED, retry_count=0)
        event = threading.Event()
        event.set()
        with pytest.raises(OperationCancelled):
            engine.retry_failed_downloads(ignore_backoff=True, cancel_event=event)
        assert db.get_record("0000320193-24-000001").status == S.FAILED


class TestRecoverInterrupted:
    def test_stuck_records_become_failed(self, engine, db):
        seed(db, "0000320193-24-000001", status=S.DOWNLOADING)
        seed(db, "0000320193-24-000002", status=S.DOWNLOADED)
        seed(db, "0000320193-24-000003", status=S.PENDING)

        later = datetime.now(timezone.utc) + timedelta(hours=2)
        assert engine.recover_interrupted(older_than=timedelta(hours=1), now=later) == 2

        for acc in ("0000320193-24-000001", "0000320193-24-000002"):
            record = db.get_record(acc)
            assert record.status == S.FAILED
            assert record.error_kind == "interrupted"
            assert record.retry_count == 1
        assert db.get_record("0000320193-24-000003").status == S.PENDING

    def test_recent_records_left_alone(self, engine, db):
        seed(db, "0000320193-24-000001", status=S.DOWNLOADING)
        assert engine.recover_interrupted(older_than=timedelta(hours=1)) == 0
