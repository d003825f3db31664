"""Retry of failed downloads, gap detection, and backfill of missing dates."""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import List, Optional

from .config import PipelineConfig
from .db import Database
from .errors import OperationCancelled, ValidationError
from .models import BackfillResult, ProcessingRecord, ProcessingStatus as S
from .orchestrator import DownloadOrchestrator, pause
from .scheduler import JobProgress
from .state import IN_FLIGHT, utcnow

logger = logging.getLogger("edgar_ingest")


class RetryBackfillEngine:
    def __init__(self, orchestrator: DownloadOrchestrator, db: Database, config: PipelineConfig):
        self.orchestrator = orchestrator
        self.name = orchestrator.name
        self.form_types = orchestrator.filing_type.form_types
        self.db = db
        self.config = config

    # --- Retry ---

    def retry_delay(self, record: ProcessingRecord) -> timedelta:
        """Backoff before `record` may be retried: base * 2^(n-1), capped, longer when blocked."""
        attempts = max(1, record.retry_count)
        seconds = min(self.config.retry_backoff_base * 2 ** (attempts - 1),
                      self.config.retry_backoff_max)
        if record.error_kind == "blocked":
            seconds *= self.config.blocked_backoff_multiplier
        return timedelta(seconds=seconds)

    def is_due(self, record: ProcessingRecord, now: datetime) -> bool:
        if record.last_attempt_at is None:
            return True
        return now >= record.last_attempt_at + self.retry_delay(record)

    def retry_failed_downloads(self, max_retries: Optional[int] = None,
                               now: Optional[datetime] = None, ignore_backoff: bool = False,
                               cancel_event: Optional[threading.Event] = None,
                               progress: Optional[JobProgress] = None) -> int:
        """Re-run FAILED records with retry_count < max_retries. Returns how many completed."""
        max_retries = self.config.max_retries if max_retries is None else max_retries
        now = now or utcnow()

        failed = self.db.find_retryable(max_retries, self.form_types)
        due = [r for r in failed if ignore_backoff or self.is_due(r, now)]
        if len(due) < len(failed):
            logger.info(f"[{self.name}] {len(failed) - len(due)} failed records still backing off")
        if not due:
            return 0

        logger.info(f"[{self.name}] Retrying {len(due)} failed downloads (max retries {max_retries})")
        if progress is not None:
            progress.add_total(len(due))

        completed = 0
        for i, record in enumerate(due):
            if i:
                pause(self.config.retry_delay, cancel_event)
            elif cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Retry cancelled")

            reset = self.db.transition(record, S.PENDING)
            if reset is None:
                logger.debug(f"[{self.name}] {record.accession_number} changed state, not retrying")
            else:
                try:
                    if self.orchestrator.download_by_accession_number(
                            record.accession_number, cancel_event=cancel_event):
                        completed += 1
                except OperationCancelled:
                    raise
                except Exception as e:
                    logger.error(f"[{self.name}] Retry failed for {record.accession_number}: {e}")
            if progress is not None:
                progress.advance()

        logger.info(f"[{self.name}] Retry done: {completed}/{len(due)} completed")
        return completed

    def recover_interrupted(self, older_than: Optional[timedelta] = None,
                            now: Optional[datetime] = None) -> int:
        """Mark records stuck mid-flight (e.g. after a crash) as FAILED so retry picks them up."""
        older_than = older_than if older_than is not None else timedelta(
            minutes=self.config.stale_after_minutes)
        now = now or utcnow()
        stale = [r for r in self.db.find_by_status(IN_FLIGHT, updated_before=now - older_than)
                 if r.form_type in self.form_types]

        recovered = 0
        for record in stale:
            if record.status == S.DOWNLOADED:
                record = self.db.transition(record, S.PARSING, now=now)
                if record is None:
                    continue
            if self.db.transition(record, S.FAILED, error="interrupted before completion",
                                  error_kind="interrupted", now=now):
                recovered += 1
        if recovered:
            logger.warning(f"[{self.name}] Recovered {recovered} interrupted records")
        return recovered

    # --- Backfill ---

    @staticmethod
    def _validate_range(start: date, end: date, today: date):
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")
        if end > today:
            raise ValidationError(f"End date {end} is in the future")

    def find_missing_dates(self, start: date, end: date,
                           today: Optional[date] = None) -> List[date]:
        """Dates in [start, end] with no processing records for this filing type."""
        self._validate_range(start, end, today or utcnow().date())
        seen = self.db.filing_dates_between(start, end, self.form_types)

        missing = []
        day = start
        while day <= end:
            if day not in seen and not (self.config.skip_weekends and day.weekday() >= 5):
                missing.append(day)
            day += timedelta(days=1)
        return missing

    def backfill_date_range(self, start: date, end: date,
                            cancel_event: Optional[threading.Event] = None,
                            progress: Optional[JobProgress] = None,
                            today: Optional[date] = None) -> BackfillResult:
        today = today or utcnow().date()
        missing = self.find_missing_dates(start, end, today)
        result = BackfillResult(
            total_days=(end - start).days + 1,
            missing_days=len(missing),
            missing_dates=missing,
        )
        if not missing:
            logger.info(f"[{self.name}] No missing dates between {start} and {end}")
            return result

        logger.info(f"[{self.name}] Backfilling {len(missing)} missing dates between {start} and {end}")
        for i, day in enumerate(missing):
            if i:
                pause(self.config.batch_delay, cancel_event)
            try:
                result.total_filings += self.orchestrator.download_for_date(day, cancel_event, progress)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] Backfill of {day} failed: {e}")
            result.backfilled_days += 1

        logger.info(
            f"[{self.name}] Backfill done: {result.total_days} days, {result.missing_days} missing, "
            f"{result.backfilled_days} backfilled, {result.total_filings} filings"
        )
        return result

    def backfill_recent_days(self, days: int, cancel_event: Optional[threading.Event] = None,
                             progress: Optional[JobProgress] = None,
                             today: Optional[date] = None) -> BackfillResult:
        if days < 0:
            raise ValidationError(f"days must not be negative, got {days}")
        today = today or utcnow().date()
        return self.backfill_date_range(today - timedelta(days=days), today,
                                        cancel_event, progress, today)

    def auto_backfill(self, cancel_event: Optional[threading.Event] = None,
                      progress: Optional[JobProgress] = None,
                      today: Optional[date] = None) -> BackfillResult:
        if not self.config.auto_backfill:
            logger.debug(f"[{self.name}] Auto-backfill is disabled")
            return BackfillResult()
        logger.info(f"[{self.name}] Starting auto-backfill (max {self.config.max_backfill_days} days)")
        return self.backfill_recent_days(self.config.max_backfill_days, cancel_event, progress, today)
