"""Download orchestrator: discover, dedup, fetch, parse, persist."""

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime, timedelta
from typing import List, Optional

from .config import PipelineConfig
from .current_feed import CurrentFeed
from .db import Database
from .downloader import Downloader
from .errors import FetchError, NotAvailable, OperationCancelled, ParseError, ValidationError
from .filing_types import FilingType
from .master_index import MasterIndexCrawler
from .models import (ACCESSION_PATTERN, DownloadStatistics, FilingCandidate,
                     ProcessingRecord, ProcessingStatus as S)
from .scheduler import JobProgress
from .state import IN_FLIGHT, TERMINAL, utcnow

logger = logging.getLogger("edgar_ingest")

COMPLETED = "completed"
FAILED = "failed"
DUPLICATE = "duplicate"
SKIPPED = "skipped"


def pause(seconds: float, cancel_event: Optional[threading.Event] = None):
    """Sleep for `seconds`, raising OperationCancelled if the event is set first."""
    if cancel_event is None:
        if seconds > 0:
            time.sleep(seconds)
        return
    if cancel_event.wait(max(seconds, 0)):
        raise OperationCancelled("Batch cancelled")


class DownloadOrchestrator:
    def __init__(self, filing_type: FilingType, db: Database, downloader: Downloader,
                 crawler: MasterIndexCrawler, feed: Optional[CurrentFeed],
                 config: PipelineConfig):
        self.filing_type = filing_type
        self.name = filing_type.name
        self.db = db
        self.downloader = downloader
        self.crawler = crawler
        self.feed = feed
        self.config = config

    # --- Discovery entry points ---

    def download_for_date(self, day: date, cancel_event: Optional[threading.Event] = None,
                          progress: Optional[JobProgress] = None) -> int:
        """Download every filing of this type listed in the daily index for `day`.

        Returns the number of filings that reached COMPLETED. A day with no
        published index (weekend, holiday) or an unreadable one yields 0.
        """
        logger.info(f"[{self.name}] Downloading filings for {day}")
        try:
            entries = self.crawler.fetch_daily_index(day, cancel_event)
        except NotAvailable as e:
            logger.info(f"[{self.name}] {e}")
            return 0
        except (ParseError, FetchError) as e:
            logger.error(f"[{self.name}] Unusable daily index for {day}: {e}")
            return 0

        candidates = [self.filing_type.candidate_from_entry(entry)
                      for entry in entries if self.filing_type.matches(entry.form_type)]
        logger.info(f"[{self.name}] {len(candidates)} matching filings listed for {day}")
        return self.process_candidates(candidates, cancel_event, progress)

    def download_for_date_range(self, start: date, end: date,
                                cancel_event: Optional[threading.Event] = None,
                                progress: Optional[JobProgress] = None,
                                today: Optional[date] = None) -> int:
        today = today or utcnow().date()
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")
        if end > today:
            raise ValidationError(f"End date {end} is in the future")

        total = 0
        day = start
        while day <= end:
            total += self.download_for_date(day, cancel_event, progress)
            day += timedelta(days=1)
            if day <= end:
                pause(self.config.batch_delay, cancel_event)
        logger.info(f"[{self.name}] Range {start}..{end}: {total} filings completed")
        return total

    def download_latest_filings(self, max_count: int,
                                cancel_event: Optional[threading.Event] = None,
                                progress: Optional[JobProgress] = None) -> int:
        if max_count < 1:
            raise ValidationError(f"max_count must be positive, got {max_count}")
        if self.feed is None:
            raise ValidationError(f"[{self.name}] No latest-filings feed configured")

        candidates = [c for c in self.feed.latest(self.filing_type.feed_form_type, max_count,
                                                  cancel_event)
                      if self.filing_type.matches(c.form_type)]
        logger.info(f"[{self.name}] {len(candidates)} latest filings from feed")
        return self.process_candidates(candidates, cancel_event, progress)

    def download_by_accession_number(self, accession_number: str, form_type: Optional[str] = None,
                                     cancel_event: Optional[threading.Event] = None) -> bool:
        """Fetch one filing directly. Returns True if the filing ends up COMPLETED."""
        accession_number = accession_number.strip()
        if not ACCESSION_PATTERN.match(accession_number):
            raise ValidationError(f"Invalid accession number format: {accession_number!r}")

        record = self.db.get_record(accession_number)
        if record is not None:
            candidate = FilingCandidate(
                accession_number=accession_number,
                form_type=record.form_type,
                source_url=record.source_url or self.filing_type.accession_url(
                    accession_number, record.entity_id),
                filing_date=record.filing_date,
                entity_id=record.entity_id,
                entity_name=record.entity_name,
            )
        else:
            candidate = FilingCandidate(
                accession_number=accession_number,
                form_type=form_type or self.filing_type.form_types[0],
                source_url=self.filing_type.accession_url(accession_number),
            )

        outcome = self.process_candidate(candidate, cancel_event)
        if outcome == DUPLICATE:
            current = self.db.get_record(accession_number)
            return current is not None and current.status == S.COMPLETED
        return outcome == COMPLETED

    def get_statistics(self) -> DownloadStatistics:
        counts = self.db.count_by_status(self.filing_type.form_types)
        return DownloadStatistics(total=sum(counts.values()), counts=counts)

    # --- Batch processing ---

    def process_candidates(self, candidates: List[FilingCandidate],
                           cancel_event: Optional[threading.Event] = None,
                           progress: Optional[JobProgress] = None) -> int:
        if progress is not None:
            progress.add_total(len(candidates))
        outcomes: Counter = Counter()

        try:
            if self.config.max_workers > 1 and len(candidates) > 1:
                self._process_pooled(candidates, cancel_event, progress, outcomes)
            else:
                for i, candidate in enumerate(candidates):
                    if i:
                        pause(self.config.item_delay, cancel_event)
                    outcomes[self._process_safely(candidate, cancel_event)] += 1
                    if progress is not None:
                        progress.advance()
        finally:
            logger.info(
                f"[{self.name}] Done: {len(candidates)} discovered, {outcomes[COMPLETED]} completed, "
                f"{outcomes[DUPLICATE]} already processed, {outcomes[SKIPPED]} skipped, "
                f"{outcomes[FAILED]} failed"
            )
        return outcomes[COMPLETED]

    def _process_pooled(self, candidates, cancel_event, progress, outcomes: Counter):
        with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                thread_name_prefix=f"{self.name}-worker") as pool:
            futures = [pool.submit(self._process_safely, c, cancel_event) for c in candidates]
            try:
                for future in as_completed(futures):
                    outcomes[future.result()] += 1
                    if progress is not None:
                        progress.advance()
            except OperationCancelled:
                for future in futures:
                    future.cancel()
                raise

    def _process_safely(self, candidate: FilingCandidate,
                        cancel_event: Optional[threading.Event]) -> str:
        try:
            return self.process_candidate(candidate, cancel_event)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Unexpected error on {candidate.accession_number}: {e}")
            return FAILED

    def process_candidate(self, candidate: FilingCandidate,
                          cancel_event: Optional[threading.Event] = None) -> str:
        """Run one filing through dedup, claim, fetch, parse and persist.

        Returns one of COMPLETED, FAILED, DUPLICATE or SKIPPED. Raises
        OperationCancelled (after releasing the claim) if cancelled mid-fetch.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Batch cancelled")

        record = self._find_or_create(candidate)
        if record is None:
            return SKIPPED

        missing = candidate.missing_fields()
        if missing and record.status == S.PENDING:
            self.db.transition(record, S.SKIPPED, error=f"missing fields: {', '.join(missing)}",
                               error_kind="validation")
            logger.warning(f"[{self.name}] Skipped {candidate.accession_number}: missing {missing}")
            return SKIPPED

        record = self._claimable(record)
        if record is None:
            return DUPLICATE

        claimed = self.db.transition(record, S.DOWNLOADING)
        if claimed is None:
            return DUPLICATE

        url = claimed.source_url or candidate.source_url
        try:
            content = self.downloader.fetch(url, cancel_event)
        except OperationCancelled:
            self.db.transition(claimed, S.PENDING)
            raise
        except Exception as e:
            self._fail(claimed, e)
            return FAILED

        downloaded = self.db.transition(claimed, S.DOWNLOADED)
        parsing = downloaded and self.db.transition(downloaded, S.PARSING)
        if parsing is None:
            logger.warning(f"[{self.name}] {candidate.accession_number} changed state during download")
            return DUPLICATE
        try:
            data = self.filing_type.parse(content, candidate.accession_number)
            self._enrich(parsing, data)
            self.db.save_filing(parsing, data)
        except Exception as e:
            self._fail(parsing, e)
            return FAILED

        done = self.db.transition(parsing, S.COMPLETED)
        if done is None:
            logger.warning(f"[{self.name}] {candidate.accession_number} changed state during parsing")
            return DUPLICATE
        logger.debug(f"[{self.name}] Completed {candidate.accession_number} "
                     f"({done.processing_duration_ms}ms)")
        return COMPLETED

    def _find_or_create(self, candidate: FilingCandidate) -> Optional[ProcessingRecord]:
        if not candidate.accession_number:
            logger.warning(f"[{self.name}] Ignoring candidate without accession number: "
                           f"{candidate.source_url}")
            return None
        record = self.db.get_record(candidate.accession_number)
        if record is None:
            self.db.create_record(ProcessingRecord.from_candidate(candidate))
            # Another worker may have inserted first; the stored row wins
            record = self.db.get_record(candidate.accession_number)
        return record

    def _claimable(self, record: ProcessingRecord) -> Optional[ProcessingRecord]:
        """The record in PENDING state ready to claim, or None if it must not be fetched."""
        if record.status in TERMINAL or record.status in IN_FLIGHT:
            return None
        if record.status == S.FAILED:
            if record.retry_count >= self.config.max_retries:
                return None
            return self.db.transition(record, S.PENDING)
        return record

    def _fail(self, record: ProcessingRecord, error: Exception):
        kind = getattr(error, "kind", "error")
        self.db.transition(record, S.FAILED, error=str(error), error_kind=kind)
        if kind == "blocked":
            logger.warning(f"[{self.name}] Blocked on {record.accession_number}: {error}")
        else:
            logger.error(f"[{self.name}] Failed: {record.accession_number}: {error}")

    def _enrich(self, record: ProcessingRecord, data: dict):
        """Fill identity fields the discovery source did not know from the parsed header."""
        if data.get("form_type") and self.filing_type.matches(data["form_type"]):
            record.form_type = data["form_type"]
        if record.filing_date is None and data.get("filed_as_of_date"):
            try:
                record.filing_date = datetime.strptime(data["filed_as_of_date"], "%Y%m%d").date()
            except ValueError:
                pass
        ciks = data.get("ciks") or []
        if not record.entity_id and ciks:
            record.entity_id = ciks[0].lstrip("0")
        names = data.get("company_names") or []
        if not record.entity_name and names:
            record.entity_name = names[0]

