"""Data models for the ingestion pipeline."""

import posixpath
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

ACCESSION_PATTERN = re.compile(r"^(\d{10})-(\d{2})-(\d{6})$")


class ProcessingStatus(str, Enum):
    PENDING = "PENDING"
    DOWNLOADING = "DOWNLOADING"
    DOWNLOADED = "DOWNLOADED"
    PARSING = "PARSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class JobType(str, Enum):
    FILING_SYNC = "FILING_SYNC"
    RETRY_FAILED = "RETRY_FAILED"
    AUTO_BACKFILL = "AUTO_BACKFILL"
    TICKER_SYNC = "TICKER_SYNC"
    RETENTION_CLEANUP = "RETENTION_CLEANUP"
    MANUAL = "MANUAL"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


def accession_from_path(path: str) -> str:
    """'edgar/data/320193/0000320193-23-000077.txt' -> '0000320193-23-000077'."""
    name = posixpath.basename(path.strip())
    stem, _ = posixpath.splitext(name)
    return stem


@dataclass(frozen=True)
class MasterIndexEntry:
    entity_id: str
    entity_name: str
    form_type: str
    date_filed: date
    document_link: str

    @property
    def accession_number(self) -> str:
        return accession_from_path(self.document_link)


@dataclass
class FilingCandidate:
    accession_number: str
    form_type: str
    source_url: str
    filing_date: Optional[date] = None
    entity_id: str = ""
    entity_name: str = ""

    def missing_fields(self) -> List[str]:
        """Required fields that are empty. filing_date may be unknown for direct fetches."""
        return [name for name in ("accession_number", "form_type", "source_url")
                if not getattr(self, name)]


@dataclass
class ProcessingRecord:
    accession_number: str
    form_type: str
    entity_id: str = ""
    entity_name: str = ""
    filing_date: Optional[date] = None
    status: ProcessingStatus = ProcessingStatus.PENDING
    source_url: str = ""
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int = 0
    started_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processing_duration_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_candidate(cls, candidate: FilingCandidate) -> "ProcessingRecord":
        return cls(
            accession_number=candidate.accession_number,
            form_type=candidate.form_type,
            entity_id=candidate.entity_id,
            entity_name=candidate.entity_name,
            filing_date=candidate.filing_date,
            source_url=candidate.source_url,
        )


@dataclass
class DownloadJob:
    id: str
    type: JobType
    description: str = ""
    status: JobStatus = JobStatus.PENDING
    files_downloaded: int = 0
    total_files: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def progress(self) -> int:
        if self.status == JobStatus.COMPLETED:
            return 100
        if not self.total_files:
            return 0
        return min(100, self.files_downloaded * 100 // self.total_files)


@dataclass
class DownloadStatistics:
    total: int = 0
    counts: Dict[str, int] = field(default_factory=dict)

    def count(self, status: ProcessingStatus) -> int:
        return self.counts.get(status.value, 0)

    @property
    def completed(self) -> int:
        return self.count(ProcessingStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return self.count(ProcessingStatus.FAILED)

    @property
    def pending(self) -> int:
        return self.count(ProcessingStatus.PENDING)

    @property
    def skipped(self) -> int:
        return self.count(ProcessingStatus.SKIPPED)

    @property
    def in_flight(self) -> int:
        return sum(self.count(s) for s in (ProcessingStatus.DOWNLOADING,
                                           ProcessingStatus.DOWNLOADED,
                                           ProcessingStatus.PARSING))

    def as_dict(self) -> dict:
        out = {status.value.lower(): self.count(status) for status in ProcessingStatus}
        out["total"] = self.total
        return out


@dataclass
class BackfillResult:
    total_days: int = 0
    missing_days: int = 0
    backfilled_days: int = 0
    total_filings: int = 0
    missing_dates: List[date] = field(default_factory=list)
