"""SQLite database for processing records, parsed filings, jobs, and tickers."""

import json
import sqlite3
import threading
from dataclasses import fields
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import (DownloadJob, JobStatus, JobType, ProcessingRecord,
                     ProcessingStatus)
from .state import apply_transition, utcnow

RECORD_COLUMNS = [f.name for f in fields(ProcessingRecord)]
JOB_COLUMNS = [f.name for f in fields(DownloadJob)]

_DATE_FIELDS = {"filing_date"}
_DATETIME_FIELDS = {"started_at", "last_attempt_at", "processed_at", "created_at",
                    "updated_at", "completed_at"}


def _to_db(name: str, value):
    if value is None:
        return None
    if isinstance(value, (ProcessingStatus, JobType, JobStatus)):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _from_db(name: str, value):
    if value is None:
        return None
    if name in _DATE_FIELDS:
        return date.fromisoformat(value)
    if name in _DATETIME_FIELDS:
        return datetime.fromisoformat(value)
    return value


def _in_clause(values: Sequence[str]) -> str:
    return ", ".join("?" for _ in values)


class Database:
    def __init__(self, db_path: str = "edgar_ingest.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path, timeout=30)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS processing_records (
                accession_number TEXT PRIMARY KEY,
                form_type TEXT NOT NULL,
                entity_id TEXT DEFAULT '',
                entity_name TEXT DEFAULT '',
                filing_date TEXT,
                status TEXT NOT NULL DEFAULT 'PENDING',
                source_url TEXT DEFAULT '',
                error_message TEXT,
                error_kind TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                started_at TEXT,
                last_attempt_at TEXT,
                processed_at TEXT,
                processing_duration_ms INTEGER,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_records_status ON processing_records(status);
            CREATE INDEX IF NOT EXISTS idx_records_filing_date ON processing_records(filing_date);
            CREATE INDEX IF NOT EXISTS idx_records_form_type ON processing_records(form_type);

            CREATE TABLE IF NOT EXISTS filings (
                accession_number TEXT PRIMARY KEY,
                form_type TEXT NOT NULL,
                entity_id TEXT DEFAULT '',
                filing_date TEXT,
                data TEXT DEFAULT '{}',
                stored_at TEXT
            );

            CREATE TABLE IF NOT EXISTS download_jobs (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                description TEXT DEFAULT '',
                status TEXT NOT NULL,
                files_downloaded INTEGER DEFAULT 0,
                total_files INTEGER DEFAULT 0,
                started_at TEXT,
                completed_at TEXT,
                error TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_jobs_type ON download_jobs(type, started_at);

            CREATE TABLE IF NOT EXISTS tickers (
                cik TEXT NOT NULL,
                ticker TEXT NOT NULL,
                name TEXT DEFAULT '',
                updated_at TEXT,
                PRIMARY KEY (cik, ticker)
            );
        """)
        conn.commit()

    # --- Processing records ---

    def _row_to_record(self, row: sqlite3.Row) -> ProcessingRecord:
        values = {name: _from_db(name, row[name]) for name in RECORD_COLUMNS}
        values["status"] = ProcessingStatus(values["status"])
        return ProcessingRecord(**values)

    def create_record(self, record: ProcessingRecord) -> bool:
        """Insert a new record. Returns False if the accession number already exists."""
        now = utcnow()
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now
        cur = self._conn.execute(
            f"INSERT OR IGNORE INTO processing_records ({', '.join(RECORD_COLUMNS)}) "
            f"VALUES ({_in_clause(RECORD_COLUMNS)})",
            [_to_db(name, getattr(record, name)) for name in RECORD_COLUMNS],
        )
        self._conn.commit()
        return cur.rowcount == 1

    def get_record(self, accession_number: str) -> Optional[ProcessingRecord]:
        row = self._conn.execute(
            "SELECT * FROM processing_records WHERE accession_number = ?", (accession_number,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def record_exists(self, accession_number: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM processing_records WHERE accession_number = ?", (accession_number,)
        ).fetchone()
        return row is not None

    def transition(self, record: ProcessingRecord, target: ProcessingStatus,
                   error: str = None, error_kind: str = None,
                   now: datetime = None) -> Optional[ProcessingRecord]:
        """Move a record to `target` if it is still in the status it was read in.

        Returns the updated record, or None if another worker changed the
        status first. Raises IllegalTransition for edges the state machine forbids.
        """
        updated = apply_transition(record, target, error=error, error_kind=error_kind, now=now)
        columns = [c for c in RECORD_COLUMNS if c not in ("accession_number", "created_at")]
        cur = self._conn.execute(
            f"UPDATE processing_records SET {', '.join(f'{c} = ?' for c in columns)} "
            "WHERE accession_number = ? AND status = ?",
            [_to_db(c, getattr(updated, c)) for c in columns]
            + [record.accession_number, record.status.value],
        )
        self._conn.commit()
        return updated if cur.rowcount == 1 else None

    def find_retryable(self, max_retries: int,
                       form_types: Optional[Iterable[str]] = None) -> List[ProcessingRecord]:
        sql = "SELECT * FROM processing_records WHERE status = ? AND retry_count < ?"
        params: list = [ProcessingStatus.FAILED.value, max_retries]
        if form_types is not None:
            form_types = list(form_types)
            sql += f" AND form_type IN ({_in_clause(form_types)})"
            params += form_types
        sql += " ORDER BY last_attempt_at, accession_number"
        return [self._row_to_record(r) for r in self._conn.execute(sql, params).fetchall()]

    def find_by_status(self, statuses: Iterable[ProcessingStatus],
                       updated_before: datetime = None) -> List[ProcessingRecord]:
        statuses = [s.value for s in statuses]
        sql = f"SELECT * FROM processing_records WHERE status IN ({_in_clause(statuses)})"
        params: list = list(statuses)
        if updated_before is not None:
            sql += " AND updated_at < ?"
            params.append(updated_before.isoformat())
        return [self._row_to_record(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_by_status(self, form_types: Optional[Iterable[str]] = None) -> Dict[str, int]:
        sql = "SELECT status, COUNT(*) AS cnt FROM processing_records"
        params: list = []
        if form_types is not None:
            form_types = list(form_types)
            sql += f" WHERE form_type IN ({_in_clause(form_types)})"
            params = form_types
        sql += " GROUP BY status"
        return {row["status"]: row["cnt"] for row in self._conn.execute(sql, params).fetchall()}

    def count_by_filing_date(self, filing_date: date,
                             form_types: Optional[Iterable[str]] = None) -> int:
        sql = "SELECT COUNT(*) AS cnt FROM processing_records WHERE filing_date = ?"
        params: list = [filing_date.isoformat()]
        if form_types is not None:
            form_types = list(form_types)
            sql += f" AND form_type IN ({_in_clause(form_types)})"
            params += form_types
        return self._conn.execute(sql, params).fetchone()["cnt"]

    def filing_dates_between(self, start: date, end: date,
                             form_types: Optional[Iterable[str]] = None) -> Set[date]:
        """Distinct filing dates in [start, end] that have at least one record."""
        sql = ("SELECT DISTINCT filing_date FROM processing_records "
               "WHERE filing_date BETWEEN ? AND ?")
        params: list = [start.isoformat(), end.isoformat()]
        if form_types is not None:
            form_types = list(form_types)
            sql += f" AND form_type IN ({_in_clause(form_types)})"
            params += form_types
        return {date.fromisoformat(r["filing_date"])
                for r in self._conn.execute(sql, params).fetchall()}

    def delete_records_before(self, cutoff: date) -> int:
        """Delete records filed before `cutoff`; undated records age out by creation date."""
        cur = self._conn.execute(
            "DELETE FROM processing_records "
            "WHERE COALESCE(filing_date, substr(created_at, 1, 10)) < ?",
            (cutoff.isoformat(),),
        )
        self._conn.commit()
        return cur.rowcount

    # --- Parsed filings ---

    def save_filing(self, record: ProcessingRecord, data: dict):
        self._conn.execute(
            """INSERT INTO filings (accession_number, form_type, entity_id, filing_date, data, stored_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(accession_number) DO UPDATE SET
                   form_type = excluded.form_type, entity_id = excluded.entity_id,
                   filing_date = excluded.filing_date, data = excluded.data,
                   stored_at = excluded.stored_at""",
            (record.accession_number, record.form_type, record.entity_id,
             _to_db("filing_date", record.filing_date), json.dumps(data, default=str),
             utcnow().isoformat()),
        )
        self._conn.commit()

    def get_filing(self, accession_number: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT data FROM filings WHERE accession_number = ?", (accession_number,)
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def count_filings(self) -> int:
        return self._conn.execute("SELECT COUNT(*) AS cnt FROM filings").fetchone()["cnt"]

    # --- Download jobs ---

    def save_job(self, job: DownloadJob):
        self._conn.execute(
            f"INSERT OR REPLACE INTO download_jobs ({', '.join(JOB_COLUMNS)}) "
            f"VALUES ({_in_clause(JOB_COLUMNS)})",
            [_to_db(name, getattr(job, name)) for name in JOB_COLUMNS],
        )
        self._conn.commit()

    def _row_to_job(self, row: sqlite3.Row) -> DownloadJob:
        values = {name: _from_db(name, row[name]) for name in JOB_COLUMNS}
        values["type"] = JobType(values["type"])
        values["status"] = JobStatus(values["status"])
        return DownloadJob(**values)

    def get_job(self, job_id: str) -> Optional[DownloadJob]:
        row = self._conn.execute("SELECT * FROM download_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(self, job_type: JobType = None, limit: int = 20) -> List[DownloadJob]:
        if job_type:
            rows = self._conn.execute(
                "SELECT * FROM download_jobs WHERE type = ? ORDER BY started_at DESC LIMIT ?",
                (job_type.value, limit),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM download_jobs ORDER BY started_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    # --- Tickers ---

    def upsert_tickers(self, rows: Iterable[tuple]) -> int:
        now = utcnow().isoformat()
        cur = self._conn.executemany(
            """INSERT INTO tickers (cik, ticker, name, updated_at) VALUES (?, ?, ?, ?)
               ON CONFLICT(cik, ticker) DO UPDATE SET name = excluded.name,
                   updated_at = excluded.updated_at""",
            [(cik, ticker, name, now) for cik, ticker, name in rows],
        )
        self._conn.commit()
        return cur.rowcount

    def count_tickers(self) -> int:
        return self._conn.execute("SELECT COUNT(*) AS cnt FROM tickers").fetchone()["cnt"]
