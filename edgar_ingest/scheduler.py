"""Cron-driven job scheduler with per-job singleflight and progress tracking."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from .db import Database
from .errors import OperationCancelled
from .models import DownloadJob, JobStatus, JobType
from .state import utcnow

logger = logging.getLogger("edgar_ingest")

CRON_FIELDS = ["minute", "hour", "day_of_month", "month", "day_of_week"]
CRON_RANGES = [
    (0, 59),  # minute
    (0, 23),  # hour
    (1, 31),  # day of month
    (1, 12),  # month
    (0, 6),  # day of week (0 = Sunday)
]


def parse_cron_expression(cron_expr: str) -> Dict[str, Set[int]]:
    """Parse a 5-field cron expression into the set of allowed values per field.

    Supports numbers, ranges (1-5), lists (1,3,5), steps (*/15, 0-30/10)
    and wildcards. Raises ValueError on anything else.
    """
    fields = cron_expr.strip().split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expr!r}")

    result = {}
    for name, value, (min_val, max_val) in zip(CRON_FIELDS, fields, CRON_RANGES):
        result[name] = _parse_cron_field(value, min_val, max_val)
    return result


def _parse_cron_field(value: str, min_val: int, max_val: int) -> Set[int]:
    values = set()
    for part in value.split(","):
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step < 1:
                raise ValueError(f"Invalid cron step: {step_str}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            start_str, end_str = part.split("-", 1)
            start, end = int(start_str), int(end_str)
        else:
            start = int(part)
            end = max_val if step > 1 else start

        if start < min_val or end > max_val or start > end:
            raise ValueError(f"Cron field {value!r} out of range {min_val}-{max_val}")
        values.update(range(start, end + 1, step))
    return values


def should_run_now(cron_expr: str, now: Optional[datetime] = None) -> bool:
    if now is None:
        now = utcnow()
    parsed = parse_cron_expression(cron_expr)
    # Python weekday() is 0=Monday; cron is 0=Sunday
    cron_weekday = (now.weekday() + 1) % 7
    return (
        now.minute in parsed["minute"]
        and now.hour in parsed["hour"]
        and now.day in parsed["day_of_month"]
        and now.month in parsed["month"]
        and cron_weekday in parsed["day_of_week"]
    )


class JobProgress:
    """Processed/total counters that are always read and written together."""

    def __init__(self):
        self._lock = threading.Lock()
        self._processed = 0
        self._total = 0

    def start(self, total: int = 0):
        with self._lock:
            self._processed = 0
            self._total = total

    def add_total(self, n: int):
        with self._lock:
            self._total += n

    def advance(self, n: int = 1):
        with self._lock:
            self._processed += n

    def snapshot(self) -> Tuple[int, int]:
        with self._lock:
            return self._processed, self._total


@dataclass
class JobContext:
    job: DownloadJob
    progress: JobProgress
    cancel_event: threading.Event


@dataclass
class ScheduledJob:
    name: str
    job_type: JobType
    runner: Callable[[JobContext], int]
    enabled: bool = True
    schedule: str = ""
    description: str = ""
    progress: JobProgress = field(default_factory=JobProgress)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    last_job: Optional[DownloadJob] = None
    last_fired: Optional[datetime] = None
    _running: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_running(self) -> bool:
        return self._running.locked()


class JobScheduler:
    def __init__(self, db: Database, poll_interval: float = 30.0):
        self.db = db
        self.poll_interval = poll_interval
        self.jobs: Dict[str, ScheduledJob] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, job: ScheduledJob) -> ScheduledJob:
        if job.schedule:
            parse_cron_expression(job.schedule)
        self.jobs[job.name] = job
        return job

    def get(self, name: str) -> ScheduledJob:
        if name not in self.jobs:
            raise KeyError(f"Unknown job: {name}")
        return self.jobs[name]

    def trigger(self, name: str, wait: bool = True) -> Optional[DownloadJob]:
        """Start a run of `name`.

        Returns None when the job is disabled or a run is already in flight.
        With wait=False the run happens on a background thread and the
        returned DownloadJob is the live object it updates.
        """
        job = self.get(name)
        if not job.enabled:
            logger.info(f"[{name}] Job is disabled, not starting")
            return None
        if not job._running.acquire(blocking=False):
            logger.info(f"[{name}] Already running, skipping trigger")
            return None

        run = DownloadJob(
            id=uuid.uuid4().hex,
            type=job.job_type,
            description=job.description or name,
            status=JobStatus.PENDING,
            started_at=utcnow(),
        )
        job.last_job = run
        job.cancel_event.clear()
        job.progress.start()
        try:
            self.db.save_job(run)
        except Exception:
            job._running.release()
            raise

        if wait:
            self._execute(job, run)
        else:
            threading.Thread(target=self._execute, args=(job, run),
                             name=f"job-{name}", daemon=True).start()
        return run

    def _execute(self, job: ScheduledJob, run: DownloadJob):
        try:
            run.status = JobStatus.IN_PROGRESS
            self.db.save_job(run)
            logger.info(f"[{job.name}] Started run {run.id}")

            ctx = JobContext(job=run, progress=job.progress, cancel_event=job.cancel_event)
            result = job.runner(ctx)

            processed, total = job.progress.snapshot()
            run.files_downloaded = result if result is not None else processed
            run.total_files = max(total, run.files_downloaded)
            run.status = JobStatus.COMPLETED
            logger.info(f"[{job.name}] Completed: {run.files_downloaded} processed")
        except OperationCancelled:
            run.files_downloaded, run.total_files = job.progress.snapshot()
            run.status = JobStatus.CANCELLED
            run.error = "cancelled"
            logger.info(f"[{job.name}] Cancelled after {run.files_downloaded} items")
        except Exception as e:
            run.files_downloaded, run.total_files = job.progress.snapshot()
            run.status = JobStatus.FAILED
            run.error = str(e)
            logger.error(f"[{job.name}] Failed: {e}")
        finally:
            run.completed_at = utcnow()
            try:
                self.db.save_job(run)
            finally:
                job._running.release()

    def cancel(self, name: str) -> bool:
        job = self.get(name)
        if not job.is_running:
            return False
        job.cancel_event.set()
        logger.info(f"[{name}] Cancellation requested")
        return True

    def status(self, name: str) -> dict:
        job = self.get(name)
        processed, total = job.progress.snapshot()
        last = job.last_job
        return {
            "name": job.name,
            "type": job.job_type.value,
            "enabled": job.enabled,
            "schedule": job.schedule,
            "description": job.description,
            "running": job.is_running,
            "processed": processed,
            "total": total,
            "last_run": {
                "id": last.id,
                "status": last.status.value,
                "files_downloaded": last.files_downloaded,
                "total_files": last.total_files,
                "progress": last.progress,
                "started_at": last.started_at.isoformat() if last.started_at else None,
                "completed_at": last.completed_at.isoformat() if last.completed_at else None,
                "error": last.error,
            } if last else None,
        }

    def statuses(self) -> List[dict]:
        return [self.status(name) for name in self.jobs]

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every enabled job whose schedule matches `now`. Returns fired names."""
        now = (now or utcnow()).replace(second=0, microsecond=0)
        fired = []
        for job in self.jobs.values():
            if not job.enabled or not job.schedule:
                continue
            if job.last_fired == now or not should_run_now(job.schedule, now):
                continue
            job.last_fired = now
            if self.trigger(job.name, wait=False) is not None:
                fired.append(job.name)
        return fired

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Error checking schedules: {e}")
            self._stop.wait(self.poll_interval)

    def stop(self, cancel_running: bool = True):
        self._stop.set()
        if cancel_running:
            for job in self.jobs.values():
                if job.is_running:
                    job.cancel_event.set()
        if self._thread:
            self._thread.join(timeout=self.poll_interval + 1)
        logger.info("Scheduler stopped")
