"""Processing record state machine.

Every status change goes through apply_transition(), which rejects edges
that are not in TRANSITIONS and stamps the timestamps/counters that belong
to the target state. Persistence (with a compare-and-set on the previous
status) lives in Database.transition().
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from .errors import IllegalTransition
from .models import ProcessingRecord, ProcessingStatus as S

TRANSITIONS = {
    S.PENDING: frozenset({S.DOWNLOADING, S.SKIPPED}),
    # DOWNLOADING -> PENDING releases a claim when the run is cancelled mid-fetch
    S.DOWNLOADING: frozenset({S.DOWNLOADED, S.FAILED, S.PENDING}),
    S.DOWNLOADED: frozenset({S.PARSING}),
    S.PARSING: frozenset({S.COMPLETED, S.FAILED}),
    S.FAILED: frozenset({S.PENDING}),
    S.COMPLETED: frozenset(),
    S.SKIPPED: frozenset(),
}

TERMINAL = frozenset({S.COMPLETED, S.SKIPPED})
IN_FLIGHT = frozenset({S.DOWNLOADING, S.DOWNLOADED, S.PARSING})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: S, target: S) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: S, target: S):
    if not can_transition(current, target):
        raise IllegalTransition(f"Illegal transition {current.value} -> {target.value}")


def is_terminal(record: ProcessingRecord, max_retries: int) -> bool:
    if record.status in TERMINAL:
        return True
    return record.status == S.FAILED and record.retry_count >= max_retries


def apply_transition(record: ProcessingRecord, target: S, error: Optional[str] = None,
                     error_kind: Optional[str] = None,
                     now: Optional[datetime] = None) -> ProcessingRecord:
    """Return a copy of `record` moved to `target`."""
    check_transition(record.status, target)
    now = now or utcnow()
    changes = {"status": target, "updated_at": now}

    if target == S.DOWNLOADING:
        changes.update(started_at=now, last_attempt_at=now)
    elif target == S.COMPLETED:
        changes.update(processed_at=now, error_message=None, error_kind=None)
        if record.started_at is not None:
            elapsed = now - record.started_at
            changes["processing_duration_ms"] = max(0, int(elapsed.total_seconds() * 1000))
    elif target == S.FAILED:
        changes.update(
            retry_count=record.retry_count + 1,
            error_message=error or "unknown error",
            error_kind=error_kind or "network",
            last_attempt_at=now,
        )
    elif target == S.SKIPPED:
        changes.update(error_message=error, error_kind=error_kind)

    return replace(record, **changes)
