"""Scheduled job definitions."""

import logging
from datetime import timedelta

from .models import JobType
from .scheduler import JobContext, ScheduledJob
from .state import utcnow
from .tickers import sync_tickers

logger = logging.getLogger("edgar_ingest")

DEFAULT_SCHEDULES = {
    "filing_sync": ("0 18 * * 1-5", "Download recent daily indexes, then retry failures"),
    "retry_failed": ("30 */2 * * *", "Retry failed downloads whose backoff has elapsed"),
    "auto_backfill": ("0 3 * * *", "Backfill dates with no recorded filings"),
    "ticker_sync": ("0 6 * * 1", "Refresh company tickers"),
    "retention_cleanup": ("0 4 * * 0", "Delete processing records past the retention horizon"),
}


def filing_sync(pipeline, ctx: JobContext) -> int:
    today = utcnow().date()
    start = today - timedelta(days=pipeline.config.pipeline.lookback_days)
    total = 0
    for name, orchestrator in pipeline.orchestrators.items():
        total += orchestrator.download_for_date_range(start, today, ctx.cancel_event, ctx.progress)
        total += pipeline.engines[name].retry_failed_downloads(cancel_event=ctx.cancel_event,
                                                              progress=ctx.progress)
    pipeline.log_statistics()
    return total


def retry_failed(pipeline, ctx: JobContext) -> int:
    total = 0
    for engine in pipeline.engines.values():
        engine.recover_interrupted()
        total += engine.retry_failed_downloads(cancel_event=ctx.cancel_event, progress=ctx.progress)
    return total


def auto_backfill(pipeline, ctx: JobContext) -> int:
    total = 0
    for engine in pipeline.engines.values():
        total += engine.auto_backfill(ctx.cancel_event, ctx.progress).total_filings
    return total


def ticker_sync(pipeline, ctx: JobContext) -> int:
    return sync_tickers(pipeline.db, pipeline.downloader, pipeline.config.download.company_tickers_url,
                        ctx.cancel_event, ctx.progress)


def retention_cleanup(pipeline, ctx: JobContext) -> int:
    cutoff = utcnow().date() - timedelta(days=pipeline.config.pipeline.retention_days)
    deleted = pipeline.db.delete_records_before(cutoff)
    logger.info(f"[retention_cleanup] Deleted {deleted} records filed before {cutoff}")
    return deleted


JOB_RUNNERS = {
    "filing_sync": (JobType.FILING_SYNC, filing_sync),
    "retry_failed": (JobType.RETRY_FAILED, retry_failed),
    "auto_backfill": (JobType.AUTO_BACKFILL, auto_backfill),
    "ticker_sync": (JobType.TICKER_SYNC, ticker_sync),
    "retention_cleanup": (JobType.RETENTION_CLEANUP, retention_cleanup),
}


def register_jobs(pipeline):
    for name, (job_type, runner) in JOB_RUNNERS.items():
        default_schedule, default_description = DEFAULT_SCHEDULES[name]
        cfg = pipeline.config.job_config(name)
        pipeline.scheduler.register(ScheduledJob(
            name=name,
            job_type=job_type,
            runner=lambda ctx, runner=runner: runner(pipeline, ctx),
            enabled=cfg.enabled,
            schedule=cfg.schedule or default_schedule,
            description=cfg.description or default_description,
        ))
