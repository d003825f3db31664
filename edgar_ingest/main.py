"""CLI entry point."""

import argparse
import sys
import time
from datetime import date

from .config import load_config
from .errors import IngestError
from .filing_types import ALL_FILING_TYPES
from .jobs import JOB_RUNNERS
from .logger import setup_logger
from .models import JobStatus, ProcessingStatus
from .pipeline import build_pipeline
from .state import utcnow


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def show_stats(pipeline):
    """Print per-filing-type record counts."""
    columns = [s for s in ProcessingStatus]
    print("\n" + "=" * 100)
    print("  PROCESSING STATISTICS")
    print("=" * 100)
    print(f"{'Filing type':<14}" + "".join(f"{s.value:>12}" for s in columns) + f"{'TOTAL':>10}")
    print("-" * 100)
    for name, orchestrator in pipeline.orchestrators.items():
        stats = orchestrator.get_statistics()
        print(f"{name:<14}" + "".join(f"{stats.count(s):>12}" for s in columns) + f"{stats.total:>10}")
    print("-" * 100)
    print(f"Stored filings: {pipeline.db.count_filings():,}   Tickers: {pipeline.db.count_tickers():,}")
    print()


def show_backfill(result):
    print(f"Days in range:   {result.total_days}")
    print(f"Missing days:    {result.missing_days}")
    print(f"Backfilled days: {result.backfilled_days}")
    print(f"Filings:         {result.total_filings}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="EDGAR filing ingestion")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    parser.add_argument("--type", dest="filing_type", type=str, default="insider",
                        choices=list(ALL_FILING_TYPES.keys()),
                        help="Filing type to operate on")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("date", help="Download filings listed in one daily index")
    p.add_argument("day", type=_date)

    p = sub.add_parser("range", help="Download filings for an inclusive date range")
    p.add_argument("start", type=_date)
    p.add_argument("end", type=_date)

    p = sub.add_parser("latest", help="Download the newest filings from the live feed")
    p.add_argument("--count", type=int, default=100)

    p = sub.add_parser("accession", help="Download one filing by accession number")
    p.add_argument("accession_number")
    p.add_argument("--form-type", default=None)

    p = sub.add_parser("retry", help="Retry failed downloads")
    p.add_argument("--max-retries", type=int, default=None)
    p.add_argument("--now", action="store_true", help="Ignore retry backoff")

    p = sub.add_parser("missing", help="List dates with no recorded filings")
    p.add_argument("start", type=_date)
    p.add_argument("end", type=_date)

    p = sub.add_parser("backfill", help="Backfill missing dates in a range, or the last N days")
    p.add_argument("start", type=_date, nargs="?")
    p.add_argument("end", type=_date, nargs="?")
    p.add_argument("--days", type=int, default=None)

    sub.add_parser("auto-backfill", help="Backfill missing dates in the configured window")

    p = sub.add_parser("quarterly", help="Download filings from quarterly full indexes")
    p.add_argument("from_year", type=int)

    sub.add_parser("stats", help="Show processing statistics")
    sub.add_parser("cleanup", help="Delete records past the retention horizon")

    p = sub.add_parser("run-job", help="Run a scheduled job once")
    p.add_argument("job", choices=list(JOB_RUNNERS.keys()))

    sub.add_parser("schedule", help="Run the job scheduler until interrupted")
    return parser


def run_command(args, pipeline) -> int:
    name = args.filing_type
    cmd = args.command

    if cmd == "stats":
        show_stats(pipeline)
        return 0

    if cmd == "cleanup":
        job = pipeline.scheduler.trigger("retention_cleanup")
        print(f"Deleted {job.files_downloaded if job else 0} records")
        return 0

    if cmd == "run-job":
        job = pipeline.scheduler.trigger(args.job)
        if job is None:
            print(f"Job {args.job} is disabled or already running")
            return 1
        print(f"Job {args.job}: {job.status.value} ({job.files_downloaded} processed)"
              + (f" error: {job.error}" if job.error else ""))
        return 0 if job.status == JobStatus.COMPLETED else 1

    if cmd == "schedule":
        pipeline.scheduler.start()
        print("Scheduler running. Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            print("\nStopping scheduler...")
        return 0

    orchestrator = pipeline.orchestrator(name)
    engine = pipeline.engine(name)

    if cmd == "date":
        print(f"Completed {orchestrator.download_for_date(args.day)} filings")
    elif cmd == "range":
        print(f"Completed {orchestrator.download_for_date_range(args.start, args.end)} filings")
    elif cmd == "latest":
        print(f"Completed {orchestrator.download_latest_filings(args.count)} filings")
    elif cmd == "accession":
        ok = orchestrator.download_by_accession_number(args.accession_number, args.form_type)
        record = pipeline.db.get_record(args.accession_number)
        print(f"{args.accession_number}: {record.status.value if record else 'not found'}"
              + (f" ({record.error_message})" if record and record.error_message else ""))
        return 0 if ok else 1
    elif cmd == "retry":
        engine.recover_interrupted()
        count = engine.retry_failed_downloads(args.max_retries, ignore_backoff=args.now)
        print(f"Retried: {count} completed")
    elif cmd == "missing":
        missing = engine.find_missing_dates(args.start, args.end)
        for day in missing:
            print(day.isoformat())
        print(f"{len(missing)} missing dates")
    elif cmd == "backfill":
        if args.days is not None:
            show_backfill(engine.backfill_recent_days(args.days))
        elif args.start and args.end:
            show_backfill(engine.backfill_date_range(args.start, args.end))
        else:
            print("backfill needs START END or --days N", file=sys.stderr)
            return 2
    elif cmd == "auto-backfill":
        show_backfill(engine.auto_backfill())
    elif cmd == "quarterly":
        filing_type = orchestrator.filing_type
        candidates = [filing_type.candidate_from_entry(e)
                      for e in pipeline.crawler.crawl_quarterly(args.from_year)
                      if filing_type.matches(e.form_type)]
        print(f"Completed {orchestrator.process_candidates(candidates)} filings")
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    setup_logger(config.log_dir, config.log_level)
    pipeline = build_pipeline(config)

    print("EDGAR Filing Ingestion")
    print(f"Data directory: {config.data_dir}")
    print(f"Database: {pipeline.db.db_path}")
    print(f"Started: {utcnow():%Y-%m-%d %H:%M:%S} UTC")

    try:
        code = run_command(args, pipeline)
    except IngestError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    finally:
        pipeline.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
