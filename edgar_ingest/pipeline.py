"""Wires config, storage, HTTP, discovery, and per-filing-type orchestrators together."""

import logging
import os
from typing import Dict, Optional

import httpx

from .backfill import RetryBackfillEngine
from .config import AppConfig
from .current_feed import CurrentFeed
from .db import Database
from .downloader import Downloader
from .errors import ValidationError
from .filing_types import ALL_FILING_TYPES
from .jobs import register_jobs
from .master_index import MasterIndexCrawler
from .orchestrator import DownloadOrchestrator
from .rate_limiter import RateLimiter
from .scheduler import JobScheduler

logger = logging.getLogger("edgar_ingest")


class Pipeline:
    def __init__(self, config: AppConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        os.makedirs(config.data_dir, exist_ok=True)
        db_path = config.db_path
        if not os.path.isabs(db_path) and db_path != ":memory:":
            db_path = os.path.join(config.data_dir, db_path)
        self.db = Database(db_path)

        dl = config.download
        self.rate_limiter = RateLimiter(dl.rate_limit_requests, dl.rate_limit_period)
        self.downloader = Downloader(dl, self.rate_limiter, transport=transport)
        self.crawler = MasterIndexCrawler(self.downloader, dl.archives_base_url)
        self.feed = CurrentFeed(self.downloader, dl.current_feed_url,
                                page_size=config.pipeline.batch_size)

        self.orchestrators: Dict[str, DownloadOrchestrator] = {}
        self.engines: Dict[str, RetryBackfillEngine] = {}
        for name, cls in ALL_FILING_TYPES.items():
            if not config.filing_type_enabled(name):
                logger.info(f"[{name}] Filing type disabled")
                continue
            filing_type = cls(dl.archives_base_url)
            orchestrator = DownloadOrchestrator(filing_type, self.db, self.downloader,
                                                self.crawler, self.feed, config.pipeline)
            self.orchestrators[name] = orchestrator
            self.engines[name] = RetryBackfillEngine(orchestrator, self.db, config.pipeline)

        self.scheduler = JobScheduler(self.db)
        register_jobs(self)

    def orchestrator(self, name: str) -> DownloadOrchestrator:
        if name not in self.orchestrators:
            available = ", ".join(self.orchestrators) or "none"
            raise ValidationError(f"Unknown or disabled filing type {name!r} (available: {available})")
        return self.orchestrators[name]

    def engine(self, name: str) -> RetryBackfillEngine:
        self.orchestrator(name)
        return self.engines[name]

    def statistics(self) -> Dict[str, dict]:
        return {name: o.get_statistics().as_dict() for name, o in self.orchestrators.items()}

    def log_statistics(self):
        for name, stats in self.statistics().items():
            logger.info(
                f"[{name}] Stats: {stats['total']} records, {stats['completed']} completed, "
                f"{stats['failed']} failed, {stats['pending']} pending, {stats['skipped']} skipped"
            )

    def close(self):
        self.scheduler.stop()
        self.downloader.close()
        self.db.close()


def build_pipeline(config: AppConfig, transport: Optional[httpx.BaseTransport] = None) -> Pipeline:
    return Pipeline(config, transport=transport)
