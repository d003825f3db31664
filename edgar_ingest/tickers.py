"""Company ticker sync from the archive's company_tickers.json."""

import logging
import threading
from typing import List, Optional, Tuple

from .db import Database
from .downloader import Downloader
from .errors import ParseError
from .scheduler import JobProgress

logger = logging.getLogger("edgar_ingest")


def parse_company_tickers(payload) -> List[Tuple[str, str, str]]:
    """{"0": {"cik_str": 320193, "ticker": "AAPL", "title": "Apple Inc."}, ...} -> rows."""
    if not isinstance(payload, dict):
        raise ParseError("company tickers payload is not an object")
    rows = []
    for item in payload.values():
        try:
            cik = str(int(item["cik_str"]))
            ticker = str(item["ticker"]).strip().upper()
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Skipping malformed ticker entry: {item!r}")
            continue
        if ticker:
            rows.append((cik, ticker, str(item.get("title", "")).strip()))
    return rows


def sync_tickers(db: Database, downloader: Downloader, url: str,
                 cancel_event: Optional[threading.Event] = None,
                 progress: Optional[JobProgress] = None) -> int:
    logger.info(f"[ticker_sync] Fetching {url}")
    rows = parse_company_tickers(downloader.fetch_json(url, cancel_event))
    if progress is not None:
        progress.add_total(len(rows))
    db.upsert_tickers(rows)
    if progress is not None:
        progress.advance(len(rows))
    logger.info(f"[ticker_sync] Synced {len(rows)} tickers")
    return len(rows)
