"""Daily and quarterly master index crawler.

A master index file is a free-text header, a line of dashes, then one
pipe-delimited line per filing:

    CIK|Company Name|Form Type|Date Filed|Filename
    --------------------------------------------------------------------------------
    320193|Apple Inc.|4|20230103|edgar/data/320193/0000320193-23-000001.txt
"""

import gzip
import logging
import threading
from datetime import date, datetime
from typing import Generator, Iterator, List, Optional, Tuple

from .downloader import Downloader
from .errors import Blocked, FetchError, NotAvailable, ParseError, ValidationError
from .models import MasterIndexEntry
from .state import utcnow

logger = logging.getLogger("edgar_ingest")

DATE_FORMATS = ("%Y%m%d", "%Y-%m-%d")


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


def _parse_date(value: str) -> date:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date {value!r}")


def _is_delimiter(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= 3 and set(stripped) == {"-"}


def parse_master_index(text: str) -> Generator[MasterIndexEntry, None, None]:
    """Yield an entry per data line. Raises ParseError if there is no header delimiter."""
    lines = text.splitlines()
    start = None
    for i, line in enumerate(lines):
        if _is_delimiter(line):
            start = i + 1
            break
    if start is None:
        raise ParseError("Master index has no header delimiter line")

    return _parse_lines(lines, start)


def _parse_lines(lines: List[str], start: int) -> Generator[MasterIndexEntry, None, None]:
    for lineno, line in enumerate(lines[start:], start=start + 1):
        if not line.strip():
            continue
        parts = line.split("|")
        if len(parts) != 5:
            logger.warning(f"Skipping malformed index line {lineno}: {line[:120]!r}")
            continue
        cik, name, form_type, date_filed, link = (p.strip() for p in parts)
        try:
            filed = _parse_date(date_filed)
        except ValueError:
            logger.warning(f"Skipping index line {lineno} with bad date {date_filed!r}")
            continue
        if not cik or not form_type or not link:
            logger.warning(f"Skipping index line {lineno} with empty fields")
            continue
        yield MasterIndexEntry(
            entity_id=cik,
            entity_name=name,
            form_type=form_type,
            date_filed=filed,
            document_link=link,
        )


class MasterIndexCrawler:
    def __init__(self, downloader: Downloader,
                 archives_base_url: str = "https://www.sec.gov/Archives/"):
        self.downloader = downloader
        self.base_url = archives_base_url if archives_base_url.endswith("/") else archives_base_url + "/"

    def daily_index_urls(self, day: date) -> List[str]:
        stamp = day.strftime("%Y%m%d")
        return [
            f"{self.base_url}edgar/daily-index/master.{stamp}.idx",
            f"{self.base_url}edgar/daily-index/{day.year}/QTR{quarter_of(day)}/master.{stamp}.idx",
        ]

    def quarterly_index_url(self, year: int, quarter: int) -> str:
        return f"{self.base_url}edgar/full-index/{year}/QTR{quarter}/master.gz"

    def fetch_daily_index(self, day: date, cancel_event: Optional[threading.Event] = None,
                          today: Optional[date] = None) -> Iterator[MasterIndexEntry]:
        """Fetch and parse the daily index for `day`.

        The first candidate URL that returns a usable body wins. Raises
        ValidationError for future dates (before any request) and
        NotAvailable when no candidate has the file.
        """
        today = today or utcnow().date()
        if day > today:
            raise ValidationError(f"Cannot fetch index for future date {day}")

        for url in self.daily_index_urls(day):
            try:
                text = self.downloader.fetch_text(url, cancel_event)
            except Blocked as e:
                logger.warning(f"Index request blocked: {url} ({e})")
                continue
            except FetchError as e:
                logger.info(f"No daily index at {url}: {e}")
                continue
            logger.debug(f"Daily index for {day} found at {url}")
            return parse_master_index(text)

        raise NotAvailable(f"No daily index published for {day}")

    def fetch_quarterly_index(self, year: int, quarter: int,
                              cancel_event: Optional[threading.Event] = None,
                              today: Optional[date] = None) -> Iterator[MasterIndexEntry]:
        today = today or utcnow().date()
        if quarter not in (1, 2, 3, 4):
            raise ValidationError(f"Quarter must be 1-4, got {quarter}")
        if (year, quarter) > (today.year, quarter_of(today)):
            raise ValidationError(f"Cannot fetch index for future quarter {year} Q{quarter}")

        url = self.quarterly_index_url(year, quarter)
        try:
            raw = self.downloader.fetch(url, cancel_event)
        except Blocked:
            logger.warning(f"Quarterly index request blocked: {url}")
            raise
        except FetchError as e:
            raise NotAvailable(f"No quarterly index for {year} Q{quarter}: {e}") from e

        try:
            text = gzip.decompress(raw).decode("latin-1")
        except OSError as e:
            raise ParseError(f"Quarterly index {url} is not valid gzip: {e}") from e
        return parse_master_index(text)

    @staticmethod
    def quarters_since(from_year: int, today: Optional[date] = None) -> List[Tuple[int, int]]:
        today = today or utcnow().date()
        current = (today.year, quarter_of(today))
        return [
            (year, q)
            for year in range(from_year, today.year + 1)
            for q in (1, 2, 3, 4)
            if (year, q) <= current
        ]

    def crawl_quarterly(self, from_year: int, cancel_event: Optional[threading.Event] = None,
                        today: Optional[date] = None) -> Generator[MasterIndexEntry, None, None]:
        for year, quarter in self.quarters_since(from_year, today):
            try:
                entries = self.fetch_quarterly_index(year, quarter, cancel_event, today)
            except NotAvailable as e:
                logger.info(str(e))
                continue
            except (Blocked, ParseError) as e:
                logger.warning(f"Skipping quarterly index {year} Q{quarter}: {e}")
                continue
            yield from entries
