"""Shared fixtures: temporary database, fake archive over httpx.MockTransport."""

from collections import Counter
from datetime import date

import httpx
import pytest

from edgar_ingest.config import DownloadConfig, PipelineConfig
from edgar_ingest.db import Database
from edgar_ingest.downloader import Downloader
from edgar_ingest.filing_types import ALL_FILING_TYPES
from edgar_ingest.master_index import MasterIndexCrawler
from edgar_ingest.orchestrator import DownloadOrchestrator
from edgar_ingest.rate_limiter import RateLimiter

BASE = "https://archive.test/Archives/"

INDEX_HEADER = """Description:           Daily Index of EDGAR Dissemination Feed by Company Name
Last Data Received:    {day}
Comments:              webmaster@sec.gov

CIK|Company Name|Form Type|Date Filed|File Name
--------------------------------------------------------------------------------
"""

BLOCK_PAGE = (
    "<html><body><h1>Your Request Originates from an Undeclared Automated Tool</h1>"
    "<p>For security purposes, and to ensure that the public service remains available "
    "to users, this government computer system employs programs to monitor network traffic"
    "</p></body></html>"
)


def index_text(day: date, rows) -> str:
    """rows: (cik, name, form, accession) tuples."""
    lines = [
        f"{cik}|{name}|{form}|{day:%Y%m%d}|edgar/data/{cik}/{acc}.txt"
        for cik, name, form, acc in rows
    ]
    return INDEX_HEADER.format(day=day.strftime("%B %d, %Y")) + "\n".join(lines) + "\n"


def filing_text(accession: str, form: str = "4", cik: str = "0000320193",
                name: str = "APPLE INC", filed: str = "20240102") -> str:
    return (
        f"<SEC-DOCUMENT>{accession}.txt : {filed}\n"
        f"<SEC-HEADER>{accession}.hdr.sgml : {filed}\n"
        f"ACCESSION NUMBER:\t\t{accession}\n"
        f"CONFORMED SUBMISSION TYPE:\t{form}\n"
        f"PUBLIC DOCUMENT COUNT:\t\t1\n"
        f"FILED AS OF DATE:\t\t{filed}\n"
        f"\n"
        f"ISSUER:\n"
        f"\n"
        f"\tCOMPANY DATA:\t\n"
        f"\t\tCOMPANY CONFORMED NAME:\t\t\t{name}\n"
        f"\t\tCENTRAL INDEX KEY:\t\t\t{cik}\n"
        f"</SEC-HEADER>\n"
        f"<DOCUMENT>\n<TYPE>{form}\n<TEXT>body</TEXT>\n</DOCUMENT>\n"
        f"</SEC-DOCUMENT>\n"
    )


def filing_url(cik: str, accession: str) -> str:
    return f"{BASE}edgar/data/{cik}/{accession}.txt"


def daily_url(day: date) -> str:
    return f"{BASE}edgar/daily-index/master.{day:%Y%m%d}.idx"


def daily_fallback_url(day: date) -> str:
    return f"{BASE}edgar/daily-index/{day.year}/QTR{(day.month - 1) // 3 + 1}/master.{day:%Y%m%d}.idx"


class FakeArchive:
    """URL -> (status, body) routes; unknown URLs answer 404. Counts every request."""

    def __init__(self):
        self.routes = {}
        self.requests = Counter()
        self.user_agents = []

    def add(self, url: str, body, status: int = 200):
        self.routes[url] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url] += 1
        self.user_agents.append(request.headers.get("user-agent"))
        status, body = self.routes.get(url, (404, "Not Found"))
        if isinstance(body, Exception):
            raise body
        content = body.encode() if isinstance(body, str) else body
        return httpx.Response(status, content=content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, url: str) -> int:
        return self.requests[url]

    @property
    def total(self) -> int:
        return sum(self.requests.values())


@pytest.fixture
def archive():
    return FakeArchive()


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    yield database
    database.close()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(item_delay=0, batch_delay=0, retry_delay=0, max_retries=3)


@pytest.fixture
def downloader(archive):
    dl = Downloader(DownloadConfig(max_retries=1, archives_base_url=BASE),
                    RateLimiter(1000), transport=archive.transport)
    yield dl
    dl.close()


@pytest.fixture
def crawler(downloader):
    return MasterIndexCrawler(downloader, BASE)


@pytest.fixture
def orchestrator(db, downloader, crawler, pipeline_config):
    filing_type = ALL_FILING_TYPES["insider"](BASE)
    return DownloadOrchestrator(filing_type, db, downloader, crawler, None, pipeline_config)
