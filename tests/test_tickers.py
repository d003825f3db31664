"""Tests for company ticker sync."""

import json

import pytest

from edgar_ingest.errors import ParseError
from edgar_ingest.tickers import parse_company_tickers, sync_tickers

URL = "https://archive.test/files/company_tickers.json"

PAYLOAD = {
    "0": {"cik_str": 320193, "ticker": "AAPL", "title": "Apple Inc."},
    "1": {"cik_str": 789019, "ticker": "msft", "title": "MICROSOFT CORP"},
    "2": {"ticker": "BROKEN"},
}


class TestTickers:
    def test_parse(self):
        assert parse_company_tickers(PAYLOAD) == [
            ("320193", "AAPL", "Apple Inc."),
            ("789019", "MSFT", "MICROSOFT CORP"),
        ]

    def test_parse_rejects_non_object(self):
        with pytest.raises(ParseError):
            parse_company_tickers([1, 2])

    def test_sync(self, db, downloader, archive):
        archive.add(URL, json.dumps(PAYLOAD))
        assert sync_tickers(db, downloader, URL) == 2
        assert db.count_tickers() == 2
