"""Tests for latest-filings Atom feed discovery."""

from datetime import date

import pytest

from edgar_ingest.current_feed import CurrentFeed, parse_current_feed
from edgar_ingest.errors import ParseError

FEED_URL = "https://archive.test/cgi-bin/browse-edgar?action=getcurrent&type={type}&start={start}&count={count}&output=atom"


def entry(acc, form="4", cik="320193", name="Apple Inc."):
    nodash = acc.replace("-", "")
    return f"""
<entry>
<title>{form} - {name} ({int(cik):010d}) (Issuer)</title>
<link rel="alternate" type="text/html" href="https://archive.test/Archives/edgar/data/{cik}/{nodash}/{acc}-index.htm"/>
<summary type="html"> &lt;b&gt;Filed:&lt;/b&gt; 2024-01-02 &lt;b&gt;AccNo:&lt;/b&gt; {acc} &lt;b&gt;Size:&lt;/b&gt; 5 KB</summary>
<updated>2024-01-02T16:05:12-05:00</updated>
<category scheme="https://www.sec.gov/" label="form type" term="{form}"/>
<id>urn:tag:sec.gov,2008:accession-number={acc}</id>
</entry>"""


def feed(*entries):
    return ('<?xml version="1.0" encoding="ISO-8859-1" ?>\n'
            '<feed xmlns="http://www.w3.org/2005/Atom"><title>Latest Filings</title>'
            + "".join(entries) + "</feed>")


class TestParseCurrentFeed:
    def test_parses_entries(self):
        candidates = parse_current_feed(feed(entry("0000320193-24-000001")))
        assert len(candidates) == 1
        c = candidates[0]
        assert c.accession_number == "0000320193-24-000001"
        assert c.form_type == "4"
        assert c.entity_id == "320193"
        assert c.entity_name == "Apple Inc."
        assert c.filing_date == date(2024, 1, 2)
        assert c.source_url.endswith("/000032019324000001/0000320193-24-000001.txt")

    def test_skips_entries_without_accession(self):
        text = feed("<entry><title>junk</title><id>urn:x</id></entry>", entry("0000320193-24-000001"))
        assert len(parse_current_feed(text)) == 1

    def test_invalid_xml(self):
        with pytest.raises(ParseError):
            parse_current_feed("<feed><entry>")


class TestCurrentFeedPaging:
    def test_pages_until_max_count(self, downloader, archive):
        page1 = feed(*(entry(f"0000000001-24-{i:06d}") for i in range(2)))
        page2 = feed(*(entry(f"0000000001-24-{i:06d}") for i in range(2, 4)))
        archive.add(FEED_URL.format(type="4", start=0, count=2), page1)
        archive.add(FEED_URL.format(type="4", start=2, count=1), page2)

        current = CurrentFeed(downloader, FEED_URL, page_size=2)
        found = [c.accession_number for c in current.latest("4", 3)]
        assert found == ["0000000001-24-000000", "0000000001-24-000001", "0000000001-24-000002"]

    def test_stops_on_short_page(self, downloader, archive):
        archive.add(FEED_URL.format(type="4", start=0, count=10), feed(entry("0000000001-24-000001")))
        current = CurrentFeed(downloader, FEED_URL, page_size=10)
        assert len(list(current.latest("4", 50))) == 1
        assert archive.total == 1
