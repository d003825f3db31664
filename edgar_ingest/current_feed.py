"""Latest-filings discovery from the archive's Atom "getcurrent" feed."""

import logging
import re
import threading
import xml.etree.ElementTree as ET
from datetime import date, datetime
from typing import Generator, List, Optional

from .downloader import Downloader
from .errors import ParseError
from .models import ACCESSION_PATTERN, FilingCandidate

logger = logging.getLogger("edgar_ingest")

ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}

_ACCESSION_RE = re.compile(r"(\d{10}-\d{2}-\d{6})")
_FILED_RE = re.compile(r"Filed:\s*(?:<[^>]+>\s*)*(\d{4}-\d{2}-\d{2})")
_CIK_FROM_PATH_RE = re.compile(r"/edgar/data/(\d+)/")
_TITLE_RE = re.compile(r"^\s*(?P<form>.+?)\s+-\s+(?P<name>.+?)\s+\((?P<cik>\d+)\)")


def _text(entry: ET.Element, tag: str) -> str:
    node = entry.find(f"atom:{tag}", ATOM_NS)
    return (node.text or "").strip() if node is not None else ""


def _filing_date(entry: ET.Element) -> Optional[date]:
    m = _FILED_RE.search(_text(entry, "summary"))
    if m:
        return date.fromisoformat(m.group(1))
    updated = _text(entry, "updated")
    if updated:
        try:
            return datetime.fromisoformat(updated).date()
        except ValueError:
            return None
    return None


def parse_current_feed(xml_text: str) -> List[FilingCandidate]:
    """Turn a getcurrent Atom page into filing candidates.

    Entries without a recognizable accession number are skipped.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseError(f"Invalid Atom feed: {e}") from e

    candidates = []
    for entry in root.findall("atom:entry", ATOM_NS):
        link_node = entry.find("atom:link", ATOM_NS)
        link = link_node.get("href", "") if link_node is not None else ""

        m = _ACCESSION_RE.search(_text(entry, "id")) or _ACCESSION_RE.search(link)
        if not m or not ACCESSION_PATTERN.match(m.group(1)):
            logger.debug(f"Skipping feed entry without accession number: {link}")
            continue
        accession = m.group(1)

        category = entry.find("atom:category", ATOM_NS)
        title = _TITLE_RE.match(_text(entry, "title"))
        form_type = category.get("term", "") if category is not None else ""
        if not form_type and title:
            form_type = title.group("form")

        cik_match = _CIK_FROM_PATH_RE.search(link)
        entity_id = cik_match.group(1) if cik_match else (title.group("cik").lstrip("0") if title else "")

        source_url = link
        if link.endswith("-index.htm"):
            source_url = link[: -len("-index.htm")] + ".txt"

        candidates.append(FilingCandidate(
            accession_number=accession,
            form_type=form_type.strip(),
            source_url=source_url,
            filing_date=_filing_date(entry),
            entity_id=entity_id,
            entity_name=title.group("name") if title else "",
        ))
    return candidates


class CurrentFeed:
    def __init__(self, downloader: Downloader, feed_url: str, page_size: int = 100):
        self.downloader = downloader
        self.feed_url = feed_url
        self.page_size = page_size

    def page_url(self, form_type: str, start: int, count: int) -> str:
        return self.feed_url.format(type=form_type, start=start, count=count)

    def latest(self, form_type: str, max_count: int,
               cancel_event: Optional[threading.Event] = None) -> Generator[FilingCandidate, None, None]:
        """Yield up to `max_count` of the newest filings of `form_type`, paging as needed."""
        start = 0
        yielded = 0
        seen = set()
        while yielded < max_count:
            count = min(self.page_size, max_count - yielded)
            xml_text = self.downloader.fetch_text(self.page_url(form_type, start, count), cancel_event)
            page = parse_current_feed(xml_text)
            if not page:
                break
            for candidate in page:
                if candidate.accession_number in seen:
                    continue
                seen.add(candidate.accession_number)
                yield candidate
                yielded += 1
                if yielded >= max_count:
                    return
            if len(page) < count:
                break
            start += count
