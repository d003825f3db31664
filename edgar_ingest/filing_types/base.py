"""Filing-type descriptor shared by the orchestrator and the retry engine."""

from typing import Optional, Tuple

from ..errors import ValidationError
from ..models import ACCESSION_PATTERN, FilingCandidate, MasterIndexEntry
from ..parsers import Parser, SubmissionHeaderParser


class FilingType:
    """Which forms a pipeline instance owns and how to fetch and parse them.

    Subclasses set `name`, `form_types` (exact index form strings, amendments
    included) and `feed_form_type` (the `type=` value for the latest feed).
    """

    name: str = ""
    form_types: Tuple[str, ...] = ()
    feed_form_type: str = ""

    def __init__(self, archives_base_url: str = "https://www.sec.gov/Archives/",
                 parser: Optional[Parser] = None):
        self.base_url = archives_base_url if archives_base_url.endswith("/") else archives_base_url + "/"
        self.parser: Parser = parser or SubmissionHeaderParser()

    def matches(self, form_type: str) -> bool:
        return form_type.strip().upper() in self.form_types

    def document_url(self, entry: MasterIndexEntry) -> str:
        return self.base_url + entry.document_link.lstrip("/")

    def accession_url(self, accession_number: str, entity_id: str = "") -> str:
        m = ACCESSION_PATTERN.match(accession_number)
        if not m:
            raise ValidationError(f"Invalid accession number format: {accession_number!r}")
        cik = int(entity_id) if entity_id and entity_id.isdigit() else int(m.group(1))
        nodash = accession_number.replace("-", "")
        return f"{self.base_url}edgar/data/{cik}/{nodash}/{accession_number}.txt"

    def candidate_from_entry(self, entry: MasterIndexEntry) -> FilingCandidate:
        return FilingCandidate(
            accession_number=entry.accession_number,
            form_type=entry.form_type,
            source_url=self.document_url(entry),
            filing_date=entry.date_filed,
            entity_id=entry.entity_id,
            entity_name=entry.entity_name,
        )

    def parse(self, content: bytes, accession_number: str) -> dict:
        return self.parser(content, accession_number)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"
