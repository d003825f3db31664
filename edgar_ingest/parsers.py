"""Parser boundary and the default SGML submission-header parser.

A parser is any callable `parser(content: bytes, accession_number: str) -> dict`
that raises ParseError on malformed input. Form-specific content parsers plug
in through FilingType.parser; the default only reads the <SEC-HEADER> envelope
every full-text submission carries.
"""

import re
from typing import Callable, Dict

from .errors import ParseError

Parser = Callable[[bytes, str], dict]

HEADER_FIELDS = {
    "ACCESSION NUMBER": "accession_number",
    "CONFORMED SUBMISSION TYPE": "form_type",
    "PUBLIC DOCUMENT COUNT": "document_count",
    "CONFORMED PERIOD OF REPORT": "period_of_report",
    "FILED AS OF DATE": "filed_as_of_date",
    "DATE AS OF CHANGE": "date_as_of_change",
    "COMPANY CONFORMED NAME": "company_name",
    "CENTRAL INDEX KEY": "cik",
}

_HEADER_RE = re.compile(r"<SEC-HEADER>(.*?)</SEC-HEADER>", re.DOTALL | re.IGNORECASE)
_FIELD_RE = re.compile(r"^[ \t]*([A-Z][A-Z \-]+?):[ \t]*(.+?)[ \t]*$", re.MULTILINE)


class SubmissionHeaderParser:
    def __call__(self, content: bytes, accession_number: str) -> dict:
        text = content.decode("latin-1")
        m = _HEADER_RE.search(text)
        if not m:
            raise ParseError(f"{accession_number}: no <SEC-HEADER> block")

        header: Dict[str, object] = {}
        ciks = []
        names = []
        for key, value in _FIELD_RE.findall(m.group(1)):
            name = HEADER_FIELDS.get(key.strip())
            value = value.strip()
            if name == "cik":
                ciks.append(value)
            elif name == "company_name":
                names.append(value)
            elif name and name not in header:
                header[name] = value

        found = header.get("accession_number")
        if found != accession_number:
            raise ParseError(
                f"{accession_number}: header accession number is {found!r}"
            )
        if "form_type" not in header:
            raise ParseError(f"{accession_number}: header has no submission type")

        header["ciks"] = ciks
        header["company_names"] = names
        return header
