from .base import FilingType


class Form13FFilingType(FilingType):
    """Institutional holdings reports, including notice filings."""

    name = "form13f"
    form_types = ("13F-HR", "13F-HR/A", "13F-NT", "13F-NT/A")
    feed_form_type = "13F-HR"
