from .base import FilingType


class InsiderFilingType(FilingType):
    """Forms 3, 4 and 5: insider ownership reports."""

    name = "insider"
    form_types = ("3", "3/A", "4", "4/A", "5", "5/A")
    feed_form_type = "4"
