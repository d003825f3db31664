from .base import FilingType


class Form13DGFilingType(FilingType):
    """Beneficial ownership reports. The index uses both the "SC" and "SCHEDULE" spellings."""

    name = "form13dg"
    form_types = (
        "SC 13D", "SC 13D/A", "SC 13G", "SC 13G/A",
        "SCHEDULE 13D", "SCHEDULE 13D/A", "SCHEDULE 13G", "SCHEDULE 13G/A",
    )
    feed_form_type = "SC 13"
