from .base import FilingType


class Form20FFilingType(FilingType):
    name = "form20f"
    form_types = ("20-F", "20-F/A")
    feed_form_type = "20-F"
