from .base import FilingType


class Form6KFilingType(FilingType):
    name = "form6k"
    form_types = ("6-K", "6-K/A")
    feed_form_type = "6-K"
