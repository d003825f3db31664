from .base import FilingType


class Form8KFilingType(FilingType):
    name = "form8k"
    form_types = ("8-K", "8-K/A")
    feed_form_type = "8-K"
