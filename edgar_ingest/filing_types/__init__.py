"""Filing-type registry."""

from .base import FilingType
from .form6k import Form6KFilingType
from .form8k import Form8KFilingType
from .form13dg import Form13DGFilingType
from .form13f import Form13FFilingType
from .form20f import Form20FFilingType
from .insider import InsiderFilingType

ALL_FILING_TYPES = {
    "insider": InsiderFilingType,
    "form8k": Form8KFilingType,
    "form13f": Form13FFilingType,
    "form13dg": Form13DGFilingType,
    "form6k": Form6KFilingType,
    "form20f": Form20FFilingType,
}

__all__ = ["ALL_FILING_TYPES", "FilingType"]
