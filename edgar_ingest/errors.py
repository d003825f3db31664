"""Exception taxonomy for the ingestion pipeline."""


class IngestError(Exception):
    """Base class for every pipeline error."""

    kind = "error"


class ValidationError(IngestError):
    """Bad input rejected before any network call. Never retried."""

    kind = "validation"


class NotAvailable(IngestError):
    """The archive has not published anything for the requested period."""

    kind = "not_available"


class FetchError(IngestError):
    """A request to the archive did not yield usable content."""

    kind = "network"

    def __init__(self, message: str, url: str = "", status_code: int = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NetworkError(FetchError):
    """Transport failure, non-2xx status, or an empty body."""


class FetchTimeout(NetworkError):
    kind = "timeout"


class Blocked(FetchError):
    """The archive answered with its automated-access block page."""

    kind = "blocked"


class ParseError(IngestError):
    """Malformed index content or filing document."""

    kind = "parse"


class OperationCancelled(IngestError):
    """The caller's cancel event was set while work was in progress."""

    kind = "cancelled"


class IllegalTransition(IngestError):
    """A processing record was asked to move along an edge the state machine forbids."""

    kind = "illegal_transition"
