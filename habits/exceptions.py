class PushForwardError(Exception):
    """Base class for failures raised by the habits services."""

    status_code = 500
    code = "ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(PushForwardError):
    """Malformed input; nothing was applied."""

    status_code = 400
    code = "VALIDATION"


class NotFoundError(PushForwardError):
    """The row does not exist or is not owned by the caller."""

    status_code = 404
    code = "NOT_FOUND"


class StaleReversal(PushForwardError):
    """An un-complete arrived for a day that can no longer be reversed."""

    status_code = 409
    code = "STALE_REVERSAL"


class EntryFinalized(ValidationError):
    """The daily entry for this date is locked."""

    status_code = 409
    code = "ENTRY_FINALIZED"


class UpstreamUnavailable(PushForwardError):
    """A dependency (LLM or persistence) failed; the caller may retry."""

    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"


class InvalidDateKey(ValidationError):
    """A date parameter is not a real YYYY-MM-DD calendar day."""
