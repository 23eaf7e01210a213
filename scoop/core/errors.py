"""Error taxonomy for the curation engine."""

from typing import Optional


class CurationError(Exception):
    """Base class for curation engine errors."""


class ExternalSourceError(CurationError):
    """A feed or oracle call failed in a way that retrying will not fix."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientSourceError(ExternalSourceError):
    """A feed or oracle call failed in a way that may succeed on retry."""


class MalformedResponse(CurationError):
    """The oracle returned content that could not be parsed."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ValidationError(CurationError):
    """The oracle returned well-formed content missing required fields."""

    def __init__(self, message: str, missing: tuple = ()):
        super().__init__(message)
        self.missing = tuple(missing)


class CapacityExceeded(CurationError):
    """A section would hold more selections than its capacity."""


class ScheduleNotDue(CurationError):
    """A scheduled job was invoked outside its time window. Not a failure."""
