"""Exception classes raised by the registries, the event store and the ingestion pipeline.

Authorization denial is deliberately absent: it is a normal outcome of
ingestion (see ``pipeline.IngestionResult``), not an error.
"""

from typing import Optional


class TrackerServerError(Exception):
    """Base class for all application errors.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, details={self.details!r})"


class ValidationError(TrackerServerError):
    """A payload field is missing or malformed."""

    status_code = 400


class ConflictError(TrackerServerError):
    """An explicit create hit an existing unique key."""

    status_code = 409


class ConflictRetryExhausted(TrackerServerError):
    """A resolve-or-create still conflicted after its single retry."""


class TransactionFailure(TrackerServerError):
    """The event write failed and was rolled back."""


class IngestionError(TrackerServerError):
    """Storing an inbound event failed."""
