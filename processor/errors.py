"""Exceptions raised while synchronizing event records."""


class SyncError(Exception):
    """Base class for record synchronization errors."""


class ValidationError(SyncError):
    """A recurrence label (weekday or ordinal) could not be recognized."""


class RoutingAmbiguity(SyncError):
    """Audience text matched no calendar and does not mark the event private."""

    def __init__(self, audience_text: str):
        self.audience_text = audience_text
        super().__init__(
            f"Audience '{audience_text}' did not match members or public; "
            f"event was not published"
        )


class CollaboratorError(SyncError):
    """A call to the external calendar service failed."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class MissingDataError(SyncError):
    """The record lacks the title or times needed to create an entry."""
