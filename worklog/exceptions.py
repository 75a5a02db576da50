class TrackerError(Exception):
    """Base class for the recoverable errors raised by the tracker core."""


class ValidationError(TrackerError):
    """Malformed input, such as a blank task name or a negative amount."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(TrackerError):
    """The transition would clash with the user's current state, e.g. a second active session."""


class NotFoundError(TrackerError):
    """
    The entity does not exist or belongs to another user. Both cases raise
    the same error so callers cannot probe for other users' ids.
    """
