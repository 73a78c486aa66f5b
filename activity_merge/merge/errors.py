"""Error types for duplicate detection and merge resolution.

Business logic errors raised by the store, resolver and linker. Routers
translate them into HTTP responses; the scorer never raises.
"""


class MergeEngineError(Exception):
    """Base exception for merge engine errors."""


class NotFoundError(MergeEngineError):
    """Raised when a resource is missing or owned by someone else.

    Both cases carry the same message so callers cannot probe for the
    existence of another owner's records.
    """


class InvalidInputError(MergeEngineError):
    """Raised for malformed requests (empty id lists, inverted windows, missing fields)."""


class ConflictError(MergeEngineError):
    """Raised when an operation is not legal from the activity's current merge status."""


class StaleFlagError(ConflictError):
    """Raised when a merge flag references an activity that no longer exists."""


class UpstreamFailureError(MergeEngineError):
    """Raised when the persistence layer fails; the unit of work was rolled back."""
