"""Error taxonomy for the collaboration engine.

Core services raise these exceptions; driving adapters (the HTTP app)
recover them at the operation boundary and turn them into result records
carrying the error kind and a human-readable message. None of them is
process-fatal.
"""

from typing import Any


class CollaborationError(Exception):
    """Base class for every recoverable domain error."""

    kind: str = "CollaborationError"
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a caller-facing result record."""
        return {"error": self.kind, "message": self.message}


class ValidationError(CollaborationError):
    """Missing or malformed input."""

    kind = "ValidationError"


class NotFound(CollaborationError):
    """An entity, user or membership does not exist."""

    kind = "NotFound"
    status_code = 404


class UserNotFound(NotFound):
    """A user identifier does not resolve through the user directory."""

    kind = "UserNotFound"


class AlreadyCollaborator(CollaborationError):
    """The user already holds a membership (pending or accepted)."""

    kind = "AlreadyCollaborator"


class AlreadyAccepted(CollaborationError):
    """The membership is already in the accepted state."""

    kind = "AlreadyAccepted"


class EntityCompleted(CollaborationError):
    """The owning project or task is completed and therefore frozen."""

    kind = "EntityCompleted"


class DateConflict(CollaborationError):
    """A date change would break the project/task nesting constraint."""

    kind = "DateConflict"


class InconsistentReference(CollaborationError):
    """A persisted membership points at a user that no longer resolves."""

    kind = "InconsistentReference"
    status_code = 500


class StorageWriteFailed(CollaborationError):
    """The store reported that a write had no effect."""

    kind = "StorageWriteFailed"
    status_code = 500


class CascadeIncomplete(StorageWriteFailed):
    """A cascade stopped part-way through.

    The steps that already ran stay applied; ``report`` records them.
    """

    kind = "CascadeIncomplete"

    def __init__(self, message: str, report: Any):
        super().__init__(message)
        self.report = report


__all__ = [
    "AlreadyAccepted",
    "AlreadyCollaborator",
    "CascadeIncomplete",
    "CollaborationError",
    "DateConflict",
    "EntityCompleted",
    "InconsistentReference",
    "NotFound",
    "StorageWriteFailed",
    "UserNotFound",
    "ValidationError",
]
