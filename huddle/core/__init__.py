"""Core domain logic for the Huddle collaboration engine.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .errors import (
    AlreadyAccepted,
    AlreadyCollaborator,
    CascadeIncomplete,
    CollaborationError,
    DateConflict,
    EntityCompleted,
    InconsistentReference,
    NotFound,
    StorageWriteFailed,
    UserNotFound,
    ValidationError,
)
from .models import (
    CascadeReport,
    CollaborationEvent,
    CollaboratorSet,
    CollaboratorView,
    EntityFilter,
    EntityKind,
    EventType,
    Invitation,
    Membership,
    MessageType,
    Project,
    ProjectProgress,
    Schedule,
    Task,
    TaskStatus,
    UserProfile,
    WireMessage,
)

__all__ = [
    "AlreadyAccepted",
    "AlreadyCollaborator",
    "CascadeIncomplete",
    "CascadeReport",
    "CollaborationError",
    "CollaborationEvent",
    "CollaboratorSet",
    "CollaboratorView",
    "DateConflict",
    "EntityCompleted",
    "EntityFilter",
    "EntityKind",
    "EventType",
    "InconsistentReference",
    "Invitation",
    "Membership",
    "MessageType",
    "NotFound",
    "Project",
    "ProjectProgress",
    "Schedule",
    "StorageWriteFailed",
    "Task",
    "TaskStatus",
    "UserNotFound",
    "UserProfile",
    "ValidationError",
    "WireMessage",
]
