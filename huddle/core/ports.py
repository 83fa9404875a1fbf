"""Port interfaces for the Huddle collaboration engine.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - DocumentStorePort: Persist and query projects and tasks
   - UserDirectoryPort: Resolve user identifiers to display names
   - ConnectionRegistryPort: Track live client connections
   - LiveConnection: A single connected client

2. **Driving Ports** (adapters/external systems call into core)
   - ProjectManagementPort: Membership and lifecycle mutations
   - InvitationPort: Accept, decline and list invitations
   - WorkspaceQueryPort: Read-only derived views
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from .models import (
    CascadeReport,
    CollaboratorView,
    DateField,
    Entity,
    EntityDetails,
    EntityFilter,
    EntityKind,
    Invitation,
    Project,
    ProjectProgress,
    Task,
    TaskStatus,
    UserProfile,
    WireMessage,
)


UPDATABLE_FIELDS: Mapping[EntityKind, frozenset[str]] = {
    EntityKind.PROJECT: frozenset(
        {"title", "description", "label", "completed", "start", "end"}
    ),
    EntityKind.TASK: frozenset(
        {"title", "description", "status", "completed", "start", "end"}
    ),
}
"""Keys a DocumentStorePort accepts in ``changes``, per entity kind."""


def validate_changes(kind: EntityKind, changes: Mapping[str, Any]) -> None:
    """Reject change keys a store does not know how to write.

    Raises:
        ValueError: If ``changes`` is empty or names an unknown field.
    """
    if not changes:
        raise ValueError("changes must not be empty")
    unknown = set(changes) - UPDATABLE_FIELDS[kind]
    if unknown:
        raise ValueError(f"Cannot update {sorted(unknown)} on a {kind.value}")


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class DocumentStorePort(ABC):
    """Port for persisting projects and tasks.

    The store is atomic per document only; no operation spans several
    documents atomically. Write methods return the number of documents
    they affected so that the core can detect writes with no effect.

    Membership writes are conditional so that read-check-write races
    cannot produce duplicate or resurrected memberships:

    - add_collaborator inserts only if the user is absent
    - accept_collaborator flips only a pending membership
    - remove_collaborator(pending_only=True) deletes only a pending membership

    Recognised keys for ``changes``: title, description, label, completed,
    status, start, end.
    """

    @abstractmethod
    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """Retrieve one entity by id.

        Returns:
            The entity, or None if no entity of that kind has the id.
        """

    @abstractmethod
    async def find(
        self, kind: EntityKind, flt: EntityFilter | None = None
    ) -> list[Entity]:
        """Retrieve every entity of ``kind`` matching the filter.

        Returns:
            Entities in insertion order. Empty list if none match.
        """

    @abstractmethod
    async def insert(self, entity: Entity) -> None:
        """Persist a new entity.

        Raises:
            Exception: If an entity with the same id already exists.
        """

    @abstractmethod
    async def update(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> int:
        """Apply field changes to one entity. Returns 1 if written, else 0."""

    @abstractmethod
    async def update_many(
        self, kind: EntityKind, flt: EntityFilter, changes: Mapping[str, Any]
    ) -> int:
        """Apply field changes to every matching entity. Returns the count written."""

    @abstractmethod
    async def delete(self, kind: EntityKind, entity_id: str) -> int:
        """Delete one entity. Returns 1 if deleted, else 0."""

    @abstractmethod
    async def delete_many(self, kind: EntityKind, flt: EntityFilter) -> int:
        """Delete every matching entity. Returns the count deleted."""

    @abstractmethod
    async def add_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        accepted: bool = False,
    ) -> bool:
        """Append a membership if, and only if, the user is not yet a member.

        Returns:
            True if the membership was inserted, False if the entity is
            missing or the user already held a membership.
        """

    @abstractmethod
    async def accept_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> int:
        """Flip a pending membership to accepted. Returns 1 if flipped, else 0."""

    @abstractmethod
    async def remove_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        pending_only: bool = False,
    ) -> int:
        """Delete a membership. Returns 1 if deleted, else 0."""

    @abstractmethod
    async def remove_collaborator_many(
        self, kind: EntityKind, flt: EntityFilter, user_id: str
    ) -> int:
        """Delete ``user_id``'s membership from every matching entity.

        Returns:
            Number of entities that lost a membership.
        """

    async def close(self) -> None:
        """Release any resources held by the store."""


class UserDirectoryPort(ABC):
    """Port for resolving user identifiers.

    Only public profile fields cross this boundary; password hashes and
    session tokens stay with the credential service.
    """

    @abstractmethod
    async def find_user(self, user_id: str) -> UserProfile | None:
        """Resolve a user id.

        Returns:
            The user's profile, or None if the id does not resolve.

        Raises:
            Exception: If the directory backend is unreachable.
        """

    async def close(self) -> None:
        """Release any resources held by the directory."""


class LiveConnection(ABC):
    """A connected client that can receive wire messages.

    Attributes:
        user_id: Authenticated user behind the connection.
        is_service_client: True for background/service-worker clients,
            which never receive collaboration notifications.
    """

    user_id: str
    is_service_client: bool

    @abstractmethod
    async def send(self, message: WireMessage) -> None:
        """Push a message to the client.

        Raises:
            Exception: If the transport rejects the message (e.g. the
                connection closed). Callers treat delivery as best-effort.
        """


class ConnectionRegistryPort(ABC):
    """Port for the set of live, authenticated connections.

    The registry is mutated as clients connect and disconnect,
    independently of any request. Readers take a snapshot.
    """

    @abstractmethod
    def register(self, connection: LiveConnection) -> None:
        """Add a connection when a client connects."""

    @abstractmethod
    def deregister(self, connection: LiveConnection) -> None:
        """Remove a connection when a client disconnects. Unknown connections are ignored."""

    @abstractmethod
    def list_live(self) -> Sequence[LiveConnection]:
        """Return a snapshot of the currently registered connections."""


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class ProjectManagementPort(ABC):
    """Port for mutations of projects, tasks and their memberships.

    Implementations live in the core (membership.py). All methods raise
    subclasses of CollaborationError on rule violations.
    """

    @abstractmethod
    async def create_project(
        self,
        creator_id: str,
        title: str,
        description: str,
        label: str,
        start: datetime,
        end: datetime,
        collaborator_ids: Sequence[str] = (),
    ) -> Project:
        """Create a project with the creator as an accepted collaborator."""

    @abstractmethod
    async def create_task(
        self,
        creator_id: str,
        project_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        collaborator_ids: Sequence[str] = (),
    ) -> Task:
        """Create a task nested inside a project's schedule."""

    @abstractmethod
    async def edit_project(
        self, project_id: str, title: str, description: str, label: str
    ) -> Project:
        """Replace a project's descriptive fields."""

    @abstractmethod
    async def edit_task(
        self,
        task_id: str,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | None = None,
    ) -> Task:
        """Update a task's descriptive fields and workflow status."""

    @abstractmethod
    async def delete_project(self, project_id: str) -> None:
        """Delete a project that is not completed."""

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        """Delete a task that is not completed."""

    @abstractmethod
    async def add_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> CollaboratorView:
        """Invite a user, creating a pending membership."""

    @abstractmethod
    async def remove_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> CascadeReport:
        """Remove a membership, cascading to tasks when the entity is a project."""

    @abstractmethod
    async def set_completion(
        self, kind: EntityKind, entity_id: str, completed: bool
    ) -> CascadeReport:
        """Set the completion flag, cascading to tasks when a project completes."""

    @abstractmethod
    async def set_date(
        self, kind: EntityKind, entity_id: str, which: DateField, value: datetime
    ) -> Entity:
        """Move the start or end of an entity's schedule."""


class InvitationPort(ABC):
    """Port for the invited user's side of the membership lifecycle."""

    @abstractmethod
    async def accept(self, kind: EntityKind, entity_id: str, user_id: str) -> Entity:
        """Accept a pending invitation. Returns the updated entity."""

    @abstractmethod
    async def decline(self, kind: EntityKind, entity_id: str, user_id: str) -> Entity:
        """Decline a pending invitation. Returns the updated entity."""

    @abstractmethod
    def list_invitations(self, user_id: str) -> AsyncIterable[Invitation]:
        """Return the user's pending invitations, newest owning entity first."""


class WorkspaceQueryPort(ABC):
    """Port for read-only, derived views."""

    @abstractmethod
    async def project_progress(self, project_id: str) -> ProjectProgress:
        """Completion percentage of a project's tasks."""

    @abstractmethod
    async def resolve_collaborator_names(self, entity: Entity) -> list[CollaboratorView]:
        """Resolve every membership of an entity to a display name."""

    @abstractmethod
    async def all_projects(self) -> list[EntityDetails]:
        """Every project, each with its resolved collaborators."""

    @abstractmethod
    async def project_details(self, project_id: str) -> EntityDetails:
        """A project with its resolved collaborators."""

    @abstractmethod
    async def task_details(self, task_id: str) -> EntityDetails:
        """A task with its resolved collaborators."""

    @abstractmethod
    async def project_tasks(self, project_id: str) -> list[Task]:
        """Every task of a project."""

    @abstractmethod
    async def projects_for_user(self, user_id: str) -> list[Project]:
        """Projects the user created or accepted."""

    @abstractmethod
    async def tasks_for_user(self, project_id: str, user_id: str) -> list[Task]:
        """Tasks in a project that the user created or accepted."""

    @abstractmethod
    async def live_collaborators(self, user_id: str) -> list[UserProfile]:
        """Collaborators of the user who currently hold an interactive connection."""
