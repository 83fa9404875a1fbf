"""Domain models for the Huddle collaboration engine.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import ClassVar, Literal, TypeAlias

from .errors import (
    AlreadyAccepted,
    AlreadyCollaborator,
    EntityCompleted,
    NotFound,
    ValidationError,
)

DateField: TypeAlias = Literal["start", "end"]
DATE_FIELDS: tuple[str, ...] = ("start", "end")


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware datetime, assuming UTC when naive."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class EntityKind(Enum):
    """Kinds of work item that carry collaborator memberships."""

    PROJECT = "project"
    TASK = "task"

    @classmethod
    def parse(cls, value: "str | EntityKind") -> "EntityKind":
        """Parse a kind from its wire value.

        Raises:
            ValidationError: If the value names no known kind.
        """
        if isinstance(value, EntityKind):
            return value
        try:
            return cls(value.strip().lower())
        except (AttributeError, ValueError):
            raise ValidationError(f"Invalid entity type: {value!r}") from None


class TaskStatus(Enum):
    """Workflow status of a task, used for progress aggregation."""

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Membership:
    """A (user, accepted-flag) record binding a user to a project or task."""

    user_id: str
    accepted: bool


class CollaboratorSet:
    """Insertion-ordered mapping of user id to accepted flag.

    Membership uniqueness is structural: a user id is a key, so a second
    membership for the same user cannot exist. Guard methods raise domain
    errors for invalid transitions:

        - add:     absent  -> pending (or accepted, for the creator)
        - accept:  pending -> accepted
        - decline: pending -> absent
        - remove:  any     -> absent
    """

    def __init__(
        self, memberships: Iterable[Membership] | Mapping[str, bool] | None = None
    ):
        self._members: dict[str, bool] = {}
        if memberships is None:
            return
        if isinstance(memberships, Mapping):
            items = [Membership(uid, bool(acc)) for uid, acc in memberships.items()]
        else:
            items = list(memberships)
        for membership in items:
            self.add(membership.user_id, accepted=membership.accepted)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._members

    def __iter__(self) -> Iterator[Membership]:
        for user_id, accepted in self._members.items():
            yield Membership(user_id, accepted)

    def __len__(self) -> int:
        return len(self._members)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CollaboratorSet):
            return NotImplemented
        return list(self._members.items()) == list(other._members.items())

    def __repr__(self) -> str:
        return f"CollaboratorSet({self._members!r})"

    def get(self, user_id: str) -> Membership | None:
        """Return the membership for ``user_id``, or None if absent."""
        if user_id not in self._members:
            return None
        return Membership(user_id, self._members[user_id])

    def add(self, user_id: str, accepted: bool = False) -> Membership:
        """Append a membership for a user who is not yet present."""
        if user_id in self._members:
            raise AlreadyCollaborator("Collaborator already added")
        self._members[user_id] = accepted
        return Membership(user_id, accepted)

    def accept(self, user_id: str) -> Membership:
        """Transition a pending membership to accepted."""
        membership = self._require(user_id)
        if membership.accepted:
            raise AlreadyAccepted("User already accepted")
        self._members[user_id] = True
        return Membership(user_id, True)

    def decline(self, user_id: str) -> Membership:
        """Delete a pending membership; accepted memberships cannot be declined."""
        membership = self._require(user_id)
        if membership.accepted:
            raise AlreadyAccepted("User already accepted")
        del self._members[user_id]
        return membership

    def remove(self, user_id: str) -> Membership:
        """Delete a membership regardless of its state."""
        membership = self._require(user_id)
        del self._members[user_id]
        return membership

    def ensure_owner(self, user_id: str) -> None:
        """Place ``user_id`` first, accepted, keeping the other memberships in order."""
        rest = {uid: acc for uid, acc in self._members.items() if uid != user_id}
        self._members = {user_id: True, **rest}

    def accepted_ids(self) -> list[str]:
        """User ids holding an accepted membership, in insertion order."""
        return [uid for uid, acc in self._members.items() if acc]

    def pending_ids(self) -> list[str]:
        """User ids holding a pending invitation, in insertion order."""
        return [uid for uid, acc in self._members.items() if not acc]

    def copy(self) -> "CollaboratorSet":
        return CollaboratorSet(dict(self._members))

    def _require(self, user_id: str) -> Membership:
        membership = self.get(user_id)
        if membership is None:
            raise NotFound("User not invited")
        return membership


@dataclass(frozen=True)
class Schedule:
    """Scheduling window of a project or task plus its creation timestamp.

    Naive datetimes are treated as UTC so that windows always compare.
    """

    start: datetime
    end: datetime
    created: datetime

    def __post_init__(self) -> None:
        """Normalise timezones and enforce start <= end."""
        object.__setattr__(self, "start", ensure_aware(self.start))
        object.__setattr__(self, "end", ensure_aware(self.end))
        object.__setattr__(self, "created", ensure_aware(self.created))
        if self.start > self.end:
            raise ValidationError("Start date cannot be after end date")

    def with_date(self, which: DateField, value: datetime) -> "Schedule":
        """Return a copy with one boundary moved (validated on construction)."""
        if which not in DATE_FIELDS:
            raise ValidationError("Invalid date type")
        return replace(self, **{which: value})

    def contains(self, other: "Schedule") -> bool:
        """True when ``other``'s window lies within this one."""
        return self.start <= other.start and other.end <= self.end


class WorkItem:
    """Behaviour shared by projects and tasks.

    Both own a collaborator set in which the creator is always an
    accepted member, and both freeze once completed.
    """

    kind: ClassVar[EntityKind]
    id: str
    title: str
    creator_id: str
    schedule: Schedule
    completed: bool
    collaborators: CollaboratorSet

    def _init_collaborators(self) -> None:
        if not isinstance(self.collaborators, CollaboratorSet):
            self.collaborators = CollaboratorSet(self.collaborators)
        self.collaborators.ensure_owner(self.creator_id)

    @property
    def created_at(self) -> datetime:
        return self.schedule.created

    def ensure_mutable(self) -> None:
        """Raise EntityCompleted when the item is frozen by completion."""
        if self.completed:
            raise EntityCompleted(
                f"{self.kind.value.capitalize()} is already completed"
            )

    def is_accepted_member(self, user_id: str) -> bool:
        membership = self.collaborators.get(user_id)
        return membership is not None and membership.accepted


@dataclass(eq=True)
class Project(WorkItem):
    """A shared project. Tasks reference it by id."""

    kind: ClassVar[EntityKind] = EntityKind.PROJECT

    id: str
    title: str
    description: str
    label: str
    creator_id: str
    schedule: Schedule
    completed: bool = False
    collaborators: CollaboratorSet = field(default_factory=CollaboratorSet)

    def __post_init__(self) -> None:
        self._init_collaborators()


@dataclass(eq=True)
class Task(WorkItem):
    """A unit of work inside a project."""

    kind: ClassVar[EntityKind] = EntityKind.TASK

    id: str
    title: str
    creator_id: str
    project_id: str
    schedule: Schedule
    description: str = ""
    status: TaskStatus = TaskStatus.OPEN
    completed: bool = False
    collaborators: CollaboratorSet = field(default_factory=CollaboratorSet)

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = TaskStatus(self.status)
        self._init_collaborators()


Entity: TypeAlias = Project | Task


@dataclass(frozen=True)
class UserProfile:
    """Public view of a user. Credentials never reach the core."""

    id: str
    name: str


@dataclass(frozen=True)
class CollaboratorView:
    """A membership resolved to the member's display name."""

    user_id: str
    name: str
    accepted: bool


@dataclass(frozen=True)
class EntityDetails:
    """An entity together with its resolved collaborator list."""

    entity: Entity
    collaborators: tuple[CollaboratorView, ...]


@dataclass(frozen=True)
class Invitation:
    """A pending membership seen from the invited user's side (derived, never stored)."""

    kind: EntityKind
    entity_id: str
    title: str
    creator_id: str
    created_at: datetime

    @classmethod
    def from_entity(cls, entity: Entity) -> "Invitation":
        return cls(
            kind=entity.kind,
            entity_id=entity.id,
            title=entity.title,
            creator_id=entity.creator_id,
            created_at=entity.created_at,
        )


@dataclass(frozen=True)
class ProjectProgress:
    """Completion ratio of a project's tasks.

    ``percentage`` is None when the project has no tasks: there is no
    meaningful percentage of zero items.
    """

    project_id: str
    total_tasks: int
    completed_tasks: int

    def __post_init__(self) -> None:
        if self.total_tasks < 0 or not 0 <= self.completed_tasks <= self.total_tasks:
            raise ValueError(
                f"invalid progress counts: {self.completed_tasks}/{self.total_tasks}"
            )

    @property
    def defined(self) -> bool:
        return self.total_tasks > 0

    @property
    def percentage(self) -> float | None:
        if not self.defined:
            return None
        return self.completed_tasks / self.total_tasks * 100


class EventType(Enum):
    """Domain events that trigger notification fan-out."""

    COLLABORATOR_ACCEPTED = "CollaboratorAccepted"
    COLLABORATOR_DECLINED = "CollaboratorDeclined"

    @property
    def verb(self) -> str:
        if self is EventType.COLLABORATOR_ACCEPTED:
            return "accepted"
        return "declined"


@dataclass(frozen=True)
class CollaborationEvent:
    """A membership change on an entity, as seen after the update was persisted."""

    type: EventType
    entity_kind: EntityKind
    entity_id: str
    entity_title: str
    actor_id: str
    actor_name: str
    collaborators: tuple[Membership, ...]  # post-update snapshot
    occurred_at: datetime

    @classmethod
    def for_entity(
        cls,
        event_type: EventType,
        entity: Entity,
        actor: UserProfile,
        occurred_at: datetime,
    ) -> "CollaborationEvent":
        return cls(
            type=event_type,
            entity_kind=entity.kind,
            entity_id=entity.id,
            entity_title=entity.title,
            actor_id=actor.id,
            actor_name=actor.name,
            collaborators=tuple(entity.collaborators),
            occurred_at=occurred_at,
        )

    def recipients(self) -> frozenset[str]:
        """Accepted collaborators other than the actor."""
        return frozenset(
            m.user_id for m in self.collaborators
            if m.accepted and m.user_id != self.actor_id
        )

    def describe(self) -> str:
        return (
            f"{self.actor_name} has {self.type.verb} the invitation "
            f"to collaborate on {self.entity_title}"
        )


class MessageType(Enum):
    """Discriminator of messages pushed to live connections."""

    UPDATE_DATA = "UPDATE_DATA"
    NOTIFICATION = "NOTIFICATION"


@dataclass(frozen=True)
class WireMessage:
    """A structured record pushed to a client connection."""

    type: MessageType
    message: str | None = None

    @classmethod
    def update_data(cls) -> "WireMessage":
        return cls(MessageType.UPDATE_DATA)

    @classmethod
    def notification(cls, text: str) -> "WireMessage":
        return cls(MessageType.NOTIFICATION, text)

    def to_dict(self) -> dict[str, str]:
        payload = {"type": self.type.value}
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True)
class FanoutResult:
    """Outcome of delivering one event to its live audience."""

    audience: frozenset[str]
    delivered: int
    failed: int


@dataclass(frozen=True)
class EntityFilter:
    """Selection criteria for store queries and bulk writes.

    ``accepted`` narrows a ``collaborator_id`` match to one membership state
    and is meaningless on its own.
    """

    project_id: str | None = None
    creator_id: str | None = None
    collaborator_id: str | None = None
    accepted: bool | None = None

    def __post_init__(self) -> None:
        if self.accepted is not None and self.collaborator_id is None:
            raise ValueError("accepted filter requires collaborator_id")

    def matches(self, entity: Entity) -> bool:
        if self.project_id is not None and getattr(entity, "project_id", None) != self.project_id:
            return False
        if self.creator_id is not None and entity.creator_id != self.creator_id:
            return False
        if self.collaborator_id is not None:
            membership = entity.collaborators.get(self.collaborator_id)
            if membership is None:
                return False
            if self.accepted is not None and membership.accepted != self.accepted:
                return False
        return True


@dataclass
class CascadeReport:
    """Record of the cascade steps applied after a triggering mutation."""

    entity_kind: EntityKind
    entity_id: str
    tasks_deleted: int = 0
    tasks_updated: int = 0
    steps_completed: list[str] = field(default_factory=list)
