"""Invitation state machine: implements InvitationPort.

Per membership:

    Invited (accepted=False) --accept--> Accepted (accepted=True)
    Invited (accepted=False) --decline--> [membership deleted]

Accepted memberships leave only through collaborator removal, which is
handled by the membership rules. Accept and decline publish an event to
the entity's other accepted collaborators once the change is persisted.
"""

import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

from .errors import AlreadyAccepted, NotFound, StorageWriteFailed
from .fanout import NotificationFanout
from .models import (
    CollaborationEvent,
    Entity,
    EntityFilter,
    EntityKind,
    EventType,
    Invitation,
    UserProfile,
)
from .ports import DocumentStorePort, InvitationPort, UserDirectoryPort

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InvitationFeed:
    """Lazy, restartable view of a user's pending invitations.

    Nothing is read until iteration starts, and every iteration runs a
    fresh query, so the same feed can be iterated again to observe the
    current state. Invitations are ordered by the owning entity's
    creation time, newest first.
    """

    def __init__(self, store: DocumentStorePort, user_id: str):
        self.store = store
        self.user_id = user_id

    def __aiter__(self) -> AsyncIterator[Invitation]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Invitation]:
        pending = EntityFilter(collaborator_id=self.user_id, accepted=False)
        invitations = [
            Invitation.from_entity(entity)
            for kind in (EntityKind.TASK, EntityKind.PROJECT)
            for entity in await self.store.find(kind, pending)
        ]
        invitations.sort(key=lambda invitation: invitation.created_at, reverse=True)
        for invitation in invitations:
            yield invitation

    async def collect(self) -> list[Invitation]:
        """Materialise the feed into a list."""
        return [invitation async for invitation in self]


class InvitationService(InvitationPort):
    """Core implementation of InvitationPort."""

    def __init__(
        self,
        store: DocumentStorePort,
        users: UserDirectoryPort,
        fanout: NotificationFanout,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the invitation service.

        Args:
            store: DocumentStorePort implementation for persistence.
            users: UserDirectoryPort used to resolve the acting user.
            fanout: NotificationFanout used to publish accept/decline events.
            clock: Source of event timestamps.
        """
        self.store = store
        self.users = users
        self.fanout = fanout
        self.clock = clock

    async def accept(self, kind: EntityKind, entity_id: str, user_id: str) -> Entity:
        """Accept a pending invitation.

        Raises:
            NotFound: If the user, the entity, or the user's membership
                does not exist.
            AlreadyAccepted: If the membership is already accepted.
            StorageWriteFailed: If the store did not apply the change.
        """
        user, entity = await self._load(kind, entity_id, user_id)
        entity.collaborators.accept(user_id)

        flipped = await self.store.accept_collaborator(kind, entity_id, user_id)
        if not flipped:
            await self._explain_lost_write(kind, entity_id, user_id)

        logger.info(
            f"User {user_id} accepted invitation to {kind.value} {entity_id}",
            extra={"entity_kind": kind.value, "entity_id": entity_id, "user_id": user_id},
        )
        await self._publish(EventType.COLLABORATOR_ACCEPTED, entity, user)
        return entity

    async def decline(self, kind: EntityKind, entity_id: str, user_id: str) -> Entity:
        """Decline a pending invitation, deleting the membership.

        Raises:
            NotFound: If the user, the entity, or the user's membership
                does not exist.
            AlreadyAccepted: If the membership is already accepted.
            StorageWriteFailed: If the store did not apply the change.
        """
        user, entity = await self._load(kind, entity_id, user_id)
        entity.collaborators.decline(user_id)

        removed = await self.store.remove_collaborator(
            kind, entity_id, user_id, pending_only=True
        )
        if not removed:
            await self._explain_lost_write(kind, entity_id, user_id)

        logger.info(
            f"User {user_id} declined invitation to {kind.value} {entity_id}",
            extra={"entity_kind": kind.value, "entity_id": entity_id, "user_id": user_id},
        )
        await self._publish(EventType.COLLABORATOR_DECLINED, entity, user)
        return entity

    def list_invitations(self, user_id: str) -> InvitationFeed:
        """Return the user's pending invitations across projects and tasks."""
        return InvitationFeed(self.store, user_id)

    async def _load(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> tuple[UserProfile, Entity]:
        user = await self.users.find_user(user_id)
        if user is None:
            raise NotFound("User not found")
        entity = await self.store.get(kind, entity_id)
        if entity is None:
            raise NotFound("Invitation not found")
        return user, entity

    async def _explain_lost_write(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> None:
        """Raise the error matching why a conditional write matched nothing.

        A concurrent accept, decline or removal can change the membership
        between our read and our write.
        """
        current = await self.store.get(kind, entity_id)
        if current is None:
            raise NotFound("Invitation not found")
        membership = current.collaborators.get(user_id)
        if membership is None:
            raise NotFound("User not invited")
        if membership.accepted:
            raise AlreadyAccepted("User already accepted")
        raise StorageWriteFailed("Invitation update had no effect")

    async def _publish(
        self, event_type: EventType, entity: Entity, actor: UserProfile
    ) -> None:
        event = CollaborationEvent.for_entity(event_type, entity, actor, self.clock())
        # The mutation is already persisted; fan-out problems must not fail it.
        try:
            await self.fanout.publish(event)
        except Exception as e:
            logger.error(
                f"Failed to fan out {event_type.value} for {entity.kind.value} {entity.id}: {e}",
                exc_info=True,
            )
