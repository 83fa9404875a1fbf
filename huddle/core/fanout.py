"""Notification fan-out for collaboration events.

Derives an event's audience and pushes wire messages to the audience's
live connections. Delivery is best-effort: no retries, no queueing for
disconnected users, and one failing connection never blocks the rest.
"""

import asyncio
import logging

from .models import CollaborationEvent, FanoutResult, WireMessage
from .ports import ConnectionRegistryPort, LiveConnection

logger = logging.getLogger(__name__)


class NotificationFanout:
    """Delivers collaboration events to live, interactive connections.

    Each recipient connection receives, strictly in this order:

    1. ``UPDATE_DATA`` so the client re-fetches authoritative state
    2. ``NOTIFICATION`` with a human-readable description of the event

    Connections are served concurrently; ordering only holds within a
    single connection.
    """

    def __init__(self, registry: ConnectionRegistryPort):
        """Initialize the fan-out.

        Args:
            registry: ConnectionRegistryPort queried (read-only) for the
                live connections at publish time.
        """
        self.registry = registry

    def target_connections(self, event: CollaborationEvent) -> list[LiveConnection]:
        """Snapshot the live connections that should receive ``event``.

        The audience is the entity's accepted collaborators minus the
        actor, restricted to non-service connections.
        """
        recipients = event.recipients()
        return [
            connection
            for connection in tuple(self.registry.list_live())
            if not connection.is_service_client and connection.user_id in recipients
        ]

    async def publish(self, event: CollaborationEvent) -> FanoutResult:
        """Push ``event`` to every target connection.

        Never raises for delivery problems; they are logged and counted.
        """
        targets = self.target_connections(event)
        messages = (WireMessage.update_data(), WireMessage.notification(event.describe()))

        outcomes = await asyncio.gather(
            *(self._deliver(connection, messages) for connection in targets)
        )
        delivered = sum(1 for ok in outcomes if ok)
        result = FanoutResult(
            audience=frozenset(c.user_id for c in targets),
            delivered=delivered,
            failed=len(outcomes) - delivered,
        )

        logger.debug(
            f"Fan-out for {event.type.value} on {event.entity_kind.value} {event.entity_id}",
            extra={
                "event": event.type.value,
                "entity_id": event.entity_id,
                "connections": len(targets),
                "delivered": result.delivered,
                "failed": result.failed,
            },
        )
        return result

    @staticmethod
    async def _deliver(
        connection: LiveConnection, messages: tuple[WireMessage, ...]
    ) -> bool:
        try:
            for message in messages:
                await connection.send(message)
        except Exception as e:
            logger.warning(
                f"Failed to notify connection of user {connection.user_id}: {e}",
                extra={"user_id": connection.user_id},
            )
            return False
        return True
