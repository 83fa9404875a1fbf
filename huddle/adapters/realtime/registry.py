"""In-memory connection registry.

Implements ConnectionRegistryPort for a single process. The WebSocket
handler registers on connect and deregisters on disconnect; the core
only ever reads snapshots.
"""

import logging

from huddle.core.ports import ConnectionRegistryPort, LiveConnection

logger = logging.getLogger(__name__)


class InMemoryConnectionRegistry(ConnectionRegistryPort):
    """Live connections in registration order."""

    def __init__(self) -> None:
        self._connections: list[LiveConnection] = []

    def register(self, connection: LiveConnection) -> None:
        if any(c is connection for c in self._connections):
            return
        self._connections.append(connection)
        logger.debug(
            f"Connection registered for user {connection.user_id}",
            extra={
                "user_id": connection.user_id,
                "service_client": connection.is_service_client,
                "live": len(self._connections),
            },
        )

    def deregister(self, connection: LiveConnection) -> None:
        remaining = [c for c in self._connections if c is not connection]
        if len(remaining) == len(self._connections):
            return
        self._connections = remaining
        logger.debug(
            f"Connection deregistered for user {connection.user_id}",
            extra={"user_id": connection.user_id, "live": len(self._connections)},
        )

    def list_live(self) -> tuple[LiveConnection, ...]:
        return tuple(self._connections)

    def __len__(self) -> int:
        return len(self._connections)
