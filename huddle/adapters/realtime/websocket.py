"""WebSocket transport for live connections.

Clients connect to ``/ws?user_id=<id>`` (plus ``service_worker=true`` for
background clients). The connection is registered for the lifetime of
the socket and receives wire messages as JSON text frames. Inbound
frames are ignored apart from close and error handling.
"""

import logging

from aiohttp import WSMsgType, web

from huddle.core.models import WireMessage
from huddle.core.ports import ConnectionRegistryPort, LiveConnection, UserDirectoryPort

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class WebSocketConnection(LiveConnection):
    """LiveConnection backed by an aiohttp WebSocketResponse."""

    def __init__(
        self, ws: web.WebSocketResponse, user_id: str, is_service_client: bool = False
    ):
        self.ws = ws
        self.user_id = user_id
        self.is_service_client = is_service_client

    async def send(self, message: WireMessage) -> None:
        """Send a wire message as a JSON text frame.

        Raises:
            ConnectionResetError: If the socket is already closed.
        """
        if self.ws.closed:
            raise ConnectionResetError(f"WebSocket for user {self.user_id} is closed")
        await self.ws.send_json(message.to_dict())

    def __repr__(self) -> str:
        return (
            f"WebSocketConnection(user_id={self.user_id!r}, "
            f"service={self.is_service_client})"
        )


def make_websocket_handler(
    registry: ConnectionRegistryPort,
    users: UserDirectoryPort,
    heartbeat_seconds: float | None = None,
):
    """Factory to create the ``/ws`` request handler.

    Args:
        registry: Registry the connection is added to while open.
        users: Directory used to reject unknown user ids before upgrading.
        heartbeat_seconds: Ping interval for the socket, or None to disable.

    Returns:
        An aiohttp request handler.
    """

    async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
        user_id = request.query.get("user_id", "").strip()
        if not user_id:
            raise web.HTTPBadRequest(text="user_id query parameter is required")
        if await users.find_user(user_id) is None:
            raise web.HTTPNotFound(text="User not found")
        service_client = request.query.get("service_worker", "").lower() in _TRUTHY

        ws = web.WebSocketResponse(heartbeat=heartbeat_seconds)
        await ws.prepare(request)

        connection = WebSocketConnection(ws, user_id, is_service_client=service_client)
        registry.register(connection)
        logger.info(
            f"WebSocket connected for user {user_id}",
            extra={"user_id": user_id, "service_client": service_client},
        )
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(
                        f"WebSocket for user {user_id} closed with error: {ws.exception()}",
                        extra={"user_id": user_id},
                    )
        finally:
            registry.deregister(connection)
            logger.info(
                f"WebSocket disconnected for user {user_id}",
                extra={"user_id": user_id},
            )
        return ws

    return websocket_handler
