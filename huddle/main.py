"""Composition root for the Huddle collaboration service.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Configuration loading via config module
- Adapter instantiation
- Core service initialization
- Dependency injection
- HTTP/WebSocket server startup
"""

import asyncio
import logging
import sys
from dataclasses import dataclass

from aiohttp import web

from huddle.adapters.http.app import create_app
from huddle.adapters.realtime.registry import InMemoryConnectionRegistry
from huddle.adapters.store.memory import InMemoryDocumentStore
from huddle.adapters.store.sqlite import SQLiteDocumentStore
from huddle.adapters.users.http import HttpUserDirectory
from huddle.adapters.users.memory import InMemoryUserDirectory
from huddle.config import Settings, load_settings
from huddle.core.fanout import NotificationFanout
from huddle.core.invitations import InvitationService
from huddle.core.membership import MembershipService
from huddle.core.ports import DocumentStorePort, UserDirectoryPort
from huddle.core.views import WorkspaceQueryService


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


@dataclass
class Application:
    """Wired adapters and services, ready to serve."""

    settings: Settings
    store: DocumentStorePort
    users: UserDirectoryPort
    registry: InMemoryConnectionRegistry
    management: MembershipService
    invitations: InvitationService
    queries: WorkspaceQueryService
    web_app: web.Application

    async def close(self) -> None:
        """Release adapter resources."""
        await self.users.close()
        await self.store.close()


def build_application(settings: Settings) -> Application:
    """Instantiate adapters and core services from settings.

    Raises:
        ValueError: If a configured backend is unknown.
    """
    logger = logging.getLogger(__name__)

    # Document store - select based on config
    store: DocumentStorePort
    if settings.store_backend == "sqlite":
        store = SQLiteDocumentStore(db_path=settings.store_sqlite_path)
        logger.info(f"Document store initialized: {settings.store_sqlite_path}")
    elif settings.store_backend == "memory":
        store = InMemoryDocumentStore()
        logger.info("Document store initialized: in-memory")
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")

    # User directory - select based on config
    users: UserDirectoryPort
    if settings.user_directory_backend == "http":
        users = HttpUserDirectory(
            base_url=settings.user_service_url,
            api_token=settings.user_service_token,
            timeout_seconds=settings.user_service_timeout_seconds,
        )
        logger.info(f"User directory: HTTP ({settings.user_service_url})")
    elif settings.user_directory_backend == "memory":
        if settings.user_seed_path:
            users = InMemoryUserDirectory.from_json_file(settings.user_seed_path)
        else:
            users = InMemoryUserDirectory()
        logger.info("User directory: in-memory")
    else:
        raise ValueError(
            f"Unknown user directory backend: {settings.user_directory_backend}"
        )

    registry = InMemoryConnectionRegistry()

    # Core services
    fanout = NotificationFanout(registry)
    management = MembershipService(store=store, users=users)
    invitations = InvitationService(store=store, users=users, fanout=fanout)
    queries = WorkspaceQueryService(store=store, users=users, registry=registry)

    web_app = create_app(
        management=management,
        invitations=invitations,
        queries=queries,
        registry=registry,
        users=users,
        api_key=settings.api_key or None,
        require_auth=settings.require_auth,
        heartbeat_seconds=settings.websocket_heartbeat_seconds,
    )

    return Application(
        settings=settings,
        store=store,
        users=users,
        registry=registry,
        management=management,
        invitations=invitations,
        queries=queries,
        web_app=web_app,
    )


async def bootstrap() -> None:
    """Load configuration, wire adapters, and serve until cancelled.

    Steps:
    1. Load configuration from environment
    2. Configure logging
    3. Instantiate adapters and core services
    4. Start the HTTP/WebSocket server

    Raises:
        asyncio.CancelledError: On graceful shutdown signal
    """
    settings = load_settings()

    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading Huddle collaboration service...")

    app = build_application(settings)

    runner = web.AppRunner(app.web_app)
    await runner.setup()
    site = web.TCPSite(runner, settings.server_host, settings.server_port)
    try:
        await site.start()
        if settings.require_auth:
            logger.info(
                f"Serving on {settings.server_host}:{settings.server_port} "
                "(with API key authentication)"
            )
        else:
            logger.info(f"Serving on {settings.server_host}:{settings.server_port}")

        # Keep the server running
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()
        await app.close()
        logger.info("Huddle collaboration service stopped")


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Successful shutdown
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
