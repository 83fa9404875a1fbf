"""aiohttp application exposing the driving ports.

Routes mirror the classic project/task/user REST surface. Core errors
are recovered by a middleware and rendered as ``{"error", "message"}``
records with the error's HTTP status. Unexpected exceptions are logged
server-side and returned as a generic 500.

Supports optional API key authentication via the Authorization header
(Bearer token) or X-API-Key. ``/health`` is always public. The WebSocket
endpoint also accepts the key as an ``api_key`` query parameter, since
browsers cannot set headers on a WebSocket upgrade.
"""

import hmac
import json
import logging
from typing import TypeVar

import pydantic
from aiohttp import web

from huddle.adapters.http import serializers
from huddle.adapters.http.schemas import (
    AddCollaboratorRequest,
    CompletionRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    DateChangeRequest,
    EditProjectRequest,
    EditTaskRequest,
)
from huddle.adapters.realtime.websocket import make_websocket_handler
from huddle.core.errors import CascadeIncomplete, CollaborationError, ValidationError
from huddle.core.models import EntityKind
from huddle.core.ports import (
    ConnectionRegistryPort,
    InvitationPort,
    ProjectManagementPort,
    UserDirectoryPort,
    WorkspaceQueryPort,
)

logger = logging.getLogger(__name__)

BodyT = TypeVar("BodyT", bound=pydantic.BaseModel)

MAX_BODY_SIZE = 1024 * 1024
PUBLIC_PATHS = frozenset({"/health"})

_COLLECTIONS = {"projects": EntityKind.PROJECT, "tasks": EntityKind.TASK}


def _format_pydantic_error(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


async def _parse_body(request: web.Request, model: type[BodyT]) -> BodyT:
    """Read the JSON body and validate it against ``model``.

    Raises:
        ValidationError: If the body is not valid JSON or not UTF-8 text.
        pydantic.ValidationError: If the body does not match ``model``.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body") from None
    return model.model_validate(payload)


def _kind(request: web.Request) -> EntityKind:
    return _COLLECTIONS[request.match_info["collection"]]


def make_auth_middleware(api_key: str | None, require_auth: bool):
    """Create middleware enforcing API key authentication.

    Supports two header methods:
    1. Authorization: Bearer <api_key>
    2. X-API-Key: <api_key>
    """

    def is_authenticated(request: web.Request) -> bool:
        if not require_auth:
            return True
        # Auth required; api_key must be configured
        if not api_key:
            return False

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return hmac.compare_digest(auth_header[7:], api_key)

        api_key_header = request.headers.get("X-API-Key", "")
        if api_key_header:
            return hmac.compare_digest(api_key_header, api_key)

        if request.path == "/ws":
            query_key = request.query.get("api_key", "")
            if query_key:
                return hmac.compare_digest(query_key, api_key)
        return False

    @web.middleware
    async def auth_middleware(request: web.Request, handler):
        if request.path in PUBLIC_PATHS or is_authenticated(request):
            return await handler(request)
        return web.json_response(
            {"error": "Unauthorized", "message": "Invalid or missing API key"},
            status=401,
        )

    return auth_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn core and validation errors into JSON error records."""
    try:
        return await handler(request)
    except CollaborationError as e:
        logger.info(
            f"{request.method} {request.path} rejected: {e.kind}: {e.message}",
            extra={"error": e.kind, "status": e.status_code},
        )
        body = e.to_dict()
        if isinstance(e, CascadeIncomplete):
            body["cascade"] = serializers.cascade_to_dict(e.report)
        return web.json_response(body, status=e.status_code)
    except pydantic.ValidationError as e:
        return web.json_response(
            {"error": "ValidationError", "message": _format_pydantic_error(e)},
            status=400,
        )
    except web.HTTPException:
        raise
    except Exception as e:
        # Log full exception server-side; return generic error to client
        logger.error(f"Error handling {request.method} {request.path}: {e}", exc_info=True)
        return web.json_response(
            {"error": "InternalError", "message": "Internal server error"},
            status=500,
        )


class CollaborationHandlers:
    """Request handlers bound to the driving ports."""

    def __init__(
        self,
        management: ProjectManagementPort,
        invitations: InvitationPort,
        queries: WorkspaceQueryPort,
    ):
        self.management = management
        self.invitations = invitations
        self.queries = queries

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    # Creation

    async def create_project(self, request: web.Request) -> web.Response:
        body = await _parse_body(request, CreateProjectRequest)
        project = await self.management.create_project(
            creator_id=body.creator_id,
            title=body.title,
            description=body.description,
            label=body.label,
            start=body.dates.start,
            end=body.dates.end,
            collaborator_ids=body.collaborators,
        )
        return web.json_response(
            {
                "message": "Project created successfully",
                "project": serializers.entity_to_dict(project),
            },
            status=201,
        )

    async def create_task(self, request: web.Request) -> web.Response:
        body = await _parse_body(request, CreateTaskRequest)
        task = await self.management.create_task(
            creator_id=body.creator_id,
            project_id=body.project_id,
            title=body.title,
            start=body.dates.start,
            end=body.dates.end,
            description=body.description,
            collaborator_ids=body.collaborators,
        )
        return web.json_response(
            {
                "message": "Task created successfully",
                "task": serializers.entity_to_dict(task),
            },
            status=201,
        )

    # Reads

    async def list_projects(self, request: web.Request) -> web.Response:
        projects = await self.queries.all_projects()
        return web.json_response([serializers.details_to_dict(d) for d in projects])

    async def get_project(self, request: web.Request) -> web.Response:
        details = await self.queries.project_details(request.match_info["id"])
        return web.json_response(serializers.details_to_dict(details))

    async def get_task(self, request: web.Request) -> web.Response:
        details = await self.queries.task_details(request.match_info["id"])
        return web.json_response(serializers.details_to_dict(details))

    async def projects_for_user(self, request: web.Request) -> web.Response:
        projects = await self.queries.projects_for_user(request.match_info["user_id"])
        return web.json_response([serializers.entity_to_dict(p) for p in projects])

    async def project_tasks(self, request: web.Request) -> web.Response:
        tasks = await self.queries.project_tasks(request.match_info["id"])
        return web.json_response([serializers.entity_to_dict(t) for t in tasks])

    async def tasks_for_user(self, request: web.Request) -> web.Response:
        tasks = await self.queries.tasks_for_user(
            request.match_info["id"], request.match_info["user_id"]
        )
        return web.json_response([serializers.entity_to_dict(t) for t in tasks])

    async def project_progress(self, request: web.Request) -> web.Response:
        progress = await self.queries.project_progress(request.match_info["id"])
        return web.json_response(serializers.progress_to_dict(progress))

    # Edits

    async def edit_project(self, request: web.Request) -> web.Response:
        body = await _parse_body(request, EditProjectRequest)
        project = await self.management.edit_project(
            request.match_info["id"], body.title, body.description, body.label
        )
        return web.json_response(
            {
                "message": "Project updated successfully",
                "project": serializers.entity_to_dict(project),
            }
        )

    async def edit_task(self, request: web.Request) -> web.Response:
        body = await _parse_body(request, EditTaskRequest)
        task = await self.management.edit_task(
            request.match_info["id"],
            title=body.title,
            description=body.description,
            status=body.status,
        )
        return web.json_response(
            {
                "message": "Task updated successfully",
                "task": serializers.entity_to_dict(task),
            }
        )

    async def delete_entity(self, request: web.Request) -> web.Response:
        kind = _kind(request)
        entity_id = request.match_info["id"]
        if kind is EntityKind.PROJECT:
            await self.management.delete_project(entity_id)
        else:
            await self.management.delete_task(entity_id)
        return web.json_response(
            {"message": f"{kind.value.capitalize()} deleted successfully"}
        )

    async def set_completion(self, request: web.Request) -> web.Response:
        kind = _kind(request)
        body = await _parse_body(request, CompletionRequest)
        report = await self.management.set_completion(
            kind, request.match_info["id"], body.completed
        )
        return web.json_response(
            {
                "message": f"{kind.value.capitalize()} updated successfully",
                "completed": body.completed,
                **serializers.cascade_to_dict(report),
            }
        )

    async def set_date(self, request: web.Request) -> web.Response:
        kind = _kind(request)
        which = request.match_info["which"]
        body = await _parse_body(request, DateChangeRequest)
        entity = await self.management.set_date(
            kind, request.match_info["id"], which, body.date
        )
        return web.json_response(
            {
                "message": "Date updated successfully",
                "date": getattr(entity.schedule, which).isoformat(),
            }
        )

    # Memberships

    async def add_collaborator(self, request: web.Request) -> web.Response:
        kind = _kind(request)
        body = await _parse_body(request, AddCollaboratorRequest)
        view = await self.management.add_collaborator(
            kind, request.match_info["id"], body.collaborator_id
        )
        return web.json_response(
            {
                "message": "Collaborator added successfully",
                "collaborator": serializers.collaborator_to_dict(view),
            }
        )

    async def remove_collaborator(self, request: web.Request) -> web.Response:
        report = await self.management.remove_collaborator(
            _kind(request), request.match_info["id"], request.match_info["user_id"]
        )
        return web.json_response(
            {
                "message": "Collaborator removed successfully",
                **serializers.cascade_to_dict(report),
            }
        )

    # Invitations

    async def list_invitations(self, request: web.Request) -> web.Response:
        feed = self.invitations.list_invitations(request.match_info["user_id"])
        invitations = [serializers.invitation_to_dict(i) async for i in feed]
        return web.json_response(invitations)

    async def accept_invitation(self, request: web.Request) -> web.Response:
        await self.invitations.accept(
            EntityKind.parse(request.match_info["kind"]),
            request.match_info["entity_id"],
            request.match_info["user_id"],
        )
        return web.json_response({"message": "Invitation accepted"})

    async def decline_invitation(self, request: web.Request) -> web.Response:
        await self.invitations.decline(
            EntityKind.parse(request.match_info["kind"]),
            request.match_info["entity_id"],
            request.match_info["user_id"],
        )
        return web.json_response({"message": "Invitation declined"})

    async def live_collaborators(self, request: web.Request) -> web.Response:
        users = await self.queries.live_collaborators(request.match_info["user_id"])
        return web.json_response([serializers.user_to_dict(u) for u in users])


def create_app(
    management: ProjectManagementPort,
    invitations: InvitationPort,
    queries: WorkspaceQueryPort,
    registry: ConnectionRegistryPort,
    users: UserDirectoryPort,
    api_key: str | None = None,
    require_auth: bool = False,
    heartbeat_seconds: float | None = None,
) -> web.Application:
    """Build the aiohttp application.

    Args:
        management: ProjectManagementPort for mutations.
        invitations: InvitationPort for accept/decline/list.
        queries: WorkspaceQueryPort for derived views.
        registry: ConnectionRegistryPort the WebSocket handler writes to.
        users: UserDirectoryPort used to vet WebSocket user ids.
        api_key: Optional API key for authentication.
        require_auth: Whether to require authentication. If True, api_key
            must be provided or every protected request is rejected.
        heartbeat_seconds: WebSocket ping interval, or None to disable.

    Returns:
        A configured aiohttp Application.
    """
    if require_auth and not api_key:
        logger.warning(
            "Authentication required but no API key provided. "
            "All protected endpoints will reject requests."
        )

    app = web.Application(
        middlewares=[make_auth_middleware(api_key, require_auth), error_middleware],
        client_max_size=MAX_BODY_SIZE,
    )
    h = CollaborationHandlers(management, invitations, queries)
    collection = "{collection:projects|tasks}"

    # Literal segments are registered before the {id} routes they would shadow.
    app.router.add_get("/health", h.health)
    app.router.add_get("/ws", make_websocket_handler(registry, users, heartbeat_seconds))

    app.router.add_get("/projects", h.list_projects)
    app.router.add_put("/projects", h.create_project)
    app.router.add_put("/tasks", h.create_task)
    app.router.add_get("/projects/user/{user_id}", h.projects_for_user)
    app.router.add_get("/projects/{id}", h.get_project)
    app.router.add_get("/tasks/{id}", h.get_task)
    app.router.add_put("/projects/{id}", h.edit_project)
    app.router.add_put("/tasks/{id}", h.edit_task)
    app.router.add_get("/projects/{id}/tasks", h.project_tasks)
    app.router.add_get("/projects/{id}/tasks/{user_id}", h.tasks_for_user)
    app.router.add_get("/projects/{id}/progress", h.project_progress)

    app.router.add_delete(f"/{collection}/{{id}}", h.delete_entity)
    app.router.add_patch(f"/{collection}/{{id}}/completion", h.set_completion)
    app.router.add_patch(f"/{collection}/{{id}}/dates/{{which}}", h.set_date)
    app.router.add_put(f"/{collection}/{{id}}/collaborators", h.add_collaborator)
    app.router.add_delete(
        f"/{collection}/{{id}}/collaborators/{{user_id}}", h.remove_collaborator
    )

    app.router.add_get("/users/{user_id}/invitations", h.list_invitations)
    app.router.add_post(
        "/users/{user_id}/invitations/{kind}/{entity_id}", h.accept_invitation
    )
    app.router.add_delete(
        "/users/{user_id}/invitations/{kind}/{entity_id}", h.decline_invitation
    )
    app.router.add_get("/users/{user_id}/connections", h.live_collaborators)

    return app

