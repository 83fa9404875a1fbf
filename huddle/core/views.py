"""Read-only derived views: implements WorkspaceQueryPort.

Progress percentages, collaborator lists resolved to display names,
per-user project/task listings and the user's live collaborators.
None of these methods write.
"""

import logging

from .errors import InconsistentReference, NotFound
from .models import (
    CollaboratorView,
    Entity,
    EntityDetails,
    EntityFilter,
    EntityKind,
    Project,
    ProjectProgress,
    Task,
    TaskStatus,
    UserProfile,
)
from .ports import (
    ConnectionRegistryPort,
    DocumentStorePort,
    UserDirectoryPort,
    WorkspaceQueryPort,
)

logger = logging.getLogger(__name__)


def _union_by_id(*groups: list[Entity]) -> list[Entity]:
    seen: set[str] = set()
    merged: list[Entity] = []
    for group in groups:
        for entity in group:
            if entity.id not in seen:
                seen.add(entity.id)
                merged.append(entity)
    return merged


class WorkspaceQueryService(WorkspaceQueryPort):
    """Core implementation of WorkspaceQueryPort."""

    def __init__(
        self,
        store: DocumentStorePort,
        users: UserDirectoryPort,
        registry: ConnectionRegistryPort,
    ):
        """Initialize the query service.

        Args:
            store: DocumentStorePort implementation for reads.
            users: UserDirectoryPort for display-name resolution.
            registry: ConnectionRegistryPort consulted by live_collaborators.
        """
        self.store = store
        self.users = users
        self.registry = registry

    async def project_progress(self, project_id: str) -> ProjectProgress:
        """Share of the project's tasks whose status is completed.

        A project without tasks yields a progress whose percentage is
        None rather than a number.

        Raises:
            NotFound: If the project does not exist.
        """
        await self._get_project(project_id)
        tasks = await self.store.find(EntityKind.TASK, EntityFilter(project_id=project_id))
        done = sum(1 for task in tasks if task.status is TaskStatus.COMPLETED)
        return ProjectProgress(
            project_id=project_id, total_tasks=len(tasks), completed_tasks=done
        )

    async def resolve_collaborator_names(self, entity: Entity) -> list[CollaboratorView]:
        """Map each membership to the member's display name, in membership order.

        Raises:
            InconsistentReference: If a membership names a user the
                directory no longer knows. Callers decide whether to drop
                or placeholder such entries.
        """
        views = []
        for membership in entity.collaborators:
            user = await self.users.find_user(membership.user_id)
            if user is None:
                logger.warning(
                    f"Membership on {entity.kind.value} {entity.id} references "
                    f"unknown user {membership.user_id}",
                    extra={"entity_id": entity.id, "user_id": membership.user_id},
                )
                raise InconsistentReference(
                    f"Collaborator {membership.user_id} no longer exists"
                )
            views.append(
                CollaboratorView(
                    user_id=user.id, name=user.name, accepted=membership.accepted
                )
            )
        return views

    async def all_projects(self) -> list[EntityDetails]:
        """Every project in insertion order, with resolved collaborators.

        Raises:
            InconsistentReference: If any project has a dangling member.
        """
        details = []
        for project in await self.store.find(EntityKind.PROJECT):
            collaborators = await self.resolve_collaborator_names(project)
            details.append(
                EntityDetails(entity=project, collaborators=tuple(collaborators))
            )
        return details

    async def project_details(self, project_id: str) -> EntityDetails:
        project = await self._get_project(project_id)
        collaborators = await self.resolve_collaborator_names(project)
        return EntityDetails(entity=project, collaborators=tuple(collaborators))

    async def task_details(self, task_id: str) -> EntityDetails:
        task = await self.store.get(EntityKind.TASK, task_id)
        if task is None:
            raise NotFound("Task does not exist")
        collaborators = await self.resolve_collaborator_names(task)
        return EntityDetails(entity=task, collaborators=tuple(collaborators))

    async def project_tasks(self, project_id: str) -> list[Task]:
        await self._get_project(project_id)
        return await self.store.find(EntityKind.TASK, EntityFilter(project_id=project_id))

    async def projects_for_user(self, user_id: str) -> list[Project]:
        """Projects the user created, then projects they accepted.

        Pending invitations do not qualify a project.

        Raises:
            NotFound: If the user does not exist.
        """
        if await self.users.find_user(user_id) is None:
            raise NotFound("User does not exist")
        created = await self.store.find(
            EntityKind.PROJECT, EntityFilter(creator_id=user_id)
        )
        accepted = await self.store.find(
            EntityKind.PROJECT, EntityFilter(collaborator_id=user_id, accepted=True)
        )
        return _union_by_id(created, accepted)

    async def tasks_for_user(self, project_id: str, user_id: str) -> list[Task]:
        """Tasks of one project the user created or accepted.

        Raises:
            NotFound: If the project does not exist.
        """
        await self._get_project(project_id)
        created = await self.store.find(
            EntityKind.TASK, EntityFilter(project_id=project_id, creator_id=user_id)
        )
        accepted = await self.store.find(
            EntityKind.TASK,
            EntityFilter(project_id=project_id, collaborator_id=user_id, accepted=True),
        )
        return _union_by_id(created, accepted)

    async def live_collaborators(self, user_id: str) -> list[UserProfile]:
        """Collaborators of ``user_id`` who are connected right now.

        Collaborators are the accepted members of every project and task
        the user created or accepted, excluding the user. Only
        interactive (non-service) connections count. Ids the directory
        cannot resolve are skipped.

        Raises:
            NotFound: If the user does not exist.
        """
        if await self.users.find_user(user_id) is None:
            raise NotFound("User not found")

        collaborator_ids: set[str] = set()
        for kind in (EntityKind.TASK, EntityKind.PROJECT):
            created = await self.store.find(kind, EntityFilter(creator_id=user_id))
            accepted = await self.store.find(
                kind, EntityFilter(collaborator_id=user_id, accepted=True)
            )
            for entity in _union_by_id(created, accepted):
                collaborator_ids.update(entity.collaborators.accepted_ids())
        collaborator_ids.discard(user_id)

        online: list[str] = []
        for connection in tuple(self.registry.list_live()):
            if (
                not connection.is_service_client
                and connection.user_id in collaborator_ids
                and connection.user_id not in online
            ):
                online.append(connection.user_id)

        profiles = []
        for collaborator_id in online:
            profile = await self.users.find_user(collaborator_id)
            if profile is not None:
                profiles.append(profile)
        return profiles

    async def _get_project(self, project_id: str) -> Project:
        project = await self.store.get(EntityKind.PROJECT, project_id)
        if project is None:
            raise NotFound("Project does not exist")
        assert isinstance(project, Project)
        return project
