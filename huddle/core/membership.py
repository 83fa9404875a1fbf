"""Membership rules: implements ProjectManagementPort.

Guards every mutation of a project's or task's memberships and lifecycle
fields, persists accepted changes through the document store, and runs
the cross-entity cascades as explicit, named steps:

- cascade_collaborator_removal: a collaborator removed from a project
  loses the tasks they authored there and their memberships on the rest
- cascade_project_completion: completing a project completes its tasks

Cascades run after the triggering write succeeded. If a step fails the
earlier steps stay applied and CascadeIncomplete reports how far it got.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from .errors import (
    AlreadyCollaborator,
    CascadeIncomplete,
    DateConflict,
    NotFound,
    StorageWriteFailed,
    UserNotFound,
    ValidationError,
)
from .models import (
    DATE_FIELDS,
    CascadeReport,
    CollaboratorSet,
    CollaboratorView,
    DateField,
    Entity,
    EntityFilter,
    EntityKind,
    Project,
    Schedule,
    Task,
    TaskStatus,
)
from .ports import DocumentStorePort, ProjectManagementPort, UserDirectoryPort

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def _require_text(*values: str | None) -> None:
    if any(value is None or not value.strip() for value in values):
        raise ValidationError("Please provide all the fields")


def _ensure_written(count: int, operation: str) -> None:
    if count == 0:
        raise StorageWriteFailed(f"{operation} had no effect")


class MembershipService(ProjectManagementPort):
    """Core implementation of ProjectManagementPort.

    Every check here is a precondition read followed by a write; the
    membership writes themselves are conditional at the store, so two
    concurrent invitations of the same user cannot both succeed.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        users: UserDirectoryPort,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        """Initialize the membership service.

        Args:
            store: DocumentStorePort implementation for persistence.
            users: UserDirectoryPort used to validate invited user ids.
            clock: Source of creation timestamps.
            id_factory: Source of new entity ids.
        """
        self.store = store
        self.users = users
        self.clock = clock
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

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
        """Create a project.

        The creator becomes the first, accepted collaborator; every id in
        ``collaborator_ids`` receives a pending invitation.

        Raises:
            ValidationError: If a field is blank or start is after end.
            UserNotFound: If the creator or an invitee does not resolve.
            AlreadyCollaborator: If the invite list repeats a user.
        """
        _require_text(creator_id, title, description, label)
        if start is None or end is None:
            raise ValidationError("Please provide all the fields")
        schedule = Schedule(start=start, end=end, created=self.clock())
        collaborators = await self._initial_memberships(creator_id, collaborator_ids)

        project = Project(
            id=self.id_factory(),
            title=title.strip(),
            description=description.strip(),
            label=label.strip(),
            creator_id=creator_id,
            schedule=schedule,
            collaborators=collaborators,
        )
        await self.store.insert(project)

        logger.info(
            f"Project {project.id} created",
            extra={
                "project_id": project.id,
                "creator_id": creator_id,
                "invited": len(collaborators) - 1,
            },
        )
        return project

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
        """Create a task inside a project.

        Raises:
            ValidationError: If the title is blank, start is after end, or
                the creator is not an accepted project collaborator.
            NotFound: If the project does not exist.
            EntityCompleted: If the project is completed.
            DateConflict: If the task window leaves the project window.
            UserNotFound: If an invitee does not resolve.
        """
        _require_text(creator_id, title)
        if start is None or end is None:
            raise ValidationError("Please provide all the fields")
        project = await self._get_project(project_id)
        project.ensure_mutable()
        if not project.is_accepted_member(creator_id):
            raise ValidationError(
                "Task creator must be an accepted collaborator on the project"
            )

        schedule = Schedule(start=start, end=end, created=self.clock())
        if not project.schedule.contains(schedule):
            raise DateConflict("Task must be scheduled within its project's dates")
        collaborators = await self._initial_memberships(creator_id, collaborator_ids)

        task = Task(
            id=self.id_factory(),
            title=title.strip(),
            creator_id=creator_id,
            project_id=project.id,
            schedule=schedule,
            description=(description or "").strip(),
            collaborators=collaborators,
        )
        await self.store.insert(task)

        logger.info(
            f"Task {task.id} created in project {project.id}",
            extra={"task_id": task.id, "project_id": project.id, "creator_id": creator_id},
        )
        return task

    async def _initial_memberships(
        self, creator_id: str, collaborator_ids: Sequence[str]
    ) -> CollaboratorSet:
        if await self.users.find_user(creator_id) is None:
            raise UserNotFound("User does not exist")
        collaborators = CollaboratorSet()
        collaborators.add(creator_id, accepted=True)
        for user_id in collaborator_ids:
            if user_id in collaborators:
                raise AlreadyCollaborator("Collaborator already added")
            if await self.users.find_user(user_id) is None:
                raise UserNotFound("User does not exist")
            collaborators.add(user_id)
        return collaborators

    # ------------------------------------------------------------------
    # Edits and deletion
    # ------------------------------------------------------------------

    async def edit_project(
        self, project_id: str, title: str, description: str, label: str
    ) -> Project:
        """Replace a project's title, description and label."""
        project = await self._get_project(project_id)
        project.ensure_mutable()
        _require_text(title, description, label)

        changes = {
            "title": title.strip(),
            "description": description.strip(),
            "label": label.strip(),
        }
        _ensure_written(
            await self.store.update(EntityKind.PROJECT, project_id, changes),
            "Project update",
        )
        project.title = changes["title"]
        project.description = changes["description"]
        project.label = changes["label"]
        return project

    async def edit_task(
        self,
        task_id: str,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> Task:
        """Update any of a task's title, description and status.

        Omitted (None) fields are left unchanged.
        """
        task = await self._get_task(task_id)
        task.ensure_mutable()

        changes: dict[str, object] = {}
        if title is not None:
            _require_text(title)
            changes["title"] = title.strip()
        if description is not None:
            changes["description"] = description.strip()
        if status is not None:
            try:
                changes["status"] = TaskStatus(status)
            except ValueError:
                raise ValidationError(f"Invalid task status: {status!r}") from None
        if not changes:
            raise ValidationError("Please provide at least one field to update")

        _ensure_written(
            await self.store.update(EntityKind.TASK, task_id, changes),
            "Task update",
        )
        for name, value in changes.items():
            setattr(task, name, value)
        return task

    async def delete_project(self, project_id: str) -> None:
        """Delete a project. Its tasks are not deleted."""
        project = await self._get_project(project_id)
        project.ensure_mutable()
        _ensure_written(
            await self.store.delete(EntityKind.PROJECT, project_id), "Project deletion"
        )
        logger.info(f"Project {project_id} deleted", extra={"project_id": project_id})

    async def delete_task(self, task_id: str) -> None:
        task = await self._get_task(task_id)
        task.ensure_mutable()
        _ensure_written(await self.store.delete(EntityKind.TASK, task_id), "Task deletion")
        logger.info(f"Task {task_id} deleted", extra={"task_id": task_id})

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    async def add_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> CollaboratorView:
        """Invite a user to a project or task.

        Raises:
            NotFound: If the entity does not exist.
            EntityCompleted: If the entity is completed.
            AlreadyCollaborator: If the user already holds a membership,
                including when a concurrent invitation won the insert.
            UserNotFound: If the user id does not resolve.
        """
        entity = await self._get(kind, entity_id)
        entity.ensure_mutable()
        if user_id in entity.collaborators:
            raise AlreadyCollaborator("Collaborator already added")
        user = await self.users.find_user(user_id)
        if user is None:
            raise UserNotFound("User does not exist")

        inserted = await self.store.add_collaborator(kind, entity_id, user_id)
        if not inserted:
            raise AlreadyCollaborator("Collaborator already added")

        logger.info(
            f"User {user_id} invited to {kind.value} {entity_id}",
            extra={"entity_kind": kind.value, "entity_id": entity_id, "user_id": user_id},
        )
        return CollaboratorView(user_id=user.id, name=user.name, accepted=False)

    async def remove_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> CascadeReport:
        """Remove a membership in any state.

        Removing a project collaborator also runs
        cascade_collaborator_removal for that project.

        Raises:
            NotFound: If the entity or the membership does not exist.
            EntityCompleted: If the entity is completed.
            ValidationError: If ``user_id`` is the entity's creator.
            StorageWriteFailed: If the store removed nothing.
            CascadeIncomplete: If the task cascade stopped part-way.
        """
        entity = await self._get(kind, entity_id)
        entity.ensure_mutable()
        if user_id == entity.creator_id:
            raise ValidationError(f"The creator cannot be removed from the {kind.value}")
        if user_id not in entity.collaborators:
            raise NotFound("User is not a collaborator")

        _ensure_written(
            await self.store.remove_collaborator(kind, entity_id, user_id),
            "Collaborator removal",
        )
        report = CascadeReport(entity_kind=kind, entity_id=entity_id)
        report.steps_completed.append("remove_membership")

        logger.info(
            f"User {user_id} removed from {kind.value} {entity_id}",
            extra={"entity_kind": kind.value, "entity_id": entity_id, "user_id": user_id},
        )

        if kind is EntityKind.PROJECT:
            await self.cascade_collaborator_removal(entity_id, user_id, report)
        return report

    async def cascade_collaborator_removal(
        self, project_id: str, user_id: str, report: CascadeReport | None = None
    ) -> CascadeReport:
        """Strip a removed project collaborator from the project's tasks.

        Steps, in order:
        1. delete every task in the project created by ``user_id``
        2. delete ``user_id``'s membership from every remaining task

        Raises:
            CascadeIncomplete: If a step fails; the report lists the
                steps that were applied.
        """
        if report is None:
            report = CascadeReport(entity_kind=EntityKind.PROJECT, entity_id=project_id)
        try:
            report.tasks_deleted = await self.store.delete_many(
                EntityKind.TASK, EntityFilter(project_id=project_id, creator_id=user_id)
            )
            report.steps_completed.append("delete_authored_tasks")

            report.tasks_updated = await self.store.remove_collaborator_many(
                EntityKind.TASK, EntityFilter(project_id=project_id), user_id
            )
            report.steps_completed.append("strip_task_memberships")
        except Exception as e:
            logger.error(
                f"Collaborator removal cascade failed for project {project_id}: {e}",
                exc_info=True,
                extra={"project_id": project_id, "steps": list(report.steps_completed)},
            )
            raise CascadeIncomplete(
                f"Collaborator removal cascade stopped after {report.steps_completed}",
                report,
            ) from e

        logger.debug(
            f"Collaborator removal cascade finished for project {project_id}",
            extra={
                "project_id": project_id,
                "tasks_deleted": report.tasks_deleted,
                "tasks_updated": report.tasks_updated,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def set_completion(
        self, kind: EntityKind, entity_id: str, completed: bool
    ) -> CascadeReport:
        """Set an entity's completion flag.

        The flag can be written on a completed entity (this is how a
        completed entity is reopened). A project transitioning to
        completed runs cascade_project_completion.
        """
        await self._get(kind, entity_id)
        _ensure_written(
            await self.store.update(kind, entity_id, {"completed": bool(completed)}),
            "Completion update",
        )
        report = CascadeReport(entity_kind=kind, entity_id=entity_id)
        report.steps_completed.append("set_completion")

        logger.info(
            f"{kind.value.capitalize()} {entity_id} completion set to {bool(completed)}",
            extra={"entity_kind": kind.value, "entity_id": entity_id},
        )

        if kind is EntityKind.PROJECT and completed:
            await self.cascade_project_completion(entity_id, report)
        return report

    async def cascade_project_completion(
        self, project_id: str, report: CascadeReport | None = None
    ) -> CascadeReport:
        """Mark every task of a project completed.

        Task completion is not re-validated first: a completed project
        cannot keep open tasks.
        """
        if report is None:
            report = CascadeReport(entity_kind=EntityKind.PROJECT, entity_id=project_id)
        try:
            report.tasks_updated = await self.store.update_many(
                EntityKind.TASK, EntityFilter(project_id=project_id), {"completed": True}
            )
            report.steps_completed.append("complete_tasks")
        except Exception as e:
            logger.error(
                f"Completion cascade failed for project {project_id}: {e}",
                exc_info=True,
            )
            raise CascadeIncomplete(
                f"Completion cascade stopped after {report.steps_completed}", report
            ) from e
        return report

    async def set_date(
        self, kind: EntityKind, entity_id: str, which: DateField, value: datetime
    ) -> Entity:
        """Move the start or end date of a project or task.

        Raises:
            ValidationError: If ``which`` is not start/end, no date is
                given, or the move would put start after end.
            NotFound: If the entity does not exist.
            EntityCompleted: If the entity is completed.
            DateConflict: If a project would no longer contain one of its
                tasks, or a task would leave its project's window.
        """
        if which not in DATE_FIELDS:
            raise ValidationError("Invalid date type")
        if value is None:
            raise ValidationError("Please provide a date")
        entity = await self._get(kind, entity_id)
        entity.ensure_mutable()
        schedule = entity.schedule.with_date(which, value)

        if isinstance(entity, Project):
            tasks = await self.store.find(EntityKind.TASK, EntityFilter(project_id=entity_id))
            for task in tasks:
                if which == "start" and schedule.start > task.schedule.start:
                    raise DateConflict("Project cannot start after a task has started")
                if which == "end" and schedule.end < task.schedule.end:
                    raise DateConflict("Project cannot end before a task has ended")
        else:
            project = await self.store.get(EntityKind.PROJECT, entity.project_id)
            if project is not None and not project.schedule.contains(schedule):
                raise DateConflict("Task must be scheduled within its project's dates")

        _ensure_written(
            await self.store.update(kind, entity_id, {which: getattr(schedule, which)}),
            "Date update",
        )
        entity.schedule = schedule
        return entity

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get(self, kind: EntityKind, entity_id: str) -> Entity:
        entity = await self.store.get(kind, entity_id)
        if entity is None:
            raise NotFound(f"{kind.value.capitalize()} does not exist")
        return entity

    async def _get_project(self, project_id: str) -> Project:
        project = await self._get(EntityKind.PROJECT, project_id)
        assert isinstance(project, Project)
        return project

    async def _get_task(self, task_id: str) -> Task:
        task = await self._get(EntityKind.TASK, task_id)
        assert isinstance(task, Task)
        return task
