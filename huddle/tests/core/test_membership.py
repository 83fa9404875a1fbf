"""Unit tests for MembershipService (membership rules and cascades)."""

from datetime import UTC, datetime, timedelta

import pytest

from huddle.core.errors import (
    AlreadyCollaborator,
    CascadeIncomplete,
    DateConflict,
    EntityCompleted,
    NotFound,
    StorageWriteFailed,
    UserNotFound,
    ValidationError,
)
from huddle.core.membership import MembershipService
from huddle.core.models import (
    CollaboratorSet,
    EntityFilter,
    EntityKind,
    Membership,
    Project,
    Schedule,
    Task,
    TaskStatus,
)
from huddle.tests.fakes import FakeDocumentStorePort, FakeUserDirectoryPort

T0 = datetime(2024, 3, 1, tzinfo=UTC)


def day(n: int) -> datetime:
    return T0 + timedelta(days=n)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def store() -> FakeDocumentStorePort:
    return FakeDocumentStorePort()


@pytest.fixture
def users() -> FakeUserDirectoryPort:
    directory = FakeUserDirectoryPort()
    for user_id in ("alice", "bob", "carol"):
        directory.add(user_id)
    return directory


@pytest.fixture
def service(store, users) -> MembershipService:
    ids = iter(f"id-{n}" for n in range(1, 1000))
    return MembershipService(store, users, clock=lambda: T0, id_factory=lambda: next(ids))


@pytest.fixture
def project(store) -> Project:
    """Project p1 (days 0-10) owned by alice; bob accepted, carol pending."""
    project = Project(
        id="p1",
        title="Launch",
        description="Ship it",
        label="work",
        creator_id="alice",
        schedule=Schedule(start=day(0), end=day(10), created=T0),
        collaborators=CollaboratorSet({"bob": True, "carol": False}),
    )
    store.seed(project)
    return project


def seed_task(
    store: FakeDocumentStorePort,
    task_id: str,
    creator_id: str,
    start: int = 2,
    end: int = 5,
    members: dict[str, bool] | None = None,
    status: TaskStatus = TaskStatus.OPEN,
) -> Task:
    task = Task(
        id=task_id,
        title=f"Task {task_id}",
        creator_id=creator_id,
        project_id="p1",
        schedule=Schedule(start=day(start), end=day(end), created=T0),
        status=status,
        collaborators=CollaboratorSet(members or {}),
    )
    store.seed(task)
    return task


# ============================================================================
# Creation
# ============================================================================


class TestCreateProject:
    @pytest.mark.asyncio
    async def test_creator_is_first_accepted_collaborator(self, service, store):
        project = await service.create_project(
            "alice", "Launch", "Ship it", "work", day(0), day(10), ["bob", "carol"]
        )

        stored = store.stored(EntityKind.PROJECT, project.id)
        assert list(stored.collaborators) == [
            Membership("alice", True),
            Membership("bob", False),
            Membership("carol", False),
        ]
        assert stored.created_at == T0

    @pytest.mark.asyncio
    async def test_blank_field_rejected(self, service, store):
        with pytest.raises(ValidationError, match="Please provide all the fields"):
            await service.create_project("alice", "  ", "d", "l", day(0), day(1))
        assert store.calls_to("insert") == []

    @pytest.mark.asyncio
    async def test_start_after_end_rejected(self, service):
        with pytest.raises(ValidationError, match="Start date cannot be after end date"):
            await service.create_project("alice", "t", "d", "l", day(5), day(1))

    @pytest.mark.asyncio
    async def test_unknown_invitee_rejected(self, service, store):
        with pytest.raises(UserNotFound):
            await service.create_project("alice", "t", "d", "l", day(0), day(1), ["zed"])
        assert store.calls_to("insert") == []

    @pytest.mark.asyncio
    async def test_duplicate_invitee_rejected(self, service):
        with pytest.raises(AlreadyCollaborator):
            await service.create_project(
                "alice", "t", "d", "l", day(0), day(1), ["bob", "bob"]
            )

    @pytest.mark.asyncio
    async def test_inviting_creator_rejected(self, service):
        with pytest.raises(AlreadyCollaborator):
            await service.create_project("alice", "t", "d", "l", day(0), day(1), ["alice"])


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_task_nested_in_project(self, service, store, project):
        task = await service.create_task("bob", "p1", "Draft", day(1), day(3), "", ["alice"])

        stored = store.stored(EntityKind.TASK, task.id)
        assert stored.project_id == "p1"
        assert list(stored.collaborators) == [
            Membership("bob", True),
            Membership("alice", False),
        ]
        assert stored.status is TaskStatus.OPEN

    @pytest.mark.asyncio
    async def test_window_outside_project_rejected(self, service, project):
        with pytest.raises(DateConflict):
            await service.create_task("alice", "p1", "Late", day(8), day(12))

    @pytest.mark.asyncio
    async def test_pending_collaborator_cannot_create(self, service, project):
        with pytest.raises(ValidationError):
            await service.create_task("carol", "p1", "Sneaky", day(1), day(2))

    @pytest.mark.asyncio
    async def test_missing_project(self, service):
        with pytest.raises(NotFound):
            await service.create_task("alice", "nope", "t", day(1), day(2))

    @pytest.mark.asyncio
    async def test_completed_project_rejects_new_tasks(self, service, store, project):
        await store.update(EntityKind.PROJECT, "p1", {"completed": True})
        with pytest.raises(EntityCompleted):
            await service.create_task("alice", "p1", "t", day(1), day(2))


# ============================================================================
# Edits and deletion
# ============================================================================


class TestEditsAndDeletion:
    @pytest.mark.asyncio
    async def test_edit_project(self, service, store, project):
        updated = await service.edit_project("p1", "New", "Desc", "home")
        assert updated.title == "New"
        assert store.stored(EntityKind.PROJECT, "p1").label == "home"

    @pytest.mark.asyncio
    async def test_edit_task_status(self, service, store, project):
        seed_task(store, "t1", "alice")
        task = await service.edit_task("t1", status="completed")
        assert task.status is TaskStatus.COMPLETED
        assert store.stored(EntityKind.TASK, "t1").status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_edit_task_invalid_status(self, service, store, project):
        seed_task(store, "t1", "alice")
        with pytest.raises(ValidationError):
            await service.edit_task("t1", status="done-ish")

    @pytest.mark.asyncio
    async def test_store_reporting_no_effect_surfaces(self, service, store, project):
        store.no_effect.add("update")
        with pytest.raises(StorageWriteFailed):
            await service.edit_project("p1", "New", "Desc", "home")

    @pytest.mark.asyncio
    async def test_delete_project_does_not_cascade(self, service, store, project):
        seed_task(store, "t1", "alice")
        await service.delete_project("p1")
        assert store.stored(EntityKind.PROJECT, "p1") is None
        assert store.stored(EntityKind.TASK, "t1") is not None

    @pytest.mark.asyncio
    async def test_completed_entity_rejects_mutations(self, service, store, project):
        await service.set_completion(EntityKind.PROJECT, "p1", True)

        with pytest.raises(EntityCompleted):
            await service.edit_project("p1", "t", "d", "l")
        with pytest.raises(EntityCompleted):
            await service.add_collaborator(EntityKind.PROJECT, "p1", "carol")
        with pytest.raises(EntityCompleted):
            await service.remove_collaborator(EntityKind.PROJECT, "p1", "bob")
        with pytest.raises(EntityCompleted):
            await service.set_date(EntityKind.PROJECT, "p1", "end", day(20))
        with pytest.raises(EntityCompleted):
            await service.delete_project("p1")

    @pytest.mark.asyncio
    async def test_completed_task_rejects_mutations(self, service, store, project):
        seed_task(store, "t1", "alice", members={"bob": True})
        await service.set_completion(EntityKind.TASK, "t1", True)

        with pytest.raises(EntityCompleted):
            await service.edit_task("t1", title="Renamed")
        with pytest.raises(EntityCompleted):
            await service.add_collaborator(EntityKind.TASK, "t1", "carol")
        with pytest.raises(EntityCompleted):
            await service.remove_collaborator(EntityKind.TASK, "t1", "bob")
        with pytest.raises(EntityCompleted):
            await service.set_date(EntityKind.TASK, "t1", "end", day(6))
        with pytest.raises(EntityCompleted):
            await service.delete_task("t1")

        task = store.stored(EntityKind.TASK, "t1")
        assert task.title == "Task t1"
        assert [m.user_id for m in task.collaborators] == ["alice", "bob"]


# ============================================================================
# Memberships
# ============================================================================


class TestAddCollaborator:
    @pytest.mark.asyncio
    async def test_adds_pending_membership(self, service, store, users, project):
        users.add("dave", "Dave")
        view = await service.add_collaborator(EntityKind.PROJECT, "p1", "dave")

        assert view.name == "Dave"
        assert view.accepted is False
        assert store.stored(EntityKind.PROJECT, "p1").collaborators.get("dave") == Membership(
            "dave", False
        )

    @pytest.mark.asyncio
    async def test_adding_same_user_twice_fails(self, service, users, project):
        users.add("dave")
        await service.add_collaborator(EntityKind.PROJECT, "p1", "dave")
        with pytest.raises(AlreadyCollaborator):
            await service.add_collaborator(EntityKind.PROJECT, "p1", "dave")

    @pytest.mark.asyncio
    async def test_pending_member_counts_as_present(self, service, project):
        with pytest.raises(AlreadyCollaborator):
            await service.add_collaborator(EntityKind.PROJECT, "p1", "carol")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, project):
        with pytest.raises(UserNotFound):
            await service.add_collaborator(EntityKind.PROJECT, "p1", "zed")

    @pytest.mark.asyncio
    async def test_lost_insert_race_reports_already_collaborator(
        self, service, store, users, project
    ):
        users.add("dave")
        # Another request inserted dave between our read and our write.
        store.entities[EntityKind.PROJECT]["p1"].collaborators.add("dave")
        original_get = store.get

        async def stale_get(kind, entity_id):
            entity = await original_get(kind, entity_id)
            entity.collaborators.remove("dave")
            return entity

        store.get = stale_get  # type: ignore[method-assign]
        with pytest.raises(AlreadyCollaborator):
            await service.add_collaborator(EntityKind.PROJECT, "p1", "dave")


class TestRemoveCollaborator:
    @pytest.mark.asyncio
    async def test_project_removal_cascades_to_tasks(self, service, store, project):
        seed_task(store, "t-bob", "bob")
        seed_task(store, "t-alice", "alice", members={"bob": True, "carol": False})
        seed_task(store, "t-carol", "alice", members={"carol": True})

        report = await service.remove_collaborator(EntityKind.PROJECT, "p1", "bob")

        assert "bob" not in store.stored(EntityKind.PROJECT, "p1").collaborators
        assert store.stored(EntityKind.TASK, "t-bob") is None
        assert "bob" not in store.stored(EntityKind.TASK, "t-alice").collaborators
        assert "carol" in store.stored(EntityKind.TASK, "t-alice").collaborators
        assert report.tasks_deleted == 1
        assert report.tasks_updated == 1
        assert report.steps_completed == [
            "remove_membership",
            "delete_authored_tasks",
            "strip_task_memberships",
        ]

    @pytest.mark.asyncio
    async def test_task_removal_does_not_cascade(self, service, store, project):
        seed_task(store, "t1", "alice", members={"bob": True})
        report = await service.remove_collaborator(EntityKind.TASK, "t1", "bob")

        assert "bob" not in store.stored(EntityKind.TASK, "t1").collaborators
        assert store.calls_to("delete_many") == []
        assert report.steps_completed == ["remove_membership"]

    @pytest.mark.asyncio
    async def test_creator_cannot_be_removed(self, service, project):
        with pytest.raises(ValidationError):
            await service.remove_collaborator(EntityKind.PROJECT, "p1", "alice")

    @pytest.mark.asyncio
    async def test_non_member(self, service, users, project):
        users.add("dave")
        with pytest.raises(NotFound, match="User is not a collaborator"):
            await service.remove_collaborator(EntityKind.PROJECT, "p1", "dave")

    @pytest.mark.asyncio
    async def test_cascade_failure_reports_partial_progress(self, service, store, project):
        seed_task(store, "t-bob", "bob")
        seed_task(store, "t-alice", "alice", members={"bob": True})
        store.fail_on["remove_collaborator_many"] = RuntimeError("disk full")

        with pytest.raises(CascadeIncomplete) as exc_info:
            await service.remove_collaborator(EntityKind.PROJECT, "p1", "bob")

        report = exc_info.value.report
        assert report.steps_completed == ["remove_membership", "delete_authored_tasks"]
        assert store.stored(EntityKind.TASK, "t-bob") is None
        assert "bob" in store.stored(EntityKind.TASK, "t-alice").collaborators
        assert isinstance(exc_info.value, StorageWriteFailed)
        assert exc_info.value.status_code == 500


# ============================================================================
# Lifecycle
# ============================================================================


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completing_project_completes_tasks(self, service, store, project):
        seed_task(store, "t1", "alice")
        seed_task(store, "t2", "bob")

        report = await service.set_completion(EntityKind.PROJECT, "p1", True)

        assert store.stored(EntityKind.PROJECT, "p1").completed
        assert store.stored(EntityKind.TASK, "t1").completed
        assert store.stored(EntityKind.TASK, "t2").completed
        assert report.tasks_updated == 2

    @pytest.mark.asyncio
    async def test_reopening_does_not_touch_tasks(self, service, store, project):
        seed_task(store, "t1", "alice")
        await service.set_completion(EntityKind.PROJECT, "p1", True)
        await service.set_completion(EntityKind.PROJECT, "p1", False)

        assert not store.stored(EntityKind.PROJECT, "p1").completed
        assert store.stored(EntityKind.TASK, "t1").completed

    @pytest.mark.asyncio
    async def test_missing_entity(self, service):
        with pytest.raises(NotFound):
            await service.set_completion(EntityKind.TASK, "nope", True)


class TestSetDate:
    @pytest.mark.asyncio
    async def test_project_start_after_task_start_conflicts(self, service, store, project):
        seed_task(store, "t1", "alice", start=2, end=5)
        with pytest.raises(DateConflict, match="cannot start after a task has started"):
            await service.set_date(EntityKind.PROJECT, "p1", "start", day(3))

    @pytest.mark.asyncio
    async def test_project_end_before_task_end_conflicts(self, service, store, project):
        seed_task(store, "t1", "alice", start=2, end=5)
        with pytest.raises(DateConflict, match="cannot end before a task has ended"):
            await service.set_date(EntityKind.PROJECT, "p1", "end", day(4))

    @pytest.mark.asyncio
    async def test_project_move_within_task_bounds(self, service, store, project):
        seed_task(store, "t1", "alice", start=2, end=5)
        await service.set_date(EntityKind.PROJECT, "p1", "start", day(1))
        assert store.stored(EntityKind.PROJECT, "p1").schedule.start == day(1)

    @pytest.mark.asyncio
    async def test_task_leaving_project_window_conflicts(self, service, store, project):
        seed_task(store, "t1", "alice", start=2, end=5)
        with pytest.raises(DateConflict):
            await service.set_date(EntityKind.TASK, "t1", "end", day(11))

    @pytest.mark.asyncio
    async def test_inverting_window_rejected(self, service, store, project):
        with pytest.raises(ValidationError):
            await service.set_date(EntityKind.PROJECT, "p1", "start", day(11))

    @pytest.mark.asyncio
    async def test_unknown_date_field(self, service, project):
        with pytest.raises(ValidationError, match="Invalid date type"):
            await service.set_date(EntityKind.PROJECT, "p1", "middle", day(1))  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_only_matching_tasks_are_checked(self, service, store, project):
        seed_task(store, "t1", "alice", start=2, end=5)
        await service.set_date(EntityKind.PROJECT, "p1", "end", day(5))
        assert store.calls_to("find")[-1] == (
            EntityKind.TASK,
            EntityFilter(project_id="p1"),
        )
