"""Unit tests for domain models and the membership state machine."""

from datetime import UTC, datetime, timedelta

import pytest

from huddle.core.errors import (
    AlreadyAccepted,
    AlreadyCollaborator,
    EntityCompleted,
    NotFound,
    ValidationError,
)
from huddle.core.models import (
    CollaborationEvent,
    CollaboratorSet,
    EntityFilter,
    EntityKind,
    EventType,
    Invitation,
    Membership,
    Project,
    ProjectProgress,
    Schedule,
    Task,
    TaskStatus,
    UserProfile,
    WireMessage,
)

T0 = datetime(2024, 3, 1, tzinfo=UTC)


def make_schedule(start_day: int = 0, end_day: int = 10) -> Schedule:
    return Schedule(
        start=T0 + timedelta(days=start_day),
        end=T0 + timedelta(days=end_day),
        created=T0,
    )


# ============================================================================
# CollaboratorSet
# ============================================================================


class TestCollaboratorSet:
    def test_add_then_accept(self):
        members = CollaboratorSet()
        members.add("bob")
        assert members.get("bob") == Membership("bob", False)

        members.accept("bob")
        assert members.get("bob") == Membership("bob", True)

    def test_add_twice_raises(self):
        members = CollaboratorSet()
        members.add("bob")
        with pytest.raises(AlreadyCollaborator):
            members.add("bob")

    def test_add_accepted_user_again_raises(self):
        members = CollaboratorSet({"bob": True})
        with pytest.raises(AlreadyCollaborator):
            members.add("bob")

    def test_accept_twice_raises_already_accepted(self):
        members = CollaboratorSet({"bob": False})
        members.accept("bob")
        with pytest.raises(AlreadyAccepted):
            members.accept("bob")

    def test_accept_absent_user_raises_not_found(self):
        with pytest.raises(NotFound, match="User not invited"):
            CollaboratorSet().accept("bob")

    def test_decline_deletes_pending_membership(self):
        members = CollaboratorSet({"bob": False})
        members.decline("bob")
        assert "bob" not in members
        with pytest.raises(NotFound):
            members.accept("bob")

    def test_decline_accepted_membership_rejected(self):
        members = CollaboratorSet({"bob": True})
        with pytest.raises(AlreadyAccepted):
            members.decline("bob")
        assert "bob" in members

    def test_remove_works_in_any_state(self):
        members = CollaboratorSet({"bob": True, "carol": False})
        members.remove("bob")
        members.remove("carol")
        assert len(members) == 0

    def test_insertion_order_is_preserved(self):
        members = CollaboratorSet({"a": True, "b": False, "c": True})
        assert [m.user_id for m in members] == ["a", "b", "c"]
        assert members.accepted_ids() == ["a", "c"]
        assert members.pending_ids() == ["b"]

    def test_ensure_owner_moves_creator_first_and_accepts(self):
        members = CollaboratorSet({"bob": False, "alice": False})
        members.ensure_owner("alice")
        assert list(members)[0] == Membership("alice", True)
        assert members.get("bob") == Membership("bob", False)

    def test_copy_is_independent(self):
        members = CollaboratorSet({"bob": False})
        clone = members.copy()
        clone.accept("bob")
        assert members.get("bob").accepted is False


# ============================================================================
# Schedule
# ============================================================================


class TestSchedule:
    def test_start_after_end_rejected(self):
        with pytest.raises(ValidationError, match="Start date cannot be after end date"):
            Schedule(start=T0 + timedelta(days=2), end=T0, created=T0)

    def test_naive_datetimes_are_treated_as_utc(self):
        schedule = Schedule(
            start=datetime(2024, 1, 1), end=datetime(2024, 1, 2), created=datetime(2024, 1, 1)
        )
        assert schedule.start.tzinfo is UTC

    def test_with_date_validates_window(self):
        schedule = make_schedule(0, 10)
        assert schedule.with_date("end", T0 + timedelta(days=5)).end == T0 + timedelta(days=5)
        with pytest.raises(ValidationError):
            schedule.with_date("start", T0 + timedelta(days=11))

    def test_with_date_rejects_unknown_field(self):
        with pytest.raises(ValidationError, match="Invalid date type"):
            make_schedule().with_date("middle", T0)  # type: ignore[arg-type]

    def test_contains(self):
        outer = make_schedule(0, 10)
        assert outer.contains(make_schedule(2, 8))
        assert outer.contains(make_schedule(0, 10))
        assert not outer.contains(make_schedule(-1, 5))
        assert not outer.contains(make_schedule(5, 11))


# ============================================================================
# Project / Task
# ============================================================================


class TestEntities:
    def test_project_always_contains_creator_as_accepted(self):
        project = Project(
            id="p1",
            title="Launch",
            description="d",
            label="work",
            creator_id="alice",
            schedule=make_schedule(),
            collaborators=CollaboratorSet({"bob": False}),
        )
        assert list(project.collaborators)[0] == Membership("alice", True)
        assert project.is_accepted_member("alice")
        assert not project.is_accepted_member("bob")

    def test_completed_entity_is_frozen(self):
        project = Project(
            id="p1", title="t", description="d", label="l",
            creator_id="alice", schedule=make_schedule(), completed=True,
        )
        with pytest.raises(EntityCompleted, match="Project is already completed"):
            project.ensure_mutable()

    def test_task_status_parsed_from_string(self):
        task = Task(
            id="t1", title="t", creator_id="alice", project_id="p1",
            schedule=make_schedule(), status="in-progress",  # type: ignore[arg-type]
        )
        assert task.status is TaskStatus.IN_PROGRESS
        assert task.kind is EntityKind.TASK

    def test_entity_kind_parse(self):
        assert EntityKind.parse("Task") is EntityKind.TASK
        with pytest.raises(ValidationError):
            EntityKind.parse("milestone")

    def test_invitation_from_entity_uses_creation_time(self):
        task = Task(
            id="t1", title="Write docs", creator_id="alice", project_id="p1",
            schedule=make_schedule(),
        )
        invitation = Invitation.from_entity(task)
        assert invitation.kind is EntityKind.TASK
        assert invitation.created_at == T0
        assert invitation.title == "Write docs"


# ============================================================================
# Progress
# ============================================================================


class TestProjectProgress:
    def test_half_completed(self):
        progress = ProjectProgress(project_id="p1", total_tasks=2, completed_tasks=1)
        assert progress.defined
        assert progress.percentage == 50

    def test_zero_tasks_is_undefined(self):
        progress = ProjectProgress(project_id="p1", total_tasks=0, completed_tasks=0)
        assert not progress.defined
        assert progress.percentage is None

    def test_impossible_counts_rejected(self):
        with pytest.raises(ValueError):
            ProjectProgress(project_id="p1", total_tasks=1, completed_tasks=2)


# ============================================================================
# Events and wire messages
# ============================================================================


class TestCollaborationEvent:
    def test_recipients_are_accepted_members_minus_actor(self):
        project = Project(
            id="p1", title="Launch", description="d", label="l",
            creator_id="alice", schedule=make_schedule(),
            collaborators=CollaboratorSet({"bob": True, "carol": False, "dave": True}),
        )
        event = CollaborationEvent.for_entity(
            EventType.COLLABORATOR_ACCEPTED, project, UserProfile("dave", "Dave"), T0
        )
        assert event.recipients() == frozenset({"alice", "bob"})

    def test_describe(self):
        project = Project(
            id="p1", title="Launch", description="d", label="l",
            creator_id="alice", schedule=make_schedule(),
        )
        event = CollaborationEvent.for_entity(
            EventType.COLLABORATOR_DECLINED, project, UserProfile("bob", "Bob"), T0
        )
        assert event.describe() == "Bob has declined the invitation to collaborate on Launch"

    def test_wire_message_payloads(self):
        assert WireMessage.update_data().to_dict() == {"type": "UPDATE_DATA"}
        assert WireMessage.notification("hi").to_dict() == {
            "type": "NOTIFICATION",
            "message": "hi",
        }


class TestEntityFilter:
    def test_accepted_requires_collaborator(self):
        with pytest.raises(ValueError):
            EntityFilter(accepted=True)

    def test_matches_membership_state(self):
        task = Task(
            id="t1", title="t", creator_id="alice", project_id="p1",
            schedule=make_schedule(), collaborators=CollaboratorSet({"bob": False}),
        )
        assert EntityFilter(collaborator_id="bob", accepted=False).matches(task)
        assert not EntityFilter(collaborator_id="bob", accepted=True).matches(task)
        assert EntityFilter(project_id="p1", creator_id="alice").matches(task)
        assert not EntityFilter(project_id="p2").matches(task)
