"""Conversion of core models into JSON-ready records."""

from collections.abc import Sequence
from typing import Any

from huddle.core.models import (
    CascadeReport,
    CollaboratorView,
    Entity,
    EntityDetails,
    Invitation,
    Project,
    ProjectProgress,
    UserProfile,
)


def collaborator_to_dict(view: CollaboratorView) -> dict[str, Any]:
    return {"id": view.user_id, "name": view.name, "accepted": view.accepted}


def entity_to_dict(
    entity: Entity, collaborators: Sequence[CollaboratorView] | None = None
) -> dict[str, Any]:
    """Render a project or task.

    When resolved ``collaborators`` are given they replace the raw
    memberships, adding each member's display name.
    """
    record: dict[str, Any] = {
        "id": entity.id,
        "type": entity.kind.value,
        "title": entity.title,
        "description": entity.description,
        "creatorId": entity.creator_id,
        "dates": {
            "start": entity.schedule.start.isoformat(),
            "end": entity.schedule.end.isoformat(),
            "created": entity.schedule.created.isoformat(),
        },
        "completed": entity.completed,
    }
    if isinstance(entity, Project):
        record["label"] = entity.label
    else:
        record["projectId"] = entity.project_id
        record["status"] = entity.status.value

    if collaborators is None:
        record["collaborators"] = [
            {"id": m.user_id, "accepted": m.accepted} for m in entity.collaborators
        ]
    else:
        record["collaborators"] = [collaborator_to_dict(c) for c in collaborators]
    return record


def details_to_dict(details: EntityDetails) -> dict[str, Any]:
    return entity_to_dict(details.entity, details.collaborators)


def invitation_to_dict(invitation: Invitation) -> dict[str, Any]:
    return {
        "type": invitation.kind.value,
        "id": invitation.entity_id,
        "title": invitation.title,
        "creatorId": invitation.creator_id,
        "created": invitation.created_at.isoformat(),
    }


def progress_to_dict(progress: ProjectProgress) -> dict[str, Any]:
    # progress is null for a project without tasks
    return {
        "projectId": progress.project_id,
        "progress": progress.percentage,
        "totalTasks": progress.total_tasks,
        "completedTasks": progress.completed_tasks,
    }


def user_to_dict(user: UserProfile) -> dict[str, Any]:
    return {"id": user.id, "name": user.name}


def cascade_to_dict(report: CascadeReport) -> dict[str, Any]:
    return {
        "tasksDeleted": report.tasks_deleted,
        "tasksUpdated": report.tasks_updated,
        "steps": list(report.steps_completed),
    }
