"""Request bodies accepted by the HTTP API.

Field names on the wire are camelCase (``creatorId``, ``collaboratorId``)
so existing clients keep working; snake_case names are accepted too.
Presence and type are checked here. Domain rules (blank strings, date
ordering, membership) are checked by the core services.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class DateRange(_Body):
    start: datetime
    end: datetime


class CreateProjectRequest(_Body):
    title: str
    description: str
    label: str
    dates: DateRange
    creator_id: str = Field(alias="creatorId")
    collaborators: list[str] = Field(default_factory=list)


class CreateTaskRequest(_Body):
    title: str
    description: str = ""
    dates: DateRange
    creator_id: str = Field(alias="creatorId")
    project_id: str = Field(alias="projectId")
    collaborators: list[str] = Field(default_factory=list)


class EditProjectRequest(_Body):
    title: str
    description: str
    label: str


class EditTaskRequest(_Body):
    title: str | None = None
    description: str | None = None
    status: str | None = None


class CompletionRequest(_Body):
    completed: bool


class AddCollaboratorRequest(_Body):
    collaborator_id: str = Field(alias="collaboratorId")


class DateChangeRequest(_Body):
    date: datetime


__all__ = [
    "AddCollaboratorRequest",
    "CompletionRequest",
    "CreateProjectRequest",
    "CreateTaskRequest",
    "DateChangeRequest",
    "DateRange",
    "EditProjectRequest",
    "EditTaskRequest",
]
