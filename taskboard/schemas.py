"""Wire payloads for the JSON API.

These models are written out by hand instead of being derived from the
table classes in ``models``, so a column change never silently alters what
clients may send or receive. Field names are snake_case in Python and
camelCase on the wire.
"""

import re
from datetime import date, datetime
from typing import Annotated, Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Priority

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _reject_null(value: Any) -> Any:
    # Defaults are not validated, so this only fires on an explicit null.
    if value is None:
        raise ValueError("must not be null")
    return value


def _parse_deadline(value: Any) -> Any:
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValueError("must be a date in YYYY-MM-DD format")
    return date.fromisoformat(value)


# Calendar date accepted only as YYYY-MM-DD, in bodies and query strings alike
CalendarDate = Annotated[date, BeforeValidator(_parse_deadline)]


# --- Payloads ---

class ProjectCreate(WireModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class TaskFields(WireModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, max_length=20)
    priority: Optional[Priority] = None
    deadline: Optional[CalendarDate] = None
    project_id: Optional[str] = None

    @field_validator("title", "status", "priority", "project_id", mode="before")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)

    def changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, enum values unwrapped."""
        data = self.model_dump(exclude_unset=True)
        if "priority" in data:
            data["priority"] = data["priority"].value
        return data


class TaskCreate(TaskFields):
    title: str = Field(min_length=1, max_length=255)
    project_id: str


class TaskUpdate(TaskFields):
    pass


def format_errors(errors: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten pydantic or FastAPI errors into ``{path, message, code}`` entries."""
    # Locations are reported by alias, so paths carry the camelCase names.
    return [{"path": list(err["loc"]), "message": err["msg"], "code": err["type"]} for err in errors]


# --- Responses ---

class UserRead(WireModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProjectRead(WireModel):
    id: str
    name: str
    description: Optional[str] = None
    user_id: str
    created_at: datetime


class TaskRead(WireModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    deadline: Optional[date] = None
    project_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime


class TaskWithProject(TaskRead):
    project: ProjectRead


class TaskPage(WireModel):
    tasks: List[TaskWithProject]
    total: int
    page: int
    limit: int


class StatusCount(WireModel):
    status: str
    count: int


class DashboardStats(WireModel):
    total_projects: int
    total_tasks: int
    completed_tasks: int
    overdue_tasks: int
    tasks_by_status: List[StatusCount]
