import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Status(str, Enum):
    """Columns offered by the board. The store accepts any status string."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True, unique=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    projects: List["Project"] = Relationship(back_populates="owner")


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(max_length=255)
    description: Optional[str] = None
    user_id: str = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    owner: Optional[User] = Relationship(back_populates="projects")
    tasks: List["Task"] = Relationship(back_populates="project")


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str = Field(max_length=255)
    description: Optional[str] = None
    status: str = Field(default=Status.TODO.value, max_length=20, index=True)
    priority: str = Field(default=Priority.MEDIUM.value, max_length=10)
    deadline: Optional[date] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    project_id: str = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    # Copy of the owning project's user_id, kept in sync by Storage
    user_id: str = Field(foreign_key="users.id", index=True)

    project: Optional[Project] = Relationship(back_populates="tasks")
