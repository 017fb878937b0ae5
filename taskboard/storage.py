"""Persistence and query logic for users, projects and tasks.

Every project and task method takes the requesting user's id and only ever
touches rows owned by that user, so a foreign id looks exactly like a missing
one to callers.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .database import create_db_and_tables
from .models import Project, Status, Task, User, utcnow
from .schemas import (
    DashboardStats,
    ProjectRead,
    StatusCount,
    TaskRead,
    TaskWithProject,
)

logger = logging.getLogger(__name__)

USER_PROFILE_FIELDS = ("email", "first_name", "last_name", "profile_image_url")


class ProjectNotFound(LookupError):
    """A task referenced a project the user does not own (or that is gone)."""


@dataclass
class TaskFilters:
    project_id: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    deadline_from: Optional[date] = None
    deadline_to: Optional[date] = None

    def conditions(self) -> List[Any]:
        # Every supplied filter narrows the result; they are never OR-ed.
        conds = []
        if self.project_id:
            conds.append(Task.project_id == self.project_id)
        if self.status:
            conds.append(Task.status == self.status)
        if self.priority:
            conds.append(Task.priority == self.priority)
        if self.deadline_from:
            conds.append(Task.deadline >= self.deadline_from)
        if self.deadline_to:
            conds.append(Task.deadline <= self.deadline_to)
        return conds


def _with_project(task: Task, project: Project) -> TaskWithProject:
    return TaskWithProject(
        **TaskRead.model_validate(task).model_dump(),
        project=ProjectRead.model_validate(project),
    )


class Storage:
    """Store for the three entities, bound to one engine for the app's lifetime."""

    def __init__(self, engine: Engine, today: Callable[[], date] = date.today):
        self.engine = engine
        self.today = today

    def create_tables(self) -> None:
        create_db_and_tables(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # --- Users ---

    def get_user(self, user_id: str) -> Optional[User]:
        with Session(self.engine) as session:
            return session.get(User, user_id)

    def upsert_user(self, user_id: str, **profile: Optional[str]) -> User:
        """Insert the user on first login, refresh the profile afterwards."""
        fields = {k: v for k, v in profile.items() if k in USER_PROFILE_FIELDS}
        with Session(self.engine) as session:
            user = session.get(User, user_id)
            if user is None:
                user = User(id=user_id, **fields)
                logger.info("Created user %s", user_id)
            else:
                for key, value in fields.items():
                    setattr(user, key, value)
                user.updated_at = utcnow()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    # --- Projects ---

    def get_projects(self, user_id: str) -> List[Project]:
        with Session(self.engine) as session:
            stmt = (
                select(Project)
                .where(Project.user_id == user_id)
                .order_by(Project.created_at.desc())
            )
            return list(session.exec(stmt).all())

    def get_project(self, project_id: str, user_id: str) -> Optional[Project]:
        with Session(self.engine) as session:
            return self._owned_project(session, project_id, user_id)

    def create_project(self, data: Dict[str, Any], user_id: str) -> Project:
        with Session(self.engine) as session:
            project = Project(
                name=data["name"],
                description=data.get("description"),
                user_id=user_id,
            )
            session.add(project)
            session.commit()
            session.refresh(project)
            return project

    def delete_project(self, project_id: str, user_id: str) -> bool:
        """Delete the project and its tasks in one transaction."""
        with Session(self.engine) as session:
            project = self._owned_project(session, project_id, user_id)
            if project is None:
                return False
            # Children first, then the parent, in the same commit
            tasks = session.exec(select(Task).where(Task.project_id == project_id)).all()
            for task in tasks:
                session.delete(task)
            session.delete(project)
            session.commit()
        logger.info("Deleted project %s for user %s", project_id, user_id)
        return True

    @staticmethod
    def _owned_project(session: Session, project_id: str, user_id: str) -> Optional[Project]:
        stmt = select(Project).where(Project.id == project_id, Project.user_id == user_id)
        return session.exec(stmt).first()

    # --- Tasks ---

    def _task_query(self, user_id: str, *conditions: Any):
        return (
            select(Task, Project)
            .join(Project, Task.project_id == Project.id)
            .where(Task.user_id == user_id, *conditions)
        )

    def list_tasks(self, user_id: str, filters: Optional[TaskFilters] = None) -> List[TaskWithProject]:
        filters = filters or TaskFilters()
        stmt = self._task_query(user_id, *filters.conditions()).order_by(Task.created_at.desc())
        with Session(self.engine) as session:
            return [_with_project(t, p) for t, p in session.exec(stmt).all()]

    def get_task(self, task_id: str, user_id: str) -> Optional[TaskWithProject]:
        stmt = self._task_query(user_id, Task.id == task_id)
        with Session(self.engine) as session:
            row: Optional[Tuple[Task, Project]] = session.exec(stmt).first()
            if row is None:
                return None
            return _with_project(*row)

    def create_task(self, data: Dict[str, Any], user_id: str) -> Task:
        """Insert a task; raises ProjectNotFound unless the user owns the project."""
        with Session(self.engine) as session:
            if self._owned_project(session, data["project_id"], user_id) is None:
                raise ProjectNotFound(data["project_id"])
            # Unsupplied fields fall back to the column defaults
            task = Task(**data, user_id=user_id)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    def update_task(self, task_id: str, changes: Dict[str, Any], user_id: str) -> Optional[Task]:
        """Apply a partial update. Returns None when the user has no such task."""
        with Session(self.engine) as session:
            stmt = select(Task).where(Task.id == task_id, Task.user_id == user_id)
            task = session.exec(stmt).first()
            if task is None:
                return None
            new_project = changes.get("project_id")
            if new_project and new_project != task.project_id:
                if self._owned_project(session, new_project, user_id) is None:
                    raise ProjectNotFound(new_project)
            for key, value in changes.items():
                setattr(task, key, value)
            task.updated_at = utcnow()
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    def delete_task(self, task_id: str, user_id: str) -> bool:
        with Session(self.engine) as session:
            task = session.exec(
                select(Task).where(Task.id == task_id, Task.user_id == user_id)
            ).first()
            if task is None:
                return False
            session.delete(task)
            session.commit()
        logger.info("Deleted task %s for user %s", task_id, user_id)
        return True

    # --- Dashboard ---

    def _overdue_conditions(self) -> List[Any]:
        # NULL deadlines drop out of the comparison on their own
        return [Task.deadline < self.today(), Task.status != Status.DONE.value]

    def _count(self, session: Session, model, *conditions: Any) -> int:
        stmt = select(func.count()).select_from(model).where(*conditions)
        return session.exec(stmt).one()

    def dashboard_stats(self, user_id: str) -> DashboardStats:
        with Session(self.engine) as session:
            mine = Task.user_id == user_id
            by_status = session.exec(
                select(Task.status, func.count()).where(mine).group_by(Task.status)
            ).all()
            return DashboardStats(
                total_projects=self._count(session, Project, Project.user_id == user_id),
                total_tasks=self._count(session, Task, mine),
                completed_tasks=self._count(session, Task, mine, Task.status == Status.DONE.value),
                overdue_tasks=self._count(session, Task, mine, *self._overdue_conditions()),
                tasks_by_status=[StatusCount(status=s, count=c) for s, c in by_status],
            )

    def overdue_tasks(self, user_id: str) -> List[TaskWithProject]:
        """Overdue tasks, the longest overdue first."""
        stmt = self._task_query(user_id, *self._overdue_conditions()).order_by(Task.deadline.asc())
        with Session(self.engine) as session:
            return [_with_project(t, p) for t, p in session.exec(stmt).all()]
