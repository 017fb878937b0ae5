from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlmodel import Session

from taskboard.config import Settings
from taskboard.database import build_engine
from taskboard.main import create_app
from taskboard.models import Task
from taskboard.storage import Storage

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'taskboard.sqlite3'}",
        session_secret="test-secret",
    )


@pytest.fixture()
def storage(settings: Settings):
    """Real SQLite store in a temp dir; the query logic is what we test."""
    store = Storage(build_engine(settings.database_url))
    store.create_tables()
    yield store
    store.close()


@pytest.fixture()
def app(settings: Settings, storage: Storage) -> FastAPI:
    return create_app(settings=settings, storage=storage)


def login(app: FastAPI, user_id: str, email: str) -> TestClient:
    client = TestClient(app)
    resp = client.get(
        "/api/login",
        headers={
            "X-Forwarded-User": user_id,
            "X-Forwarded-Email": email,
            "X-Forwarded-First-Name": "Test",
            "X-Forwarded-Last-Name": "User",
        },
        follow_redirects=False,
    )
    assert resp.status_code == 303
    return client


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return login(app, USER_ID, "one@example.com")


@pytest.fixture()
def other_client(app: FastAPI) -> TestClient:
    return login(app, OTHER_USER_ID, "two@example.com")


@pytest.fixture()
def anon_client(app: FastAPI) -> TestClient:
    return TestClient(app)


def make_project(client: TestClient, name: str = "Project") -> dict:
    resp = client.post("/api/projects", json={"name": name})
    assert resp.status_code == 201, resp.text
    return resp.json()


def make_task(client: TestClient, project_id: str, **fields) -> dict:
    payload = {"title": "Task", "projectId": project_id, **fields}
    resp = client.post("/api/tasks", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def insert_tasks(
    storage: Storage,
    project_id: str,
    user_id: str,
    count: int,
    start: datetime,
) -> List[str]:
    """Insert tasks with strictly increasing created_at; returns ids oldest first."""
    tasks = [
        Task(
            title=f"task {i}",
            project_id=project_id,
            user_id=user_id,
            created_at=start + timedelta(minutes=i),
        )
        for i in range(count)
    ]
    ids = [t.id for t in tasks]
    with Session(storage.engine) as session:
        session.add_all(tasks)
        session.commit()
    return ids
