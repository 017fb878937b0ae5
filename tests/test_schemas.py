from datetime import date

import pytest
from pydantic import ValidationError

from taskboard.schemas import ProjectCreate, TaskCreate, TaskUpdate, format_errors


def _paths(exc: ValidationError):
    return [tuple(e["path"]) for e in format_errors(exc.errors())]


def test_task_create_requires_title():
    with pytest.raises(ValidationError) as info:
        TaskCreate.model_validate({"projectId": "p1", "priority": "high"})
    assert ("title",) in _paths(info.value)


def test_task_create_requires_project_id():
    with pytest.raises(ValidationError) as info:
        TaskCreate.model_validate({"title": "Write docs"})
    assert ("projectId",) in _paths(info.value)


@pytest.mark.parametrize("title", ["", "x" * 256])
def test_task_title_length(title):
    with pytest.raises(ValidationError):
        TaskCreate.model_validate({"title": title, "projectId": "p1"})


@pytest.mark.parametrize("priority", ["low", "medium", "high"])
def test_priority_accepts_known_values(priority):
    task = TaskCreate.model_validate({"title": "t", "projectId": "p1", "priority": priority})
    assert task.changes()["priority"] == priority


@pytest.mark.parametrize("priority", ["urgent", "HIGH", "", 3])
def test_priority_rejects_other_values(priority):
    with pytest.raises(ValidationError) as info:
        TaskCreate.model_validate({"title": "t", "projectId": "p1", "priority": priority})
    assert ("priority",) in _paths(info.value)


def test_status_is_free_text():
    task = TaskCreate.model_validate({"title": "t", "projectId": "p1", "status": "custom-status"})
    assert task.changes()["status"] == "custom-status"


def test_unset_fields_stay_unset():
    task = TaskCreate.model_validate({"title": "t", "projectId": "p1"})
    assert task.changes() == {"title": "t", "project_id": "p1"}


def test_deadline_parses_calendar_date():
    task = TaskCreate.model_validate({"title": "t", "projectId": "p1", "deadline": "2024-02-29"})
    assert task.deadline == date(2024, 2, 29)


@pytest.mark.parametrize("deadline", ["2024-13-01", "2024-01-01T10:00:00", "01/02/2024", 1700000000])
def test_deadline_rejects_non_dates(deadline):
    with pytest.raises(ValidationError) as info:
        TaskCreate.model_validate({"title": "t", "projectId": "p1", "deadline": deadline})
    assert ("deadline",) in _paths(info.value)


def test_update_is_partial():
    assert TaskUpdate.model_validate({}).changes() == {}
    assert TaskUpdate.model_validate({"status": "done"}).changes() == {"status": "done"}


def test_update_allows_clearing_nullable_fields():
    changes = TaskUpdate.model_validate({"deadline": None, "description": None}).changes()
    assert changes == {"deadline": None, "description": None}


@pytest.mark.parametrize("field", ["title", "status", "priority", "projectId"])
def test_update_rejects_null_for_required_columns(field):
    with pytest.raises(ValidationError) as info:
        TaskUpdate.model_validate({field: None})
    assert (field,) in _paths(info.value)


def test_owner_and_id_fields_are_ignored():
    task = TaskCreate.model_validate(
        {"title": "t", "projectId": "p1", "userId": "someone-else", "id": "forged"}
    )
    assert "user_id" not in task.changes()
    assert "id" not in task.changes()


def test_project_create_requires_name():
    with pytest.raises(ValidationError) as info:
        ProjectCreate.model_validate({"description": "no name"})
    assert ("name",) in _paths(info.value)
    assert ProjectCreate.model_validate({"name": "Home"}).description is None
