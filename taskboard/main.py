import logging
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, List, Optional

import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .auth import (
    HeaderIdentityProvider,
    IdentityProvider,
    current_user_id,
    end_session,
    session_user_id,
    start_session,
    unauthorized,
)
from .config import Settings, load_settings
from .database import build_engine
from .models import Status
from .schemas import (
    CalendarDate,
    DashboardStats,
    ProjectCreate,
    ProjectRead,
    TaskCreate,
    TaskPage,
    TaskRead,
    TaskUpdate,
    TaskWithProject,
    UserRead,
    format_errors,
)
from .storage import ProjectNotFound, Storage, TaskFilters

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

# Endpoint name -> entity named in "Invalid <entity> data"
PAYLOAD_ENTITIES = {
    "create_project": "project",
    "create_task": "task",
    "update_task": "task",
}

BOARD_COLUMNS = [
    (Status.TODO.value, "Todo"),
    (Status.IN_PROGRESS.value, "In Progress"),
    (Status.DONE.value, "Done"),
]


# --- 1. HELPERS ---
def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} not found")


def invalid_payload(entity: str, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": f"Invalid {entity} data",
            "errors": format_errors(
                exc.errors(include_url=False, include_context=False, include_input=False)
            ),
        },
    )


@contextmanager
def failure_guard(operation: str):
    """Turn anything unexpected into a 500 that names only the operation."""
    try:
        yield
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Error trying to %s", operation)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {operation}",
        ) from exc


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # A body FastAPI could not even parse is still reported against its entity
    endpoint = request.scope.get("endpoint")
    entity = PAYLOAD_ENTITIES.get(getattr(endpoint, "__name__", None))
    if entity and any(err["loc"][:1] == ("body",) for err in exc.errors()):
        message = f"Invalid {entity} data"
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": message, "errors": format_errors(exc.errors())},
    )


# --- 2. AUTH ROUTES ---
auth_router = APIRouter(prefix="/api")


@auth_router.get("/login")
def login(request: Request, storage: Storage = Depends(get_storage)):
    claims = request.app.state.identity_provider.resolve(request)
    if claims is None:
        raise unauthorized()
    with failure_guard("log in"):
        user = storage.upsert_user(
            claims.sub,
            email=claims.email,
            first_name=claims.first_name,
            last_name=claims.last_name,
            profile_image_url=claims.profile_image_url,
        )
    start_session(request, user.id)
    return RedirectResponse(url="/", status_code=303)


@auth_router.get("/logout")
def logout(request: Request):
    end_session(request)
    return RedirectResponse(url="/", status_code=303)


# --- 3. API ROUTES ---
api_router = APIRouter(prefix="/api", dependencies=[Depends(current_user_id)])


@api_router.get("/auth/user", response_model=UserRead)
def read_current_user(
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch user"):
        user = storage.get_user(user_id)
    if user is None:
        raise not_found("User")
    return UserRead.model_validate(user)


@api_router.get("/projects", response_model=List[ProjectRead])
def list_projects(
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch projects"):
        projects = storage.get_projects(user_id)
    return [ProjectRead.model_validate(p) for p in projects]


@api_router.get("/projects/{project_id}", response_model=ProjectRead)
def read_project(
    project_id: str,
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch project"):
        project = storage.get_project(project_id, user_id)
    if project is None:
        raise not_found("Project")
    return ProjectRead.model_validate(project)


@api_router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: Any = Body(default=None),
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        data = ProjectCreate.model_validate(payload)
    except ValidationError as exc:
        return invalid_payload("project", exc)
    with failure_guard("create project"):
        project = storage.create_project(data.model_dump(exclude_unset=True), user_id)
    return ProjectRead.model_validate(project)


@api_router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("delete project"):
        deleted = storage.delete_project(project_id, user_id)
    if not deleted:
        raise not_found("Project")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.get("/tasks", response_model=TaskPage)
def list_tasks(
    project_id: Optional[str] = Query(None, alias="projectId"),
    task_status: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    deadline_from: Optional[CalendarDate] = Query(None, alias="deadlineFrom"),
    deadline_to: Optional[CalendarDate] = Query(None, alias="deadlineTo"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    filters = TaskFilters(
        project_id=project_id,
        status=task_status,
        priority=priority,
        deadline_from=deadline_from,
        deadline_to=deadline_to,
    )
    with failure_guard("fetch tasks"):
        tasks = storage.list_tasks(user_id, filters)
    # Total and page come from the same filtered list
    start = (page - 1) * limit
    return TaskPage(tasks=tasks[start:start + limit], total=len(tasks), page=page, limit=limit)


@api_router.get("/tasks/{task_id}", response_model=TaskWithProject)
def read_task(
    task_id: str,
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch task"):
        task = storage.get_task(task_id, user_id)
    if task is None:
        raise not_found("Task")
    return task


@api_router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: Any = Body(default=None),
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        data = TaskCreate.model_validate(payload)
    except ValidationError as exc:
        return invalid_payload("task", exc)
    with failure_guard("create task"):
        try:
            task = storage.create_task(data.changes(), user_id)
        except ProjectNotFound:
            raise not_found("Project") from None
    return TaskRead.model_validate(task)


@api_router.put("/tasks/{task_id}", response_model=TaskRead)
def update_task(
    task_id: str,
    payload: Any = Body(default=None),
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        data = TaskUpdate.model_validate(payload)
    except ValidationError as exc:
        return invalid_payload("task", exc)
    with failure_guard("update task"):
        try:
            task = storage.update_task(task_id, data.changes(), user_id)
        except ProjectNotFound:
            raise not_found("Project") from None
    if task is None:
        raise not_found("Task")
    return TaskRead.model_validate(task)


@api_router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: str,
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("delete task"):
        deleted = storage.delete_task(task_id, user_id)
    if not deleted:
        raise not_found("Task")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch dashboard stats"):
        return storage.dashboard_stats(user_id)


@api_router.get("/dashboard/overdue-tasks", response_model=List[TaskWithProject])
def overdue_tasks(
    user_id: str = Depends(current_user_id),
    storage: Storage = Depends(get_storage),
):
    with failure_guard("fetch overdue tasks"):
        return storage.overdue_tasks(user_id)


# --- 4. PAGES ---
pages_router = APIRouter()


@pages_router.get("/", response_class=HTMLResponse)
def dashboard(request: Request, storage: Storage = Depends(get_storage)):
    user_id = session_user_id(request)
    if user_id is None:
        return RedirectResponse(url="/api/login", status_code=303)

    return templates.TemplateResponse(request, "index.html", {
        "user": storage.get_user(user_id),
        "stats": storage.dashboard_stats(user_id),
        "overdue": storage.overdue_tasks(user_id),
        "projects": storage.get_projects(user_id),
    })


@pages_router.get("/board", response_class=HTMLResponse)
def board(
    request: Request,
    project_id: Optional[str] = Query(None, alias="projectId"),
    storage: Storage = Depends(get_storage),
):
    user_id = session_user_id(request)
    if user_id is None:
        return RedirectResponse(url="/api/login", status_code=303)

    tasks = storage.list_tasks(user_id, TaskFilters(project_id=project_id))
    columns = [
        {"status": key, "title": title, "tasks": [t for t in tasks if t.status == key]}
        for key, title in BOARD_COLUMNS
    ]
    return templates.TemplateResponse(request, "board.html", {
        "user": storage.get_user(user_id),
        "columns": columns,
        "projects": storage.get_projects(user_id),
        "project_id": project_id,
    })


# --- 5. APP FACTORY ---
def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    settings = settings or load_settings()
    storage = storage or Storage(build_engine(settings.database_url))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage.create_tables()
        yield
        storage.close()

    app = FastAPI(title="Taskboard", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.identity_provider = identity_provider or HeaderIdentityProvider(
        settings.identity_header_prefix
    )

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        same_site="lax",
    )
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(auth_router)
    app.include_router(api_router)
    app.include_router(pages_router)
    return app


def run() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
