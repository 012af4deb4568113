"""FastAPI app entrypoint for task-orchestrator."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from task_orchestrator.config.settings import Settings, get_settings
from task_orchestrator.errors import ForbiddenError, NotFoundError
from task_orchestrator.handlers import FALLBACK_HANDLER, HANDLER_PRIORITY
from task_orchestrator.llm import LLMAdapter, build_llm_adapter
from task_orchestrator.logging_config import configure_logging
from task_orchestrator.service import ExecutionDispatcher, TaskService, build_task_service
from task_orchestrator.storage.base import TaskStorage
from task_orchestrator.storage.memory import InMemoryTaskStorage
from task_orchestrator.storage.models import (
    TaskDetail,
    TaskPriority,
    TaskRecord,
    ToolUsageRecord,
)
from task_orchestrator.storage.postgres import PostgresTaskStorage
from task_orchestrator.tools import ToolKind, Toolbox


class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM


class UpdateTaskRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    priority: TaskPriority | None = None


class ExecutionAccepted(BaseModel):
    task_id: str
    status: str = "accepted"


def _build_storage(settings: Settings) -> TaskStorage:
    backend = settings.storage_backend.lower().strip()
    if backend == "memory":
        return InMemoryTaskStorage()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set TASK_ORCHESTRATOR_DATABASE_URL "
            "or ORCHESTRATOR_DATABASE_URL before starting the app, "
            "or use TASK_ORCHESTRATOR_STORAGE_BACKEND=memory."
        )
    return PostgresTaskStorage(database_url)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: TaskStorage | None,
    llm_adapter: LLMAdapter | None,
    toolbox: Toolbox | None,
    dispatcher: ExecutionDispatcher | None,
) -> None:
    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or _build_storage(settings)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "service"):
        app.state.service = build_task_service(
            settings=settings,
            storage=app.state.storage,
            llm_adapter=llm_adapter if llm_adapter is not None else build_llm_adapter(settings),
            toolbox=toolbox,
            dispatcher=dispatcher,
        )


def create_app(
    *,
    storage: TaskStorage | None = None,
    settings_override: Settings | None = None,
    llm_adapter: LLMAdapter | None = None,
    toolbox: Toolbox | None = None,
    dispatcher: ExecutionDispatcher | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            llm_adapter=llm_adapter,
            toolbox=toolbox,
            dispatcher=dispatcher,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        yield
        app.state.service.dispatcher.shutdown(wait=False)

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure(app)

    def _get_service(request: Request) -> TaskService:
        if not hasattr(request.app.state, "service"):
            _ensure(request.app)
        return request.app.state.service

    def _call(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ForbiddenError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/capabilities")
    def capabilities() -> dict[str, list[str]]:
        return {
            "handlers": [kind.value for kind in (*HANDLER_PRIORITY, FALLBACK_HANDLER)],
            "tools": [kind.value for kind in ToolKind],
        }

    @app.post("/tasks", response_model=TaskRecord, status_code=status.HTTP_201_CREATED)
    def create_task(payload: CreateTaskRequest, request: Request) -> TaskRecord:
        service = _get_service(request)
        return service.create_task(
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
        )

    @app.get("/tasks", response_model=list[TaskRecord])
    def list_tasks(request: Request) -> list[TaskRecord]:
        return _get_service(request).list_tasks()

    @app.get("/tasks/{task_id}", response_model=TaskDetail)
    def get_task(task_id: str, request: Request) -> TaskDetail:
        return _call(_get_service(request).get_task_detail, task_id)

    @app.patch("/tasks/{task_id}", response_model=TaskRecord)
    def update_task(task_id: str, payload: UpdateTaskRequest, request: Request) -> TaskRecord:
        return _call(
            _get_service(request).update_task,
            task_id,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
        )

    @app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_task(task_id: str, request: Request) -> Response:
        _call(_get_service(request).delete_task, task_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post(
        "/tasks/{task_id}/execute",
        response_model=ExecutionAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def execute_task(task_id: str, request: Request) -> ExecutionAccepted:
        _call(_get_service(request).start_execution, task_id)
        return ExecutionAccepted(task_id=task_id)

    @app.post("/tasks/{task_id}/cancel", response_model=TaskRecord)
    def cancel_task(task_id: str, request: Request) -> TaskRecord:
        return _call(_get_service(request).cancel_task, task_id)

    @app.post("/tasks/{task_id}/close", response_model=TaskRecord)
    def close_task(task_id: str, request: Request) -> TaskRecord:
        return _call(_get_service(request).close_task, task_id)

    @app.get("/tasks/{task_id}/tool-usages", response_model=list[ToolUsageRecord])
    def list_tool_usages(task_id: str, request: Request) -> list[ToolUsageRecord]:
        return _call(_get_service(request).list_tool_usages, task_id)

    return app


# Module-level app for `uvicorn task_orchestrator.api.main:app`.
app = create_app()
