"""Task service: the operations behind the HTTP API, plus background dispatch."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from task_orchestrator.audit import AuditSink
from task_orchestrator.config.settings import Settings
from task_orchestrator.engine.executor import FAILABLE_TASK_STATUSES, Executor
from task_orchestrator.errors import ForbiddenError, NotFoundError
from task_orchestrator.handlers import build_registry
from task_orchestrator.llm import LLMAdapter
from task_orchestrator.planning import Planner
from task_orchestrator.storage.base import TaskStorage
from task_orchestrator.storage.lifecycle import task_sources_for
from task_orchestrator.storage.models import (
    LogLevel,
    TaskDetail,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    ToolUsageRecord,
)
from task_orchestrator.tools import Toolbox, build_toolbox_from_settings

logger = logging.getLogger(__name__)

DELETABLE_STATUSES = frozenset({TaskStatus.CLOSED, TaskStatus.FAILED})


class ExecutionDispatcher:
    """Run executions on a bounded thread pool.

    Each submission gets its own error boundary: an exception that escapes the
    executor is logged and the task is forced to FAILED if it is still running.
    ``ForbiddenError`` and ``NotFoundError`` mean the run never owned the task,
    so they are logged without touching its status.
    """

    def __init__(self, storage: TaskStorage, audit: AuditSink, *, max_workers: int = 4) -> None:
        self.storage = storage
        self.audit = audit
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="task-exec",
        )

    def submit(self, task_id: str, run: Callable[[str], object]) -> Future:
        return self._pool.submit(self._guarded, task_id, run)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _guarded(self, task_id: str, run: Callable[[str], object]) -> None:
        try:
            run(task_id)
        except (ForbiddenError, NotFoundError) as exc:
            logger.warning(
                "dispatch event=rejected task_id=%s error_type=%s reason=%s",
                task_id,
                exc.__class__.__name__,
                exc,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "dispatch event=failed task_id=%s error_type=%s reason=%s",
                task_id,
                exc.__class__.__name__,
                exc,
            )
            forced = self.storage.transition_task(
                task_id,
                to_status=TaskStatus.FAILED,
                from_statuses=FAILABLE_TASK_STATUSES,
            )
            if forced is not None:
                self.audit.log(
                    task_id,
                    f"Task execution aborted: {exc}",
                    level=LogLevel.ERROR,
                    details={"error_type": exc.__class__.__name__},
                    agent_type="dispatcher",
                )


class TaskService:
    def __init__(
        self,
        *,
        storage: TaskStorage,
        executor: Executor,
        audit: AuditSink,
        dispatcher: ExecutionDispatcher,
    ) -> None:
        self.storage = storage
        self.executor = executor
        self.audit = audit
        self.dispatcher = dispatcher

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> TaskRecord:
        task = self.storage.create_task(title=title, description=description, priority=priority)
        logger.info("task event=created task_id=%s priority=%s", task.task_id, task.priority.value)
        return task

    def list_tasks(self) -> list[TaskRecord]:
        return self.storage.list_tasks()

    def get_task(self, task_id: str) -> TaskRecord:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def get_task_detail(self, task_id: str) -> TaskDetail:
        task = self.get_task(task_id)
        return TaskDetail(
            task=task,
            steps=self.storage.list_steps(task_id),
            result=self.storage.get_task_result(task_id),
            logs=self.storage.list_logs(task_id),
        )

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | None = None,
    ) -> TaskRecord:
        self.get_task(task_id)
        return self.storage.update_task_fields(
            task_id,
            title=title,
            description=description,
            priority=priority,
        )

    def delete_task(self, task_id: str) -> None:
        task = self.get_task(task_id)
        if task.status not in DELETABLE_STATUSES:
            raise ForbiddenError(
                f"Task {task_id} is {task.status.value}; only CLOSED or FAILED tasks are deleted"
            )
        self.storage.delete_task(task_id)
        logger.info("task event=deleted task_id=%s", task_id)

    def start_execution(self, task_id: str) -> Future:
        # Claim before queueing so a duplicate request is refused here.
        self.executor.start(task_id)
        try:
            future = self.dispatcher.submit(task_id, self.executor.run_started)
        except RuntimeError as exc:
            self.storage.transition_task(
                task_id,
                to_status=TaskStatus.FAILED,
                from_statuses=FAILABLE_TASK_STATUSES,
            )
            self.audit.log(
                task_id,
                f"Task execution aborted: {exc}",
                level=LogLevel.ERROR,
                agent_type="dispatcher",
            )
            raise
        logger.info("task event=dispatched task_id=%s", task_id)
        return future

    def cancel_task(self, task_id: str) -> TaskRecord:
        self.get_task(task_id)
        cancelled = self.storage.cancel_task(
            task_id,
            from_statuses=FAILABLE_TASK_STATUSES,
        )
        if cancelled is None:
            current = self.get_task(task_id)
            raise ForbiddenError(
                f"Task {task_id} is {current.status.value}; only running tasks are cancelled"
            )
        self.audit.log(
            task_id,
            "Task was canceled by user",
            level=LogLevel.WARNING,
            agent_type="user",
        )
        return cancelled

    def close_task(self, task_id: str) -> TaskRecord:
        self.get_task(task_id)
        closed = self.storage.transition_task(
            task_id,
            to_status=TaskStatus.CLOSED,
            from_statuses=task_sources_for(TaskStatus.CLOSED),
        )
        if closed is None:
            current = self.get_task(task_id)
            raise ForbiddenError(
                f"Task {task_id} is {current.status.value}; only RESOLVED tasks are closed"
            )
        self.audit.log(task_id, "Task was closed by user", agent_type="user")
        return closed

    def list_tool_usages(self, task_id: str) -> list[ToolUsageRecord]:
        self.get_task(task_id)
        return self.storage.list_tool_usages(task_id)


def build_task_service(
    *,
    settings: Settings,
    storage: TaskStorage,
    llm_adapter: LLMAdapter | None = None,
    toolbox: Toolbox | None = None,
    dispatcher: ExecutionDispatcher | None = None,
) -> TaskService:
    audit = AuditSink(storage)
    registry = build_registry(
        audit=audit,
        toolbox=toolbox or build_toolbox_from_settings(settings, llm_adapter),
        llm_adapter=llm_adapter,
    )
    executor = Executor(
        storage=storage,
        planner=Planner(llm_adapter=llm_adapter, mode=settings.planner_mode),
        registry=registry,
        audit=audit,
    )
    return TaskService(
        storage=storage,
        executor=executor,
        audit=audit,
        dispatcher=dispatcher
        or ExecutionDispatcher(storage, audit, max_workers=settings.max_concurrent_tasks),
    )
