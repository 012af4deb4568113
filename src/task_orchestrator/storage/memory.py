"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from task_orchestrator.storage.lifecycle import (
    COMPLETING_TASK_STATUSES,
    check_step_edges,
    check_task_edges,
)
from task_orchestrator.storage.models import (
    AgentLogRecord,
    LogLevel,
    PlannedStep,
    StepRecord,
    StepStatus,
    TaskPriority,
    TaskRecord,
    TaskResultRecord,
    TaskStatus,
    ToolUsageRecord,
)


class InMemoryTaskStorage:
    """Thread-safe dictionary store with the same semantics as the Postgres backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskRecord] = {}
        self._steps: dict[str, StepRecord] = {}
        self._results: dict[str, TaskResultRecord] = {}
        self._logs: list[AgentLogRecord] = []
        self._tool_usages: dict[str, ToolUsageRecord] = {}

    def migrate(self) -> None:
        return None

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> TaskRecord:
        now = datetime.now(UTC)
        record = TaskRecord(
            task_id=str(uuid4()),
            title=title,
            description=description,
            status=TaskStatus.PENDING,
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._tasks[record.task_id] = record
        return record.model_copy(deep=True)

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def list_tasks(self) -> list[TaskRecord]:
        with self._lock:
            tasks = [task.model_copy(deep=True) for task in self._tasks.values()]
        return list(reversed(tasks))

    def update_task_fields(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | None = None,
    ) -> TaskRecord:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise KeyError(f"Task {task_id} does not exist")
            changes: dict[str, Any] = {"updated_at": datetime.now(UTC)}
            if title is not None:
                changes["title"] = title
            if description is not None:
                changes["description"] = description
            if priority is not None:
                changes["priority"] = priority
            updated = current.model_copy(update=changes)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            if self._tasks.pop(task_id, None) is None:
                return False
            for step_id in [s.step_id for s in self._steps.values() if s.task_id == task_id]:
                del self._steps[step_id]
            self._results.pop(task_id, None)
            self._logs = [log for log in self._logs if log.task_id != task_id]
            for usage_id in [
                u.usage_id for u in self._tool_usages.values() if u.task_id == task_id
            ]:
                del self._tool_usages[usage_id]
        return True

    def transition_task(
        self,
        task_id: str,
        *,
        to_status: TaskStatus,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        check_task_edges(from_statuses, to_status)
        with self._lock:
            return self._transition_task_locked(task_id, to_status, from_statuses)

    def cancel_task(
        self,
        task_id: str,
        *,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        check_task_edges(from_statuses, TaskStatus.FAILED)
        with self._lock:
            updated = self._transition_task_locked(task_id, TaskStatus.FAILED, from_statuses)
            if updated is None:
                return None
            now = datetime.now(UTC)
            for step in list(self._steps.values()):
                if step.task_id == task_id and step.status == StepStatus.IN_PROGRESS:
                    self._steps[step.step_id] = step.model_copy(
                        update={"status": StepStatus.FAILED, "completed_at": now}
                    )
            return updated

    def replace_steps(self, task_id: str, steps: list[PlannedStep]) -> list[StepRecord]:
        now = datetime.now(UTC)
        records = [
            StepRecord(
                step_id=str(uuid4()),
                task_id=task_id,
                step_number=index,
                description=planned.description,
                tool_hints=list(planned.tool_hints),
                estimated_seconds=planned.estimated_seconds,
                created_at=now,
            )
            for index, planned in enumerate(steps, start=1)
        ]
        with self._lock:
            if task_id not in self._tasks:
                raise KeyError(f"Task {task_id} does not exist")
            for step_id in [s.step_id for s in self._steps.values() if s.task_id == task_id]:
                del self._steps[step_id]
            for record in records:
                self._steps[record.step_id] = record
        return [record.model_copy(deep=True) for record in records]

    def list_steps(self, task_id: str) -> list[StepRecord]:
        with self._lock:
            steps = [s.model_copy(deep=True) for s in self._steps.values() if s.task_id == task_id]
        return sorted(steps, key=lambda step: step.step_number)

    def transition_step(
        self,
        step_id: str,
        *,
        to_status: StepStatus,
        from_statuses: frozenset[StepStatus],
        result: Any = None,
        task_status_guard: TaskStatus | None = None,
    ) -> StepRecord | None:
        check_step_edges(from_statuses, to_status)
        with self._lock:
            current = self._steps.get(step_id)
            if current is None or current.status not in from_statuses:
                return None
            if task_status_guard is not None:
                task = self._tasks.get(current.task_id)
                if task is None or task.status != task_status_guard:
                    return None
            now = datetime.now(UTC)
            changes: dict[str, Any] = {"status": to_status}
            if to_status == StepStatus.IN_PROGRESS:
                changes["started_at"] = now
            else:
                changes["completed_at"] = now
            if result is not None:
                changes["result"] = result
            updated = current.model_copy(update=changes)
            self._steps[step_id] = updated
            return updated.model_copy(deep=True)

    def save_task_result(
        self,
        task_id: str,
        *,
        content: str,
        content_type: str = "application/json",
        metadata: dict[str, Any] | None = None,
    ) -> TaskResultRecord:
        now = datetime.now(UTC)
        with self._lock:
            existing = self._results.get(task_id)
            record = TaskResultRecord(
                task_id=task_id,
                content=content,
                content_type=content_type,
                metadata=dict(metadata or {}),
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._results[task_id] = record
        return record.model_copy(deep=True)

    def get_task_result(self, task_id: str) -> TaskResultRecord | None:
        with self._lock:
            record = self._results.get(task_id)
            return record.model_copy(deep=True) if record else None

    def append_log(
        self,
        *,
        task_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        step_id: str | None = None,
        details: dict[str, Any] | None = None,
        agent_type: str | None = None,
    ) -> AgentLogRecord:
        record = AgentLogRecord(
            log_id=str(uuid4()),
            task_id=task_id,
            step_id=step_id,
            level=level,
            message=message,
            details=details,
            agent_type=agent_type,
            timestamp=datetime.now(UTC),
        )
        with self._lock:
            self._logs.append(record)
        return record.model_copy(deep=True)

    def list_logs(self, task_id: str) -> list[AgentLogRecord]:
        with self._lock:
            return [log.model_copy(deep=True) for log in self._logs if log.task_id == task_id]

    def start_tool_usage(
        self,
        *,
        task_id: str,
        tool_name: str,
        command: dict[str, Any],
        step_id: str | None = None,
        started_at: datetime | None = None,
    ) -> ToolUsageRecord:
        record = ToolUsageRecord(
            usage_id=str(uuid4()),
            task_id=task_id,
            step_id=step_id,
            tool_name=tool_name,
            command=command,
            started_at=started_at or datetime.now(UTC),
        )
        with self._lock:
            self._tool_usages[record.usage_id] = record
        return record.model_copy(deep=True)

    def finish_tool_usage(
        self,
        usage_id: str,
        *,
        success: bool,
        output: Any = None,
        error: str | None = None,
    ) -> ToolUsageRecord | None:
        with self._lock:
            current = self._tool_usages.get(usage_id)
            if current is None or current.ended_at is not None:
                return None
            updated = current.model_copy(
                update={
                    "ended_at": datetime.now(UTC),
                    "success": success,
                    "output": output,
                    "error": error,
                }
            )
            self._tool_usages[usage_id] = updated
            return updated.model_copy(deep=True)

    def list_tool_usages(self, task_id: str) -> list[ToolUsageRecord]:
        with self._lock:
            return [
                u.model_copy(deep=True) for u in self._tool_usages.values() if u.task_id == task_id
            ]

    def _transition_task_locked(
        self,
        task_id: str,
        to_status: TaskStatus,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        current = self._tasks.get(task_id)
        if current is None or current.status not in from_statuses:
            return None
        now = datetime.now(UTC)
        changes: dict[str, Any] = {"status": to_status, "updated_at": now}
        if to_status in COMPLETING_TASK_STATUSES:
            changes["completed_at"] = now
        updated = current.model_copy(update=changes)
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)
