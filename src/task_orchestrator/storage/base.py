"""Storage interface for task lifecycle, plans and audit records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

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


class TaskStorage(Protocol):
    def migrate(self) -> None: ...

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> TaskRecord: ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def list_tasks(self) -> list[TaskRecord]: ...

    def update_task_fields(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | None = None,
    ) -> TaskRecord: ...

    def delete_task(self, task_id: str) -> bool: ...

    def transition_task(
        self,
        task_id: str,
        *,
        to_status: TaskStatus,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        """Move the task only if its current status is one of ``from_statuses``.

        Returns ``None`` when the task is missing or in another status.
        """
        ...

    def cancel_task(
        self,
        task_id: str,
        *,
        from_statuses: frozenset[TaskStatus],
    ) -> TaskRecord | None:
        """Force the task to FAILED and fail its IN_PROGRESS steps in one write."""
        ...

    def replace_steps(self, task_id: str, steps: list[PlannedStep]) -> list[StepRecord]: ...

    def list_steps(self, task_id: str) -> list[StepRecord]: ...

    def transition_step(
        self,
        step_id: str,
        *,
        to_status: StepStatus,
        from_statuses: frozenset[StepStatus],
        result: Any = None,
        task_status_guard: TaskStatus | None = None,
    ) -> StepRecord | None:
        """Compare-and-set a step status.

        ``task_status_guard`` additionally requires the owning task to be in
        that status at the moment of the write.
        """
        ...

    def save_task_result(
        self,
        task_id: str,
        *,
        content: str,
        content_type: str = "application/json",
        metadata: dict[str, Any] | None = None,
    ) -> TaskResultRecord: ...

    def get_task_result(self, task_id: str) -> TaskResultRecord | None: ...

    def append_log(
        self,
        *,
        task_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        step_id: str | None = None,
        details: dict[str, Any] | None = None,
        agent_type: str | None = None,
    ) -> AgentLogRecord: ...

    def list_logs(self, task_id: str) -> list[AgentLogRecord]: ...

    def start_tool_usage(
        self,
        *,
        task_id: str,
        tool_name: str,
        command: dict[str, Any],
        step_id: str | None = None,
        started_at: datetime | None = None,
    ) -> ToolUsageRecord: ...

    def finish_tool_usage(
        self,
        usage_id: str,
        *,
        success: bool,
        output: Any = None,
        error: str | None = None,
    ) -> ToolUsageRecord | None:
        """Close a usage record; returns ``None`` if it was already closed."""
        ...

    def list_tool_usages(self, task_id: str) -> list[ToolUsageRecord]: ...
