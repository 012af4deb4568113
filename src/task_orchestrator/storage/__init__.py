"""Storage backends and models."""

from task_orchestrator.storage.base import TaskStorage
from task_orchestrator.storage.memory import InMemoryTaskStorage
from task_orchestrator.storage.models import (
    AgentLogRecord,
    LogLevel,
    PlannedStep,
    StepRecord,
    StepStatus,
    TaskDetail,
    TaskPriority,
    TaskRecord,
    TaskResultRecord,
    TaskStatus,
    ToolUsageRecord,
)
from task_orchestrator.storage.postgres import PostgresTaskStorage

__all__ = [
    "AgentLogRecord",
    "InMemoryTaskStorage",
    "LogLevel",
    "PlannedStep",
    "PostgresTaskStorage",
    "StepRecord",
    "StepStatus",
    "TaskDetail",
    "TaskPriority",
    "TaskRecord",
    "TaskResultRecord",
    "TaskStatus",
    "TaskStorage",
    "ToolUsageRecord",
]
