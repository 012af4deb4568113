"""Storage models shared by API and persistence backends."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


class StepStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TaskPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class PlannedStep(BaseModel):
    """One step of a plan before it is persisted."""

    description: str = Field(min_length=1)
    tool_hints: list[str] = Field(default_factory=list)
    estimated_seconds: int | None = None


class TaskRecord(BaseModel):
    """Persisted task record."""

    task_id: str
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class StepRecord(BaseModel):
    """Persisted step of a task plan; step_number is 1-based and never reused."""

    step_id: str
    task_id: str
    step_number: int = Field(ge=1)
    description: str
    status: StepStatus = StepStatus.PENDING
    tool_hints: list[str] = Field(default_factory=list)
    estimated_seconds: int | None = None
    result: Any = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TaskResultRecord(BaseModel):
    """Aggregate result written once a task resolves."""

    task_id: str
    content: str
    content_type: str = "application/json"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class AgentLogRecord(BaseModel):
    """Append-only log line attributed to a task and optionally a step."""

    log_id: str
    task_id: str
    step_id: str | None = None
    level: LogLevel = LogLevel.INFO
    message: str
    details: dict[str, Any] | None = None
    agent_type: str | None = None
    timestamp: datetime


class ToolUsageRecord(BaseModel):
    """Audit record of one tool invocation; ended_at is written exactly once."""

    usage_id: str
    task_id: str
    step_id: str | None = None
    tool_name: str
    command: dict[str, Any]
    started_at: datetime
    ended_at: datetime | None = None
    success: bool | None = None
    output: Any = None
    error: str | None = None


class TaskDetail(BaseModel):
    """Task with its steps, aggregate result and log trail."""

    task: TaskRecord
    steps: list[StepRecord] = Field(default_factory=list)
    result: TaskResultRecord | None = None
    logs: list[AgentLogRecord] = Field(default_factory=list)
