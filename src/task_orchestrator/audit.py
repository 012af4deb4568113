"""Audit sink: append-only agent logs and tool-usage records."""

from __future__ import annotations

import logging
from typing import Any

from task_orchestrator.storage.base import TaskStorage
from task_orchestrator.storage.models import LogLevel, ToolUsageRecord

logger = logging.getLogger(__name__)

_LOGGING_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class AuditSink:
    """Write the user-facing trail through the store and mirror it to the logger.

    Store failures are logged and swallowed so auditing never aborts a run.
    """

    def __init__(self, storage: TaskStorage) -> None:
        self.storage = storage

    def log(
        self,
        task_id: str,
        message: str,
        *,
        level: LogLevel = LogLevel.INFO,
        step_id: str | None = None,
        details: dict[str, Any] | None = None,
        agent_type: str | None = None,
    ) -> None:
        logger.log(
            _LOGGING_LEVELS[level],
            "agent_log task_id=%s step_id=%s agent=%s message=%s",
            task_id,
            step_id,
            agent_type,
            message,
        )
        try:
            self.storage.append_log(
                task_id=task_id,
                message=message,
                level=level,
                step_id=step_id,
                details=details,
                agent_type=agent_type,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("agent_log event=write_failed task_id=%s reason=%s", task_id, exc)

    def tool_started(
        self,
        *,
        task_id: str,
        tool_name: str,
        command: dict[str, Any],
        step_id: str | None = None,
    ) -> ToolUsageRecord | None:
        try:
            usage = self.storage.start_tool_usage(
                task_id=task_id,
                tool_name=tool_name,
                command=command,
                step_id=step_id,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "tool_usage event=start_write_failed task_id=%s tool=%s reason=%s",
                task_id,
                tool_name,
                exc,
            )
            return None
        logger.debug(
            "tool_usage event=start task_id=%s usage_id=%s tool=%s action=%s",
            task_id,
            usage.usage_id,
            tool_name,
            command.get("type"),
        )
        return usage

    def tool_finished(
        self,
        usage: ToolUsageRecord | None,
        *,
        success: bool,
        output: Any = None,
        error: str | None = None,
    ) -> ToolUsageRecord | None:
        """Close a usage opened by ``tool_started``; a usage that was never written is skipped."""
        if usage is None:
            return None
        try:
            finished = self.storage.finish_tool_usage(
                usage.usage_id,
                success=success,
                output=output,
                error=error,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "tool_usage event=end_write_failed task_id=%s usage_id=%s reason=%s",
                usage.task_id,
                usage.usage_id,
                exc,
            )
            return None
        if finished is None:
            logger.warning(
                "tool_usage event=already_closed task_id=%s usage_id=%s",
                usage.task_id,
                usage.usage_id,
            )
        else:
            logger.debug(
                "tool_usage event=end task_id=%s usage_id=%s tool=%s success=%s",
                usage.task_id,
                usage.usage_id,
                usage.tool_name,
                success,
            )
        return finished
