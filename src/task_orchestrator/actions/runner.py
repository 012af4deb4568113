"""Sequential action execution with reference substitution and usage auditing."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from task_orchestrator.actions.models import Action, ActionOutcome, PreviousResult, Reference
from task_orchestrator.audit import AuditSink
from task_orchestrator.errors import (
    ActionExecutionError,
    DependencyResolutionError,
    ToolCapabilityError,
)
from task_orchestrator.tools.base import ToolCapability, ToolKind

logger = logging.getLogger(__name__)

_MISSING = object()


class ActionRunner:
    """Run resolved actions one at a time.

    A failing action is recorded and skipped; later actions still run, and any
    of them that reference the failed one fail with a dependency error.
    """

    def __init__(self, audit: AuditSink) -> None:
        self.audit = audit

    def run(
        self,
        actions: list[Action],
        tools: Mapping[ToolKind, ToolCapability],
        *,
        task_id: str,
        step_id: str | None = None,
        agent_type: str | None = None,
    ) -> list[ActionOutcome]:
        results: dict[int, Any] = {}
        outcomes: list[ActionOutcome] = []

        for index, action in enumerate(actions):
            usage = self.audit.tool_started(
                task_id=task_id,
                tool_name=action.tool.value,
                command=action.to_command(),
                step_id=step_id,
            )
            try:
                parameters = substitute_references(action.parameters, results)
                output = _invoke(tools, action, parameters)
            except Exception as exc:  # noqa: BLE001
                error_message = str(exc) or exc.__class__.__name__
                self.audit.tool_finished(usage, success=False, error=error_message)
                logger.warning(
                    "action_run event=failed task_id=%s step_id=%s agent=%s index=%d "
                    "action=%s tool=%s error_type=%s reason=%s",
                    task_id,
                    step_id,
                    agent_type,
                    index,
                    action.type,
                    action.tool.value,
                    exc.__class__.__name__,
                    error_message,
                )
                outcomes.append(
                    ActionOutcome(index=index, action=action, success=False, error=error_message)
                )
                continue

            self.audit.tool_finished(usage, success=True, output=output)
            results[index] = output
            outcomes.append(ActionOutcome(index=index, action=action, success=True, output=output))

        return outcomes


def substitute_references(parameters: dict[str, Any], results: Mapping[int, Any]) -> dict[str, Any]:
    substituted: dict[str, Any] = {}
    for key, value in parameters.items():
        resolved = _substitute(value, results)
        if resolved is not _MISSING:
            substituted[key] = resolved
    return substituted


def _substitute(value: Any, results: Mapping[int, Any]) -> Any:
    if isinstance(value, Reference):
        return _lookup(value, results)
    if isinstance(value, PreviousResult):
        raise DependencyResolutionError("Previous-result placeholder has no preceding action")
    if isinstance(value, list):
        items = [_substitute(item, results) for item in value]
        return [item for item in items if item is not _MISSING]
    if isinstance(value, dict):
        return substitute_references(value, results)
    return value


def _lookup(reference: Reference, results: Mapping[int, Any]) -> Any:
    if reference.from_action_index not in results:
        if reference.optional:
            return _MISSING
        raise DependencyResolutionError(
            f"Result of action {reference.from_action_index} is not available"
        )
    result = results[reference.from_action_index]
    if reference.property_name is None:
        return result
    if not isinstance(result, Mapping) or reference.property_name not in result:
        if reference.optional:
            return _MISSING
        raise DependencyResolutionError(
            f"Result of action {reference.from_action_index} has no property "
            f"'{reference.property_name}'"
        )
    return result[reference.property_name]


def _invoke(
    tools: Mapping[ToolKind, ToolCapability],
    action: Action,
    parameters: dict[str, Any],
) -> dict[str, Any]:
    tool = tools.get(action.tool)
    if tool is None:
        raise ToolCapabilityError(f"Tool '{action.tool.value}' is not available for this step")
    try:
        return tool.invoke(action.type, parameters)
    except ValidationError as exc:
        raise ActionExecutionError(
            f"Invalid parameters or output for {action.tool.value}.{action.type}: "
            f"{exc.error_count()} validation error(s)"
        ) from exc
