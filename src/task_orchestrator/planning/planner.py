"""Planner: turn a task into an ordered list of executable steps.

The model is asked for a numbered list. Each numbered line opens a step; any
other non-blank line is continuation text for the open step and may carry a
time estimate or tool hints.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from task_orchestrator.errors import PlanningError
from task_orchestrator.llm import LLMAdapter, TextGenerationOptions
from task_orchestrator.storage.models import PlannedStep, TaskRecord

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = (
    "You are a planning assistant. Break tasks into short, concrete, numbered steps "
    "that a tool-using agent can execute one after another."
)

_STEP_LINE = re.compile(r"^\s*(\d+)\s*[.):\]]\s+(.+)$")
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•]\s+)")
_TIME_ESTIMATE = re.compile(
    r"(\d+)\s*(seconds?|secs?|minutes?|mins?|hours?|hrs?|h)\b",
    re.IGNORECASE,
)
_TIME_MARKERS = ("time", "duration", "estimate")
_TOOL_MARKERS = ("tool", "resource")
_TOOL_KEYWORDS = (
    "browser",
    "web",
    "search",
    "terminal",
    "shell",
    "file",
    "python",
    "code",
    "database",
    "sql",
    "api",
    "document",
)


class Planner:
    """Build plans with the text-generation collaborator, falling back to a single step."""

    def __init__(
        self,
        *,
        llm_adapter: LLMAdapter | None = None,
        mode: str = "llm",
        options: TextGenerationOptions | None = None,
    ) -> None:
        self.mode = mode.lower().strip()
        self.llm_adapter = llm_adapter
        self.options = options or TextGenerationOptions(
            temperature=0.2,
            system_prompt=PLANNER_SYSTEM_PROMPT,
        )

    def create_plan(self, task: TaskRecord) -> list[PlannedStep]:
        if self.mode != "llm" or self.llm_adapter is None:
            if self.mode == "llm":
                logger.warning(
                    "Planner mode is 'llm' but no LLM adapter was available; "
                    "using fallback plan. task_id=%s",
                    task.task_id,
                )
            return fallback_plan(task)

        try:
            plan_text = self.llm_adapter.generate_text(build_planning_prompt(task), self.options)
            steps = parse_plan_text(plan_text)
            if not steps:
                raise PlanningError("Planner response did not contain a numbered step list")
            return steps
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "LLM planner failed; falling back to single-step plan. task_id=%s reason=%s",
                task.task_id,
                exc,
            )
            return fallback_plan(task)

    def update_plan(
        self,
        task: TaskRecord,
        current_plan: list[PlannedStep],
        completed_indices: list[int],
        intermediate_results: list[Any],
    ) -> list[PlannedStep]:
        """Re-plan the remaining steps given what completed steps produced.

        ``completed_indices`` are zero-based positions in ``current_plan``.
        Errors from the collaborator propagate; a response without steps raises
        ``PlanningError``.
        """
        if self.llm_adapter is None:
            raise PlanningError("Plan updates require a text-generation adapter")
        prompt = build_update_prompt(task, current_plan, completed_indices, intermediate_results)
        steps = parse_plan_text(self.llm_adapter.generate_text(prompt, self.options))
        if not steps:
            raise PlanningError("Plan update response did not contain a numbered step list")
        return steps


def build_planning_prompt(task: TaskRecord) -> str:
    description = task.description or "No additional description provided"
    return (
        "Task Planning Request:\n\n"
        "Break down the following task into a detailed step-by-step plan.\n\n"
        f"Task Title: {task.title}\n"
        f"Task Description: {description}\n\n"
        "Each step should be clear, actionable and specific, covering everything from "
        "initial data gathering to the final output.\n\n"
        "For each step, provide:\n"
        "1. A clear description of what needs to be done\n"
        "2. Any tools or resources that might be needed for that step\n"
        "3. An estimate of the time required (if possible)\n\n"
        "Format the response as a numbered list of steps."
    )


def build_update_prompt(
    task: TaskRecord,
    current_plan: list[PlannedStep],
    completed_indices: list[int],
    intermediate_results: list[Any],
) -> str:
    completed = set(completed_indices)
    plan_lines = [
        f"{index + 1}. {'[COMPLETED]' if index in completed else '[PENDING]'} {step.description}"
        for index, step in enumerate(current_plan)
    ]
    result_lines = [
        f"Result {index + 1}: {json.dumps(result, default=str)}"
        for index, result in enumerate(intermediate_results)
    ]
    next_number = max(completed, default=-1) + 2
    description = task.description or "No additional description provided"
    completed_numbers = ", ".join(str(index + 1) for index in sorted(completed)) or "none"
    return (
        "Task Plan Update Request:\n\n"
        f"Task Title: {task.title}\n"
        f"Task Description: {description}\n\n"
        "Current plan:\n"
        + "\n".join(plan_lines)
        + f"\n\nCompleted steps: {completed_numbers}\n\n"
        "Intermediate results:\n"
        + ("\n".join(result_lines) or "none")
        + "\n\nBased on these intermediate results, provide an updated plan for the "
        "remaining steps.\n"
        f"Format the response as a numbered list of steps, starting from step {next_number}."
    )


def parse_plan_text(text: str) -> list[PlannedStep]:
    steps: list[PlannedStep] = []
    current: dict[str, Any] | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _STEP_LINE.match(raw_line)
        if match and match.group(2).strip():
            if current is not None:
                steps.append(PlannedStep.model_validate(current))
            current = {"description": match.group(2).strip(), "tool_hints": []}
            continue
        if current is None:
            continue

        continuation = _BULLET_PREFIX.sub("", line)
        current["description"] = f"{current['description']} {continuation}"
        lowered = continuation.lower()
        if any(marker in lowered for marker in _TIME_MARKERS):
            seconds = _parse_seconds(continuation)
            if seconds is not None:
                current["estimated_seconds"] = seconds
        if any(marker in lowered for marker in _TOOL_MARKERS):
            hints = [keyword for keyword in _TOOL_KEYWORDS if keyword in lowered]
            if hints:
                current["tool_hints"] = hints

    if current is not None:
        steps.append(PlannedStep.model_validate(current))
    return steps


def fallback_plan(task: TaskRecord) -> list[PlannedStep]:
    description = task.title.strip()
    if task.description and task.description.strip():
        description = f"{description}: {task.description.strip()}"
    return [PlannedStep(description=description)]


def _parse_seconds(text: str) -> int | None:
    match = _TIME_ESTIMATE.search(text)
    if match is None:
        return None
    value = int(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("min"):
        return value * 60
    if unit.startswith("h"):
        return value * 3600
    return value
