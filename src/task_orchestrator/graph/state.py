"""Typed state contract for the task execution graph."""

from typing import Any, TypedDict


class ExecutionState(TypedDict, total=False):
    task_id: str
    planned_steps: list[dict[str, Any]]
    step_count: int
    step_results: list[dict[str, Any]]
    cancelled: bool


def initial_state(task_id: str) -> ExecutionState:
    return {
        "task_id": task_id,
        "planned_steps": [],
        "step_count": 0,
        "step_results": [],
        "cancelled": False,
    }
