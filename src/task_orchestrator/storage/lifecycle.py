"""Task and step lifecycle edges.

Every status write in the stores is a compare-and-set whose accepted source
states come from these tables, so a record can only move along an edge.
"""

from __future__ import annotations

from task_orchestrator.errors import InvalidTransitionError
from task_orchestrator.storage.models import StepStatus, TaskStatus

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PLANNING}),
    TaskStatus.PLANNING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.FAILED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.RESOLVED, TaskStatus.FAILED}),
    TaskStatus.RESOLVED: frozenset({TaskStatus.CLOSED}),
    TaskStatus.CLOSED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}

TERMINAL_TASK_STATUSES = frozenset(
    status for status, targets in TASK_TRANSITIONS.items() if not targets
)

# Statuses that stamp completed_at when entered.
COMPLETING_TASK_STATUSES = frozenset({TaskStatus.RESOLVED, TaskStatus.CLOSED})


def task_sources_for(target: TaskStatus) -> frozenset[TaskStatus]:
    return frozenset(
        source for source, targets in TASK_TRANSITIONS.items() if target in targets
    )


def step_sources_for(target: StepStatus) -> frozenset[StepStatus]:
    return frozenset(
        source for source, targets in STEP_TRANSITIONS.items() if target in targets
    )


def check_task_edges(sources: frozenset[TaskStatus] | set[TaskStatus], target: TaskStatus) -> None:
    for source in sources:
        if target not in TASK_TRANSITIONS[source]:
            raise InvalidTransitionError("task", source.value, target.value)


def check_step_edges(sources: frozenset[StepStatus] | set[StepStatus], target: StepStatus) -> None:
    for source in sources:
        if target not in STEP_TRANSITIONS[source]:
            raise InvalidTransitionError("step", source.value, target.value)


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_TASK_STATUSES
