"""Actions, dependency resolution and sequential execution."""

from task_orchestrator.actions.models import (
    Action,
    ActionOutcome,
    PreviousResult,
    PriorResults,
    Reference,
)
from task_orchestrator.actions.resolver import resolve_dependencies
from task_orchestrator.actions.runner import ActionRunner, substitute_references

__all__ = [
    "Action",
    "ActionOutcome",
    "ActionRunner",
    "PreviousResult",
    "PriorResults",
    "Reference",
    "resolve_dependencies",
    "substitute_references",
]
