"""Exception hierarchy shared by the orchestration core, tools and API."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestration service."""


class NotFoundError(OrchestratorError):
    """A task (or another record) does not exist."""


class ForbiddenError(OrchestratorError):
    """The requested operation is not allowed in the record's current state."""


class InvalidTransitionError(OrchestratorError):
    """A status change that is not an edge of the state machine."""

    def __init__(self, entity: str, source: str, target: str) -> None:
        super().__init__(f"Invalid {entity} transition {source} -> {target}")
        self.entity = entity
        self.source = source
        self.target = target


class PlanningError(OrchestratorError):
    """The planner could not produce a plan from the generated text."""


class StepExecutionError(OrchestratorError):
    """A step failed; carries the step number so the task failure is traceable."""

    def __init__(self, step_number: int, message: str) -> None:
        super().__init__(f"Step {step_number} failed: {message}")
        self.step_number = step_number


class ActionExecutionError(OrchestratorError):
    """A single action failed inside a step."""


class DependencyResolutionError(ActionExecutionError):
    """A reference points at a result or property that is not available."""


class ToolCapabilityError(ActionExecutionError):
    """A tool rejected an operation or could not perform it."""
