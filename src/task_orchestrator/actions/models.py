"""Action values exchanged between decomposers, the resolver and the runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from task_orchestrator.tools.base import ToolKind


@dataclass(frozen=True)
class PreviousResult:
    """Placeholder for the output of the action immediately before this one."""

    property_name: str | None = None


@dataclass(frozen=True)
class PriorResults:
    """Placeholder for the outputs of every earlier action of the given types."""

    action_types: tuple[str, ...]


@dataclass(frozen=True)
class Reference:
    """Resolved pointer to the output of an earlier action in the same step."""

    from_action_index: int
    property_name: str | None = None
    optional: bool = False


@dataclass
class Action:
    type: str
    tool: ToolKind
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_command(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tool": self.tool.value,
            "parameters": {key: _describe(value) for key, value in self.parameters.items()},
        }


@dataclass
class ActionOutcome:
    index: int
    action: Action
    success: bool
    output: Any = None
    error: str | None = None


def _describe(value: Any) -> Any:
    if isinstance(value, Reference):
        described: dict[str, Any] = {"$ref": value.from_action_index}
        if value.property_name:
            described["property"] = value.property_name
        if value.optional:
            described["optional"] = True
        return described
    if isinstance(value, PreviousResult):
        return {"$previous_result": value.property_name}
    if isinstance(value, PriorResults):
        return {"$prior_results": list(value.action_types)}
    if isinstance(value, list):
        return [_describe(item) for item in value]
    if isinstance(value, dict):
        return {key: _describe(item) for key, item in value.items()}
    return value
