"""Rewrite result placeholders into explicit references to earlier actions.

A single forward pass: every reference produced points strictly backwards, so
the runner can substitute values in execution order. Nothing is executed here.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

from task_orchestrator.actions.models import Action, PreviousResult, PriorResults, Reference

PREVIOUS_RESULT_PATTERN = re.compile(r"^\$\{previous_result(?:\.([A-Za-z_][A-Za-z0-9_]*))?\}$")


def resolve_dependencies(actions: list[Action]) -> list[Action]:
    resolved: list[Action] = []
    for index, action in enumerate(actions):
        parameters = {
            key: _resolve_value(value, index, actions) for key, value in action.parameters.items()
        }
        resolved.append(replace(action, parameters=parameters))
    return resolved


def _resolve_value(value: Any, index: int, actions: list[Action]) -> Any:
    if isinstance(value, PreviousResult):
        if index == 0:
            return value
        return Reference(from_action_index=index - 1, property_name=value.property_name)
    if isinstance(value, PriorResults):
        return [
            Reference(from_action_index=earlier, optional=True)
            for earlier in range(index)
            if actions[earlier].type in value.action_types
        ]
    if isinstance(value, str):
        match = PREVIOUS_RESULT_PATTERN.match(value.strip())
        if match is None or index == 0:
            return value
        return Reference(from_action_index=index - 1, property_name=match.group(1))
    if isinstance(value, list):
        return [_resolve_value(item, index, actions) for item in value]
    if isinstance(value, dict):
        return {key: _resolve_value(item, index, actions) for key, item in value.items()}
    return value
