"""Fallback handler: ask the LLM for actions, summarize what they produced."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from typing import Any

from task_orchestrator.actions import Action, ActionOutcome
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind, aggregate_outputs
from task_orchestrator.llm import LLMAdapter, TextGenerationOptions
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind

logger = logging.getLogger(__name__)

MAX_ACTIONS = 3
ACTION_SYSTEM_PROMPT = (
    "You break a task step into tool actions. Reply with JSON only: an array of 1 to "
    f"{MAX_ACTIONS} objects with keys type, tool and parameters."
)
SUMMARY_MAX_CHARS = 6000
_JSON_ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)

TOOL_CATALOG = {
    ToolKind.BROWSER: "navigate(url), search(query), extract(selector)",
    ToolKind.FILESYSTEM: (
        "read_file(path), write_file(path, content), list_directory(path), "
        "create_directory(path), delete(path), copy(source, destination), "
        "move(source, destination), stat(path)"
    ),
    ToolKind.SHELL: "execute_command(command), run_script(script, interpreter)",
    ToolKind.CODE: (
        "execute_code(code, language), execute_function(function, language, data), "
        "save_code(code, language, filename), load_code(filename)"
    ),
    ToolKind.TEXT: (
        "generate_code(problem, language), optimize_code(code, language, criteria), "
        "explain_code(code, language), summarize(text, max_words), generate_text(prompt)"
    ),
    ToolKind.DOCUMENT: (
        "read_document(path), create_document(path, content), "
        "update_document(path, changes, mode), merge_documents(paths, output_path), "
        "extract_content(path, query), convert_document(input_path, output_path, to_format)"
    ),
    ToolKind.DATA: (
        "load_data(source, format), clean_data(data, operations), "
        "analyze_data(data, analysis), visualize_data(data, visualization), "
        "generate_report(data, analyses, format)"
    ),
}


class GeneralPurposeHandler(CapabilityHandler):
    kind = HandlerKind.GENERAL_PURPOSE
    tool_kinds = tuple(ToolKind)

    def __init__(self, *, llm_adapter: LLMAdapter | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm_adapter = llm_adapter

    def decompose(self, step: StepRecord) -> list[Action]:
        if self.llm_adapter is None:
            return [fallback_action(step.description)]
        try:
            text = self.llm_adapter.generate_text(
                build_action_prompt(step.description),
                TextGenerationOptions(
                    temperature=0.2,
                    max_tokens=800,
                    system_prompt=ACTION_SYSTEM_PROMPT,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "general_handler event=llm_failed step=%d error_type=%s reason=%s",
                step.step_number,
                exc.__class__.__name__,
                exc,
            )
            return [fallback_action(step.description)]

        actions = parse_actions(text)
        if not actions:
            logger.warning("general_handler event=unparseable_actions step=%d", step.step_number)
            return [fallback_action(step.description)]
        return actions

    def required_tools(self, actions: Iterable[Action]) -> tuple[ToolKind, ...]:
        return tuple(dict.fromkeys(action.tool for action in actions))

    def aggregate(self, step: StepRecord, outcomes: list[ActionOutcome]) -> Any:
        aggregated = aggregate_outputs(outcomes)
        if not isinstance(aggregated, dict) or "actions_executed" not in aggregated:
            return aggregated
        if self.llm_adapter is None:
            return aggregated
        try:
            summary = self.llm_adapter.generate_text(
                build_summary_prompt(step.description, aggregated["results"]),
                TextGenerationOptions(temperature=0.3, max_tokens=400),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "general_handler event=summary_failed step=%d error_type=%s reason=%s",
                step.step_number,
                exc.__class__.__name__,
                exc,
            )
            return aggregated
        return {**aggregated, "summary": summary.strip()}


def build_action_prompt(description: str) -> str:
    catalog = "\n".join(f"- {kind.value}: {operations}" for kind, operations in TOOL_CATALOG.items())
    return (
        f"Step: {description}\n\n"
        f"Available tools and operations:\n{catalog}\n\n"
        "A parameter may be the string ${previous_result} or ${previous_result.<field>} "
        "to use the output of the action before it.\n"
        'Example: [{"type": "search", "tool": "browser", "parameters": {"query": "python"}}]'
    )


def build_summary_prompt(description: str, results: list[Any]) -> str:
    rendered = json.dumps(results, default=str)[:SUMMARY_MAX_CHARS]
    return (
        f"Summarize the outcome of this step in a few sentences.\n\n"
        f"Step: {description}\n\nResults:\n{rendered}"
    )


def parse_actions(text: str) -> list[Action]:
    """Read a JSON array of actions, tolerating prose around it; drop invalid entries."""
    payload = _load_json_array(text)
    if payload is None:
        return []
    actions: list[Action] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        action_type = item.get("type")
        parameters = item.get("parameters", {})
        try:
            tool = ToolKind(str(item.get("tool", "")).lower())
        except ValueError:
            continue
        if not isinstance(action_type, str) or not action_type or not isinstance(parameters, dict):
            continue
        actions.append(Action(action_type, tool, parameters))
    return actions[:MAX_ACTIONS]


def fallback_action(description: str) -> Action:
    return Action(
        "execute_code",
        ToolKind.CODE,
        {"code": f"print({json.dumps(description)})", "language": "python"},
    )


def _load_json_array(text: str) -> list[Any] | None:
    candidates = [text.strip()]
    match = _JSON_ARRAY_PATTERN.search(text)
    if match is not None:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, list):
            return payload
    return None
