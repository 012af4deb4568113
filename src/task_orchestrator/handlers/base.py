"""Capability handler contract: match a step, decompose it, run it, aggregate."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from task_orchestrator.actions import Action, ActionOutcome, ActionRunner, resolve_dependencies
from task_orchestrator.audit import AuditSink
from task_orchestrator.handlers.keywords import StepMatcher
from task_orchestrator.storage.models import LogLevel, StepRecord, TaskRecord
from task_orchestrator.tools.base import ToolKind, Toolbox

logger = logging.getLogger(__name__)


class HandlerKind(StrEnum):
    WEB_BROWSING = "web_browsing"
    DATA_ANALYSIS = "data_analysis"
    DOCUMENT_PROCESSING = "document_processing"
    CODE_EXECUTION = "code_execution"
    GENERAL_PURPOSE = "general_purpose"


@dataclass
class StepOutcome:
    result: Any
    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def failed_actions(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


class CapabilityHandler(ABC):
    """Turn one plan step into actions and run them against fresh tool instances.

    Subclasses set ``kind`` and ``tool_kinds`` and implement ``decompose``.
    ``execute_step`` lets exceptions from decomposition or tool setup
    propagate; individual action failures do not.
    """

    kind: HandlerKind
    tool_kinds: tuple[ToolKind, ...] = ()

    def __init__(
        self,
        *,
        matcher: StepMatcher,
        audit: AuditSink,
        toolbox: Toolbox,
        runner: ActionRunner | None = None,
    ) -> None:
        self.matcher = matcher
        self.audit = audit
        self.toolbox = toolbox
        self.runner = runner or ActionRunner(audit)

    @property
    def agent_type(self) -> str:
        return self.kind.value

    def can_handle_step(self, step: StepRecord) -> bool:
        return self.matcher.matches(step.description)

    @abstractmethod
    def decompose(self, step: StepRecord) -> list[Action]: ...

    def required_tools(self, actions: Iterable[Action]) -> tuple[ToolKind, ...]:
        return self.tool_kinds

    def aggregate(self, step: StepRecord, outcomes: list[ActionOutcome]) -> Any:
        return aggregate_outputs(outcomes)

    def execute_step(self, task: TaskRecord, step: StepRecord) -> StepOutcome:
        self.audit.log(
            task.task_id,
            f"{self.agent_type} handling step {step.step_number}: {step.description}",
            step_id=step.step_id,
            agent_type=self.agent_type,
        )
        actions = resolve_dependencies(self.decompose(step))
        logger.info(
            "step_handler event=decomposed task_id=%s step=%d agent=%s actions=%s",
            task.task_id,
            step.step_number,
            self.agent_type,
            [action.type for action in actions],
        )

        with self.toolbox.open(self.required_tools(actions)) as tools:
            outcomes = self.runner.run(
                actions,
                tools,
                task_id=task.task_id,
                step_id=step.step_id,
                agent_type=self.agent_type,
            )

        outcome = StepOutcome(result=self.aggregate(step, outcomes), outcomes=outcomes)
        failed = outcome.failed_actions
        self.audit.log(
            task.task_id,
            f"Executed {len(outcomes)} action(s), {len(failed)} failed",
            level=LogLevel.WARNING if failed else LogLevel.INFO,
            step_id=step.step_id,
            details={
                "actions": [action.type for action in actions],
                "failed": [
                    {"index": item.index, "type": item.action.type, "error": item.error}
                    for item in failed
                ],
            },
            agent_type=self.agent_type,
        )
        return outcome


def aggregate_outputs(outcomes: list[ActionOutcome]) -> Any:
    results = [outcome.output for outcome in outcomes if outcome.success]
    if not results:
        return []
    if len(results) == 1:
        return results[0]
    return {"actions_executed": len(results), "results": results}
