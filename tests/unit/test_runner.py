from collections.abc import Mapping
from typing import Any

from task_orchestrator.actions import (
    Action,
    ActionRunner,
    PreviousResult,
    Reference,
    resolve_dependencies,
    substitute_references,
)
from task_orchestrator.audit import AuditSink
from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.storage.memory import InMemoryTaskStorage
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation


class EchoInput(StrictModel):
    value: Any


class EchoOutput(StrictModel):
    value: Any


class RecordingTool(ToolCapability):
    kind = ToolKind.TEXT

    def __init__(self) -> None:
        self.seen: list[Any] = []

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "echo": ToolOperation(EchoInput, EchoOutput, self.echo),
            "boom": ToolOperation(EchoInput, EchoOutput, self.boom),
        }

    def echo(self, payload: EchoInput) -> EchoOutput:
        self.seen.append(payload.value)
        return EchoOutput(value=payload.value)

    def boom(self, payload: EchoInput) -> EchoOutput:
        raise ToolCapabilityError("tool exploded")


def _run(storage, audit, actions):
    task = storage.create_task(title="Runner")
    tool = RecordingTool()
    outcomes = ActionRunner(audit).run(
        resolve_dependencies(actions),
        {ToolKind.TEXT: tool},
        task_id=task.task_id,
    )
    return task, tool, outcomes


def test_failed_action_does_not_stop_later_actions(storage, audit) -> None:
    task, tool, outcomes = _run(
        storage,
        audit,
        [
            Action("boom", ToolKind.TEXT, {"value": 1}),
            Action("echo", ToolKind.TEXT, {"value": "still runs"}),
        ],
    )

    assert [outcome.success for outcome in outcomes] == [False, True]
    assert outcomes[0].error == "tool exploded"
    assert outcomes[1].output == {"value": "still runs"}
    assert tool.seen == ["still runs"]

    usages = storage.list_tool_usages(task.task_id)
    assert len(usages) == 2
    assert all(usage.ended_at is not None for usage in usages)
    assert [usage.success for usage in usages] == [False, True]
    assert usages[0].error == "tool exploded"
    assert usages[0].command == {"type": "boom", "tool": "text", "parameters": {"value": 1}}


def test_reference_values_are_substituted_before_invocation(storage, audit) -> None:
    _, tool, outcomes = _run(
        storage,
        audit,
        [
            Action("echo", ToolKind.TEXT, {"value": {"code": "print(1)"}}),
            Action("echo", ToolKind.TEXT, {"value": PreviousResult("value")}),
        ],
    )

    assert outcomes[1].success
    assert tool.seen == [{"code": "print(1)"}, {"code": "print(1)"}]


def test_reference_to_failed_action_fails_with_dependency_error(storage, audit) -> None:
    _, tool, outcomes = _run(
        storage,
        audit,
        [
            Action("boom", ToolKind.TEXT, {"value": 1}),
            Action("echo", ToolKind.TEXT, {"value": PreviousResult()}),
            Action("echo", ToolKind.TEXT, {"value": "independent"}),
        ],
    )

    assert [outcome.success for outcome in outcomes] == [False, False, True]
    assert "not available" in (outcomes[1].error or "")
    assert tool.seen == ["independent"]


def test_missing_property_unknown_operation_and_missing_tool_are_isolated(storage, audit) -> None:
    _, _, outcomes = _run(
        storage,
        audit,
        [
            Action("echo", ToolKind.TEXT, {"value": "x"}),
            Action("echo", ToolKind.TEXT, {"value": PreviousResult("missing")}),
            Action("shout", ToolKind.TEXT, {"value": "x"}),
            Action("navigate", ToolKind.BROWSER, {"url": "https://example.com"}),
            Action("echo", ToolKind.TEXT, {"unexpected": "field"}),
        ],
    )

    assert [outcome.success for outcome in outcomes] == [True, False, False, False, False]
    assert "no property 'missing'" in (outcomes[1].error or "")
    assert "does not support operation 'shout'" in (outcomes[2].error or "")
    assert "not available for this step" in (outcomes[3].error or "")
    assert "Invalid parameters" in (outcomes[4].error or "")


def test_first_action_placeholder_fails_that_action(storage, audit) -> None:
    _, _, outcomes = _run(storage, audit, [Action("echo", ToolKind.TEXT, {"value": PreviousResult()})])

    assert not outcomes[0].success
    assert "no preceding action" in (outcomes[0].error or "")


def test_optional_references_to_missing_results_are_dropped() -> None:
    parameters = {
        "analyses": [
            Reference(from_action_index=0, optional=True),
            Reference(from_action_index=1, optional=True),
        ],
        "title": "Report",
    }

    substituted = substitute_references(parameters, {1: {"analysis": {"mean": 2}}})

    assert substituted == {"analyses": [{"analysis": {"mean": 2}}], "title": "Report"}


class FlakyUsageStorage(InMemoryTaskStorage):
    """Store whose first usage close and second usage open fail."""

    def __init__(self) -> None:
        super().__init__()
        self.finish_calls = 0
        self.start_calls = 0

    def start_tool_usage(self, **kwargs):
        self.start_calls += 1
        if self.start_calls == 2:
            raise ConnectionError("usage table unavailable")
        return super().start_tool_usage(**kwargs)

    def finish_tool_usage(self, usage_id, **kwargs):
        self.finish_calls += 1
        if self.finish_calls == 1:
            raise ConnectionError("usage table unavailable")
        return super().finish_tool_usage(usage_id, **kwargs)


def test_usage_write_failures_do_not_abort_later_actions() -> None:
    storage = FlakyUsageStorage()
    task, tool, outcomes = _run(
        storage,
        AuditSink(storage),
        [
            Action("boom", ToolKind.TEXT, {"value": 1}),
            Action("echo", ToolKind.TEXT, {"value": "second"}),
            Action("echo", ToolKind.TEXT, {"value": "third"}),
        ],
    )

    assert [outcome.success for outcome in outcomes] == [False, True, True]
    assert tool.seen == ["second", "third"]
    usages = storage.list_tool_usages(task.task_id)
    assert [usage.command["parameters"]["value"] for usage in usages] == [1, "third"]
    assert usages[0].ended_at is None
    assert usages[1].success is True
