import pytest

from task_orchestrator.errors import InvalidTransitionError
from task_orchestrator.storage.lifecycle import (
    TERMINAL_TASK_STATUSES,
    check_task_edges,
    is_terminal,
    step_sources_for,
    task_sources_for,
)
from task_orchestrator.storage.memory import InMemoryTaskStorage
from task_orchestrator.storage.models import PlannedStep, StepStatus, TaskStatus


def _start(storage: InMemoryTaskStorage, task_id: str) -> None:
    for target in (TaskStatus.PLANNING, TaskStatus.IN_PROGRESS):
        assert storage.transition_task(
            task_id, to_status=target, from_statuses=task_sources_for(target)
        )


def test_terminal_statuses_have_no_outgoing_edges() -> None:
    assert TERMINAL_TASK_STATUSES == {TaskStatus.CLOSED, TaskStatus.FAILED}
    assert is_terminal(TaskStatus.FAILED)
    assert not is_terminal(TaskStatus.RESOLVED)
    for terminal in TERMINAL_TASK_STATUSES:
        for target in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                check_task_edges({terminal}, target)


def test_edge_sources_follow_the_lifecycle() -> None:
    assert task_sources_for(TaskStatus.FAILED) == {TaskStatus.PLANNING, TaskStatus.IN_PROGRESS}
    assert task_sources_for(TaskStatus.CLOSED) == {TaskStatus.RESOLVED}
    assert step_sources_for(StepStatus.COMPLETED) == {StepStatus.IN_PROGRESS}


def test_transition_task_is_compare_and_set(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Cas")

    first = storage.transition_task(
        task.task_id, to_status=TaskStatus.PLANNING, from_statuses=frozenset({TaskStatus.PENDING})
    )
    second = storage.transition_task(
        task.task_id, to_status=TaskStatus.PLANNING, from_statuses=frozenset({TaskStatus.PENDING})
    )

    assert first is not None and first.status == TaskStatus.PLANNING
    assert second is None


def test_transition_task_rejects_non_edges(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Closed")

    with pytest.raises(InvalidTransitionError):
        storage.transition_task(
            task.task_id,
            to_status=TaskStatus.PENDING,
            from_statuses=frozenset({TaskStatus.CLOSED}),
        )


def test_resolved_and_closed_stamp_completed_at(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Finish")
    _start(storage, task.task_id)

    resolved = storage.transition_task(
        task.task_id,
        to_status=TaskStatus.RESOLVED,
        from_statuses=task_sources_for(TaskStatus.RESOLVED),
    )

    assert resolved is not None
    assert resolved.completed_at is not None


def test_replace_steps_numbers_one_to_n(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Plan")
    storage.replace_steps(task.task_id, [PlannedStep(description="old")])

    steps = storage.replace_steps(
        task.task_id,
        [PlannedStep(description=name) for name in ("first", "second", "third")],
    )

    assert [step.step_number for step in steps] == [1, 2, 3]
    assert [step.description for step in storage.list_steps(task.task_id)] == [
        "first",
        "second",
        "third",
    ]


def test_step_start_requires_running_task(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Guarded")
    (step,) = storage.replace_steps(task.task_id, [PlannedStep(description="only")])

    blocked = storage.transition_step(
        step.step_id,
        to_status=StepStatus.IN_PROGRESS,
        from_statuses=step_sources_for(StepStatus.IN_PROGRESS),
        task_status_guard=TaskStatus.IN_PROGRESS,
    )
    _start(storage, task.task_id)
    started = storage.transition_step(
        step.step_id,
        to_status=StepStatus.IN_PROGRESS,
        from_statuses=step_sources_for(StepStatus.IN_PROGRESS),
        task_status_guard=TaskStatus.IN_PROGRESS,
    )

    assert blocked is None
    assert started is not None and started.started_at is not None


def test_cancel_task_fails_running_steps_only(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Cancel")
    first, second = storage.replace_steps(
        task.task_id, [PlannedStep(description="a"), PlannedStep(description="b")]
    )
    _start(storage, task.task_id)
    storage.transition_step(
        first.step_id,
        to_status=StepStatus.IN_PROGRESS,
        from_statuses=step_sources_for(StepStatus.IN_PROGRESS),
    )

    cancelled = storage.cancel_task(task.task_id, from_statuses=task_sources_for(TaskStatus.FAILED))

    assert cancelled is not None and cancelled.status == TaskStatus.FAILED
    statuses = {step.step_id: step.status for step in storage.list_steps(task.task_id)}
    assert statuses == {first.step_id: StepStatus.FAILED, second.step_id: StepStatus.PENDING}
    assert storage.cancel_task(task.task_id, from_statuses=task_sources_for(TaskStatus.FAILED)) is None


def test_tool_usage_closes_exactly_once(storage: InMemoryTaskStorage) -> None:
    task = storage.create_task(title="Usage")
    usage = storage.start_tool_usage(
        task_id=task.task_id, tool_name="shell", command={"type": "execute_command"}
    )

    finished = storage.finish_tool_usage(usage.usage_id, success=True, output={"exit_code": 0})
    again = storage.finish_tool_usage(usage.usage_id, success=False, error="late")

    assert finished is not None and finished.ended_at is not None and finished.success
    assert again is None
    (stored,) = storage.list_tool_usages(task.task_id)
    assert stored.success is True


def test_list_tasks_newest_first_and_delete_cascades(storage: InMemoryTaskStorage) -> None:
    older = storage.create_task(title="older")
    newer = storage.create_task(title="newer")
    storage.append_log(task_id=older.task_id, message="hello")

    assert [task.title for task in storage.list_tasks()] == ["newer", "older"]
    assert storage.delete_task(older.task_id) is True
    assert storage.list_logs(older.task_id) == []
    assert [task.task_id for task in storage.list_tasks()] == [newer.task_id]
