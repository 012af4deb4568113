"""Executor: drive one task from PENDING through planning and its steps."""

from __future__ import annotations

import json
import logging
from typing import Any

from task_orchestrator.audit import AuditSink
from task_orchestrator.errors import (
    ForbiddenError,
    NotFoundError,
    PlanningError,
    StepExecutionError,
)
from task_orchestrator.graph.state import ExecutionState, initial_state
from task_orchestrator.graph.workflow import build_graph
from task_orchestrator.handlers import CapabilityRegistry
from task_orchestrator.planning import Planner
from task_orchestrator.storage.base import TaskStorage
from task_orchestrator.storage.lifecycle import step_sources_for, task_sources_for
from task_orchestrator.storage.models import (
    LogLevel,
    PlannedStep,
    StepStatus,
    TaskRecord,
    TaskStatus,
)

logger = logging.getLogger(__name__)

AGENT_TYPE = "executor"
FAILABLE_TASK_STATUSES = task_sources_for(TaskStatus.FAILED)


class Executor:
    """Plan a task, run its steps strictly in order, and resolve or fail it.

    Every status write is a compare-and-set, so a concurrent cancel (which
    moves the task to FAILED) is noticed at the next write and the run stops
    without touching the remaining steps.
    """

    def __init__(
        self,
        *,
        storage: TaskStorage,
        planner: Planner,
        registry: CapabilityRegistry,
        audit: AuditSink,
    ) -> None:
        self.storage = storage
        self.planner = planner
        self.registry = registry
        self.audit = audit
        self.workflow = build_graph(self)

    def start(self, task_id: str) -> TaskRecord:
        """Claim a PENDING task by moving it to PLANNING.

        The compare-and-set makes the claim exclusive: of two concurrent
        callers exactly one wins and the other gets ``ForbiddenError``.
        """
        task = self._require_task(task_id)
        if task.status != TaskStatus.PENDING:
            raise ForbiddenError(f"Task {task_id} is {task.status.value}; only PENDING tasks run")

        started = self.storage.transition_task(
            task_id,
            to_status=TaskStatus.PLANNING,
            from_statuses=task_sources_for(TaskStatus.PLANNING),
        )
        if started is None:
            raise ForbiddenError(f"Task {task_id} is no longer PENDING")

        logger.info("task_run event=start task_id=%s", task_id)
        self.audit.log(task_id, "Task execution started", agent_type=AGENT_TYPE)
        return started

    def execute_task(self, task_id: str) -> TaskRecord:
        self.start(task_id)
        return self.run_started(task_id)

    def run_started(self, task_id: str) -> TaskRecord:
        """Plan and run a task already claimed by ``start``."""
        task = self._require_task(task_id)
        if task.status != TaskStatus.PLANNING:
            # Cancelled between the claim and this run.
            logger.info(
                "task_run event=skipped task_id=%s status=%s", task_id, task.status.value
            )
            return task

        try:
            final_state = self.workflow.invoke(initial_state(task_id))
        except Exception as exc:
            self._fail_task(task_id, exc)
            raise

        if final_state.get("cancelled", False):
            logger.info("task_run event=stopped task_id=%s reason=cancelled", task_id)
        else:
            logger.info(
                "task_run event=resolved task_id=%s steps=%s",
                task_id,
                final_state.get("step_count", 0),
            )
        return self.storage.get_task(task_id) or task

    def plan(self, state: ExecutionState) -> ExecutionState:
        task = self._require_task(state["task_id"])
        steps = self.planner.create_plan(task)
        if not steps:
            raise PlanningError(f"Planner returned no steps for task {task.task_id}")
        return {"planned_steps": [step.model_dump() for step in steps]}

    def store_plan(self, state: ExecutionState) -> ExecutionState:
        task_id = state["task_id"]
        planned = [PlannedStep.model_validate(item) for item in state.get("planned_steps", [])]
        stored = self.storage.replace_steps(task_id, planned)

        moved = self.storage.transition_task(
            task_id,
            to_status=TaskStatus.IN_PROGRESS,
            from_statuses=task_sources_for(TaskStatus.IN_PROGRESS),
        )
        if moved is None:
            return {"cancelled": True, "step_count": len(stored)}

        self.audit.log(
            task_id,
            f"Created execution plan with {len(stored)} steps",
            details={"steps": [step.description for step in stored]},
            agent_type=AGENT_TYPE,
        )
        return {"step_count": len(stored)}

    def run_steps(self, state: ExecutionState) -> ExecutionState:
        task_id = state["task_id"]
        results: list[dict[str, Any]] = list(state.get("step_results", []))

        for step in self.storage.list_steps(task_id):
            if step.status != StepStatus.PENDING:
                continue
            task = self._require_task(task_id)
            if task.status != TaskStatus.IN_PROGRESS:
                return {"cancelled": True, "step_results": results}

            handler = self.registry.select(step)
            running = self.storage.transition_step(
                step.step_id,
                to_status=StepStatus.IN_PROGRESS,
                from_statuses=step_sources_for(StepStatus.IN_PROGRESS),
                task_status_guard=TaskStatus.IN_PROGRESS,
            )
            if running is None:
                return {"cancelled": True, "step_results": results}

            self.audit.log(
                task_id,
                f"Starting execution of step {step.step_number}: {step.description}",
                step_id=step.step_id,
                agent_type=handler.agent_type,
            )
            try:
                outcome = handler.execute_step(task, running)
            except Exception as exc:
                self._fail_step(task_id, running.step_id, running.step_number, exc)
                raise StepExecutionError(running.step_number, str(exc)) from exc

            completed = self.storage.transition_step(
                step.step_id,
                to_status=StepStatus.COMPLETED,
                from_statuses=step_sources_for(StepStatus.COMPLETED),
                result=outcome.result,
            )
            if completed is None:
                # cancel_task already failed the running step.
                return {"cancelled": True, "step_results": results}

            self.audit.log(
                task_id,
                f"Completed step {step.step_number}: {step.description}",
                step_id=step.step_id,
                agent_type=handler.agent_type,
            )
            results.append(
                {
                    "step_number": step.step_number,
                    "description": step.description,
                    "handler": handler.agent_type,
                    "result": outcome.result,
                }
            )

        return {"step_results": results}

    def finalize(self, state: ExecutionState) -> ExecutionState:
        task_id = state["task_id"]
        resolved = self.storage.transition_task(
            task_id,
            to_status=TaskStatus.RESOLVED,
            from_statuses=task_sources_for(TaskStatus.RESOLVED),
        )
        if resolved is None:
            return {"cancelled": True}

        step_results = state.get("step_results", [])
        self.storage.save_task_result(
            task_id,
            content=json.dumps({"steps": step_results}, default=str),
            metadata={"step_count": len(step_results)},
        )
        self.audit.log(task_id, "Task completed successfully", agent_type=AGENT_TYPE)
        return {"cancelled": False}

    def _require_task(self, task_id: str) -> TaskRecord:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _fail_step(self, task_id: str, step_id: str, step_number: int, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        self.storage.transition_step(
            step_id,
            to_status=StepStatus.FAILED,
            from_statuses=step_sources_for(StepStatus.FAILED),
            result={"error": message},
        )
        logger.warning(
            "step_run event=failed task_id=%s step=%d error_type=%s reason=%s",
            task_id,
            step_number,
            exc.__class__.__name__,
            message,
        )
        self.audit.log(
            task_id,
            f"Step {step_number} failed: {message}",
            level=LogLevel.ERROR,
            step_id=step_id,
            details={"error_type": exc.__class__.__name__},
            agent_type=AGENT_TYPE,
        )

    def _fail_task(self, task_id: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        failed = self.storage.transition_task(
            task_id,
            to_status=TaskStatus.FAILED,
            from_statuses=FAILABLE_TASK_STATUSES,
        )
        logger.error(
            "task_run event=failed task_id=%s error_type=%s reason=%s already_final=%s",
            task_id,
            exc.__class__.__name__,
            message,
            failed is None,
        )
        self.audit.log(
            task_id,
            f"Task execution failed: {message}",
            level=LogLevel.ERROR,
            details={"error_type": exc.__class__.__name__},
            agent_type=AGENT_TYPE,
        )
