"""Plan construction from free-text task requests."""

from task_orchestrator.planning.planner import Planner, fallback_plan, parse_plan_text

__all__ = ["Planner", "fallback_plan", "parse_plan_text"]
