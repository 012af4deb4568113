"""LangGraph workflow assembly for task execution."""

from __future__ import annotations

from typing import Protocol

from langgraph.graph import END, StateGraph

from task_orchestrator.graph.state import ExecutionState


class ExecutionNodes(Protocol):
    def plan(self, state: ExecutionState) -> ExecutionState: ...

    def store_plan(self, state: ExecutionState) -> ExecutionState: ...

    def run_steps(self, state: ExecutionState) -> ExecutionState: ...

    def finalize(self, state: ExecutionState) -> ExecutionState: ...


def build_graph(nodes: ExecutionNodes):
    def _continue_unless_cancelled(state: ExecutionState) -> str:
        return "cancelled" if state.get("cancelled", False) else "next"

    graph = StateGraph(ExecutionState)

    graph.add_node("plan", nodes.plan)
    graph.add_node("store_plan", nodes.store_plan)
    graph.add_node("run_steps", nodes.run_steps)
    graph.add_node("finalize", nodes.finalize)

    graph.set_entry_point("plan")
    graph.add_edge("plan", "store_plan")
    graph.add_conditional_edges(
        "store_plan",
        _continue_unless_cancelled,
        {"next": "run_steps", "cancelled": END},
    )
    graph.add_conditional_edges(
        "run_steps",
        _continue_unless_cancelled,
        {"next": "finalize", "cancelled": END},
    )
    graph.add_edge("finalize", END)

    return graph.compile()
