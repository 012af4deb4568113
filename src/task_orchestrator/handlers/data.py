"""Data analysis handler: load, clean, analyze, visualize and report on tabular data."""

from __future__ import annotations

import re

from task_orchestrator.actions import Action, PreviousResult, PriorResults
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind
from task_orchestrator.handlers.keywords import has_whole_word, has_word
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind

DATA_KEYWORDS = (
    "data",
    "analysis",
    "analyze",
    "statistics",
    "statistical",
    "visualization",
    "visualize",
    "chart",
    "graph",
    "plot",
    "excel",
    "csv",
    "dataset",
    "pandas",
    "numpy",
    "correlation",
    "regression",
    "mean",
    "median",
    "average",
    "standard deviation",
)

_DATA_FILE_PATTERN = re.compile(r"[\w./-]+\.(csv|json|xlsx)\b", re.IGNORECASE)
_FILE_FORMATS = {"csv": "csv", "json": "json", "xlsx": "excel"}
_DEFAULT_SOURCES = {"csv": "data.csv", "json": "data.json", "excel": "data.xlsx"}

CLEANING_RULES = (
    (("missing", "null", "empty", "nan"), "handle_missing_values"),
    (("duplicat", "dedup"), "remove_duplicates"),
    (("normaliz", "normalis", "scale"), "normalize_data"),
    (("outlier",), "handle_outliers"),
)
ANALYSIS_RULES = (
    (
        ("descriptive", "statistic", "mean", "median", "average", "summar", "standard deviation"),
        "descriptive_statistics",
    ),
    (("correlat",), "correlation_analysis"),
    (("regress", "trend", "predict"), "regression_analysis"),
    (("cluster", "segment", "group"), "clustering"),
)
VISUALIZATION_RULES = (
    (("scatter",), "scatter_plot"),
    (("bar",), "bar_chart"),
    (("histogram", "distribution"), "histogram"),
    (("heatmap", "heat map"), "heatmap"),
)

_CLEAN_TRIGGERS = ("clean", "preprocess", "prepare", "missing", "duplicat", "normaliz", "outlier")
_ANALYZE_TRIGGERS = (
    "analy",
    "statistic",
    "correlat",
    "regress",
    "cluster",
    "segment",
    "mean",
    "median",
    "average",
    "standard deviation",
    "summar",
)
_VISUALIZE_TRIGGERS = ("visuali", "chart", "graph", "plot", "scatter", "histogram", "heatmap")
_EXPLICIT_LOAD_TRIGGERS = ("load", "read", "import", "csv", "excel", "json")


class DataAnalysisHandler(CapabilityHandler):
    kind = HandlerKind.DATA_ANALYSIS
    tool_kinds = (ToolKind.DATA,)

    def decompose(self, step: StepRecord) -> list[Action]:
        description = step.description
        wants_clean = has_word(description, *_CLEAN_TRIGGERS)
        wants_analysis = has_word(description, *_ANALYZE_TRIGGERS)
        wants_chart = has_word(description, *_VISUALIZE_TRIGGERS)
        wants_report = has_word(description, "report")

        if not (wants_clean or wants_analysis or wants_chart or wants_report):
            if not has_word(description, *_EXPLICIT_LOAD_TRIGGERS):
                wants_clean = wants_analysis = wants_chart = wants_report = True

        # Every later action consumes the dataset produced by the one before it.
        actions = [self._load_action(description)]
        if wants_clean:
            actions.append(
                Action(
                    "clean_data",
                    ToolKind.DATA,
                    {"data": PreviousResult(), "operations": cleaning_operations(description)},
                )
            )
        if wants_analysis:
            actions.append(
                Action(
                    "analyze_data",
                    ToolKind.DATA,
                    {"data": PreviousResult(), "analysis": analysis_types(description)},
                )
            )
        if wants_chart:
            actions.append(
                Action(
                    "visualize_data",
                    ToolKind.DATA,
                    {"data": PreviousResult(), "visualization": visualization_types(description)},
                )
            )
        if wants_report:
            actions.append(
                Action(
                    "generate_report",
                    ToolKind.DATA,
                    {
                        "data": PreviousResult(),
                        "analyses": PriorResults(("analyze_data", "visualize_data")),
                        "format": report_format(description),
                    },
                )
            )
        return actions

    def _load_action(self, description: str) -> Action:
        source, data_format = data_source(description)
        return Action("load_data", ToolKind.DATA, {"source": source, "format": data_format})


def data_source(description: str) -> tuple[str, str]:
    match = _DATA_FILE_PATTERN.search(description)
    if match is not None:
        return match.group(0), _FILE_FORMATS[match.group(1).lower()]
    if has_word(description, "excel", "xlsx", "spreadsheet"):
        data_format = "excel"
    elif has_whole_word(description, "json"):
        data_format = "json"
    else:
        data_format = "csv"
    return _DEFAULT_SOURCES[data_format], data_format


def cleaning_operations(description: str) -> list[str]:
    return _matching(description, CLEANING_RULES) or ["basic_cleaning"]


def analysis_types(description: str) -> list[str]:
    return _matching(description, ANALYSIS_RULES) or ["descriptive_statistics"]


def visualization_types(description: str) -> list[str]:
    found = _matching(description, VISUALIZATION_RULES)
    if has_whole_word(description, "line"):
        found.append("line_chart")
    return found or ["auto_visualize"]


def report_format(description: str) -> str:
    if has_whole_word(description, "html"):
        return "html"
    if has_whole_word(description, "json"):
        return "json"
    return "markdown"


def _matching(description: str, rules: tuple[tuple[tuple[str, ...], str], ...]) -> list[str]:
    return [name for triggers, name in rules if has_word(description, *triggers)]
