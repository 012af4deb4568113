"""Tabular data loading, cleaning, analysis, chart specs and reports (pandas)."""

from __future__ import annotations

import html
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import pandas as pd
from pydantic import Field

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation
from task_orchestrator.tools.sandbox import relative_name, resolve_in_sandbox

MAX_CHART_POINTS = 500


class LoadDataInput(StrictModel):
    source: str = "data.csv"
    format: Literal["csv", "json", "excel"] = "csv"
    sheet: str | int = 0


class DatasetOutput(StrictModel):
    columns: list[str]
    row_count: int
    records: list[dict[str, Any]]
    source: str | None = None
    applied: list[str] = Field(default_factory=list)


class CleanDataInput(StrictModel):
    data: Any
    operations: list[str] = Field(default_factory=lambda: ["basic_cleaning"])


class AnalyzeDataInput(StrictModel):
    data: Any
    analysis: list[str] = Field(default_factory=lambda: ["descriptive_statistics"])


class AnalysisOutput(StrictModel):
    analysis: dict[str, Any]
    columns: list[str]
    row_count: int
    records: list[dict[str, Any]]


class VisualizeDataInput(StrictModel):
    data: Any
    visualization: list[str] = Field(default_factory=lambda: ["auto_visualize"])


class VisualizationOutput(StrictModel):
    charts: list[dict[str, Any]]
    columns: list[str]
    row_count: int
    records: list[dict[str, Any]]


class GenerateReportInput(StrictModel):
    data: Any = None
    analyses: list[Any] = Field(default_factory=list)
    format: Literal["markdown", "html", "json"] = "markdown"
    title: str = "Data Analysis Report"


class ReportOutput(StrictModel):
    format: str
    content: str


class DataAnalysisTool(ToolCapability):
    kind = ToolKind.DATA

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def initialize(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "load_data": ToolOperation(LoadDataInput, DatasetOutput, self.load_data),
            "clean_data": ToolOperation(CleanDataInput, DatasetOutput, self.clean_data),
            "analyze_data": ToolOperation(AnalyzeDataInput, AnalysisOutput, self.analyze_data),
            "visualize_data": ToolOperation(
                VisualizeDataInput, VisualizationOutput, self.visualize_data
            ),
            "generate_report": ToolOperation(
                GenerateReportInput, ReportOutput, self.generate_report
            ),
        }

    def load_data(self, payload: LoadDataInput) -> DatasetOutput:
        path = resolve_in_sandbox(self.root, payload.source)
        if not path.is_file():
            raise ToolCapabilityError(f"Data source not found: {payload.source}")
        if payload.format == "csv":
            frame = pd.read_csv(path)
        elif payload.format == "excel":
            frame = pd.read_excel(path, sheet_name=payload.sheet, engine="openpyxl")
        else:
            frame = pd.DataFrame(json.loads(path.read_text(encoding="utf-8")))
        return DatasetOutput(source=relative_name(self.root, path), **_dataset(frame))

    def clean_data(self, payload: CleanDataInput) -> DatasetOutput:
        frame = to_frame(payload.data)
        for operation in payload.operations:
            cleaner = _CLEANERS.get(operation)
            if cleaner is None:
                raise ToolCapabilityError(f"Unknown cleaning operation: {operation}")
            frame = cleaner(frame)
        return DatasetOutput(applied=list(payload.operations), **_dataset(frame))

    def analyze_data(self, payload: AnalyzeDataInput) -> AnalysisOutput:
        frame = to_frame(payload.data)
        results: dict[str, Any] = {}
        for analysis in payload.analysis:
            analyzer = _ANALYZERS.get(analysis)
            if analyzer is None:
                raise ToolCapabilityError(f"Unknown analysis: {analysis}")
            results[analysis] = analyzer(frame)
        return AnalysisOutput(analysis=results, **_dataset(frame))

    def visualize_data(self, payload: VisualizeDataInput) -> VisualizationOutput:
        frame = to_frame(payload.data)
        charts: list[dict[str, Any]] = []
        for chart_type in payload.visualization:
            if chart_type == "auto_visualize":
                charts.extend(_auto_charts(frame))
                continue
            builder = _CHART_BUILDERS.get(chart_type)
            if builder is None:
                raise ToolCapabilityError(f"Unknown visualization: {chart_type}")
            charts.append(builder(frame))
        return VisualizationOutput(charts=charts, **_dataset(frame))

    def generate_report(self, payload: GenerateReportInput) -> ReportOutput:
        sections = [item for item in payload.analyses if isinstance(item, dict)]
        if not sections and isinstance(payload.data, dict):
            sections = [payload.data]
        if payload.format == "json":
            content = json.dumps(
                {"title": payload.title, "sections": [_report_section(s) for s in sections]},
                indent=2,
                default=str,
            )
        elif payload.format == "html":
            content = _render_html(payload.title, sections)
        else:
            content = _render_markdown(payload.title, sections)
        return ReportOutput(format=payload.format, content=content)


def to_frame(data: Any) -> pd.DataFrame:
    """Accept a dataset-shaped result, a list of records, or a column mapping."""
    if isinstance(data, dict) and isinstance(data.get("records"), list):
        return pd.DataFrame(data["records"])
    if isinstance(data, list):
        return pd.DataFrame(data)
    if isinstance(data, dict) and data and all(isinstance(v, list) for v in data.values()):
        return pd.DataFrame(data)
    raise ToolCapabilityError("Data must be a list of records or a dataset result")


def _dataset(frame: pd.DataFrame) -> dict[str, Any]:
    return {
        "columns": [str(column) for column in frame.columns],
        "row_count": int(len(frame)),
        "records": json.loads(frame.to_json(orient="records", date_format="iso")),
    }


def _numeric_columns(frame: pd.DataFrame) -> list[str]:
    return [str(column) for column in frame.select_dtypes(include="number").columns]


def _categorical_columns(frame: pd.DataFrame) -> list[str]:
    return [str(column) for column in frame.select_dtypes(exclude="number").columns]


def _basic_cleaning(frame: pd.DataFrame) -> pd.DataFrame:
    cleaned = frame.dropna(how="all").drop_duplicates().copy()
    for column in _categorical_columns(cleaned):
        cleaned[column] = cleaned[column].map(lambda v: v.strip() if isinstance(v, str) else v)
    return cleaned.reset_index(drop=True)


def _handle_missing_values(frame: pd.DataFrame) -> pd.DataFrame:
    filled = frame.copy()
    for column in _numeric_columns(filled):
        filled[column] = filled[column].fillna(filled[column].median())
    return filled.dropna().reset_index(drop=True)


def _remove_duplicates(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.drop_duplicates().reset_index(drop=True)


def _normalize_data(frame: pd.DataFrame) -> pd.DataFrame:
    normalized = frame.copy()
    for column in _numeric_columns(normalized):
        series = normalized[column].astype(float)
        spread = series.max() - series.min()
        normalized[column] = 0.0 if spread == 0 else (series - series.min()) / spread
    return normalized


def _handle_outliers(frame: pd.DataFrame) -> pd.DataFrame:
    clipped = frame.copy()
    for column in _numeric_columns(clipped):
        q1 = clipped[column].quantile(0.25)
        q3 = clipped[column].quantile(0.75)
        iqr = q3 - q1
        clipped[column] = clipped[column].clip(lower=q1 - 1.5 * iqr, upper=q3 + 1.5 * iqr)
    return clipped


_CLEANERS = {
    "basic_cleaning": _basic_cleaning,
    "handle_missing_values": _handle_missing_values,
    "remove_duplicates": _remove_duplicates,
    "normalize_data": _normalize_data,
    "handle_outliers": _handle_outliers,
}


def _descriptive_statistics(frame: pd.DataFrame) -> dict[str, Any]:
    numeric = frame[_numeric_columns(frame)]
    if numeric.empty:
        return {}
    return json.loads(numeric.describe().to_json(orient="index"))


def _correlation_analysis(frame: pd.DataFrame) -> dict[str, Any]:
    numeric = frame[_numeric_columns(frame)]
    if numeric.shape[1] < 2:
        raise ToolCapabilityError("Correlation analysis needs at least two numeric columns")
    return json.loads(numeric.corr().to_json(orient="index"))


def _regression_analysis(frame: pd.DataFrame) -> dict[str, Any]:
    columns = _numeric_columns(frame)
    if len(columns) < 2:
        raise ToolCapabilityError("Regression analysis needs at least two numeric columns")
    x_name, y_name = columns[0], columns[1]
    pairs = frame[[x_name, y_name]].dropna()
    variance = pairs[x_name].var()
    if len(pairs) < 2 or not variance:
        raise ToolCapabilityError("Regression analysis needs varying values in the predictor")
    slope = pairs[x_name].cov(pairs[y_name]) / variance
    intercept = pairs[y_name].mean() - slope * pairs[x_name].mean()
    correlation = pairs[x_name].corr(pairs[y_name])
    return {
        "x": x_name,
        "y": y_name,
        "slope": float(slope),
        "intercept": float(intercept),
        "r_squared": float(correlation**2) if pd.notna(correlation) else None,
        "observations": int(len(pairs)),
    }


def _clustering(frame: pd.DataFrame) -> dict[str, Any]:
    columns = _numeric_columns(frame)
    if not columns:
        raise ToolCapabilityError("Clustering needs a numeric column")
    series = frame[columns[0]].dropna()
    groups = min(3, series.nunique())
    if groups < 2:
        raise ToolCapabilityError("Clustering needs at least two distinct values")
    segments = pd.qcut(series, q=groups, duplicates="drop")
    counts = segments.value_counts(sort=False)
    return {
        "method": "quantile_segments",
        "column": columns[0],
        "segments": [
            {"range": str(interval), "count": int(count)} for interval, count in counts.items()
        ],
    }


_ANALYZERS = {
    "descriptive_statistics": _descriptive_statistics,
    "correlation_analysis": _correlation_analysis,
    "regression_analysis": _regression_analysis,
    "clustering": _clustering,
}


def _scatter_plot(frame: pd.DataFrame) -> dict[str, Any]:
    columns = _numeric_columns(frame)
    if len(columns) < 2:
        raise ToolCapabilityError("Scatter plot needs two numeric columns")
    points = frame[[columns[0], columns[1]]].dropna().head(MAX_CHART_POINTS)
    return {
        "type": "scatter_plot",
        "x": columns[0],
        "y": columns[1],
        "points": json.loads(points.to_json(orient="values")),
    }


def _bar_chart(frame: pd.DataFrame) -> dict[str, Any]:
    categorical = _categorical_columns(frame)
    numeric = _numeric_columns(frame)
    if categorical and numeric:
        grouped = frame.groupby(categorical[0])[numeric[0]].mean()
        return {
            "type": "bar_chart",
            "x": categorical[0],
            "y": f"mean({numeric[0]})",
            "bars": {str(k): float(v) for k, v in grouped.head(MAX_CHART_POINTS).items()},
        }
    if categorical:
        counts = frame[categorical[0]].value_counts()
        return {
            "type": "bar_chart",
            "x": categorical[0],
            "y": "count",
            "bars": {str(k): int(v) for k, v in counts.head(MAX_CHART_POINTS).items()},
        }
    raise ToolCapabilityError("Bar chart needs a categorical column")


def _line_chart(frame: pd.DataFrame) -> dict[str, Any]:
    numeric = _numeric_columns(frame)
    if not numeric:
        raise ToolCapabilityError("Line chart needs a numeric column")
    series = {
        column: json.loads(frame[column].head(MAX_CHART_POINTS).to_json(orient="values"))
        for column in numeric
    }
    return {"type": "line_chart", "x": "index", "series": series}


def _histogram(frame: pd.DataFrame) -> dict[str, Any]:
    numeric = _numeric_columns(frame)
    if not numeric:
        raise ToolCapabilityError("Histogram needs a numeric column")
    values = frame[numeric[0]].dropna()
    bins = min(10, max(1, values.nunique()))
    counts = pd.cut(values, bins=bins).value_counts(sort=False)
    return {
        "type": "histogram",
        "x": numeric[0],
        "bins": [{"range": str(interval), "count": int(count)} for interval, count in counts.items()],
    }


def _heatmap(frame: pd.DataFrame) -> dict[str, Any]:
    return {"type": "heatmap", "matrix": _correlation_analysis(frame)}


_CHART_BUILDERS = {
    "scatter_plot": _scatter_plot,
    "bar_chart": _bar_chart,
    "line_chart": _line_chart,
    "histogram": _histogram,
    "heatmap": _heatmap,
}


def _auto_charts(frame: pd.DataFrame) -> list[dict[str, Any]]:
    numeric = _numeric_columns(frame)
    categorical = _categorical_columns(frame)
    charts: list[dict[str, Any]] = []
    if numeric:
        charts.append(_histogram(frame))
    if len(numeric) >= 2:
        charts.append(_scatter_plot(frame))
    if categorical:
        charts.append(_bar_chart(frame))
    return charts


def _report_section(section: dict[str, Any]) -> dict[str, Any]:
    if "analysis" in section:
        return {"kind": "analysis", "row_count": section.get("row_count"), **section["analysis"]}
    if "charts" in section:
        return {"kind": "charts", "charts": section["charts"]}
    return {"kind": "data", **{k: v for k, v in section.items() if k != "records"}}


def _render_markdown(title: str, sections: list[dict[str, Any]]) -> str:
    lines = [f"# {title}", ""]
    if not sections:
        lines.append("No analysis results were available.")
    for section in map(_report_section, sections):
        kind = section.pop("kind")
        if kind == "charts":
            lines.append("## Charts")
            for chart in section["charts"]:
                axis = " vs ".join(str(chart[key]) for key in ("x", "y") if key in chart)
                lines.append(f"- {chart.get('type')}" + (f" ({axis})" if axis else ""))
        else:
            lines.append("## Analysis" if kind == "analysis" else "## Data")
            for key, value in section.items():
                lines.append(f"### {key}")
                lines.append("```json")
                lines.append(json.dumps(value, indent=2, default=str))
                lines.append("```")
        lines.append("")
    return "\n".join(lines)


def _render_html(title: str, sections: list[dict[str, Any]]) -> str:
    parts = [f"<h1>{html.escape(title)}</h1>"]
    if not sections:
        parts.append("<p>No analysis results were available.</p>")
    for section in map(_report_section, sections):
        kind = section.pop("kind")
        parts.append(f"<h2>{html.escape(kind.title())}</h2>")
        parts.append(f"<pre>{html.escape(json.dumps(section, indent=2, default=str))}</pre>")
    return "\n".join(parts) + "\n"
