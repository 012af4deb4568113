import json
from datetime import UTC, datetime

import pytest

from task_orchestrator.actions import PreviousResult, PriorResults, Reference, resolve_dependencies
from task_orchestrator.handlers import (
    CodeExecutionHandler,
    DataAnalysisHandler,
    DocumentProcessingHandler,
    GeneralPurposeHandler,
    MatchAll,
    WebBrowsingHandler,
)
from task_orchestrator.handlers.code import detect_language, placeholder_code
from task_orchestrator.handlers.general import parse_actions
from task_orchestrator.handlers.web import topic_of
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind


def _step(description: str) -> StepRecord:
    return StepRecord(
        step_id="step-1",
        task_id="task-1",
        step_number=1,
        description=description,
        created_at=datetime.now(UTC),
    )


@pytest.fixture
def build(audit, make_toolbox):
    def _build(handler_cls, **kwargs):
        return handler_cls(matcher=MatchAll(), audit=audit, toolbox=make_toolbox(), **kwargs)

    return _build


def _summary(actions):
    return [(action.type, action.tool) for action in actions]


def test_web_single_url_is_one_navigate(build) -> None:
    actions = build(WebBrowsingHandler).decompose(_step("Summarize URL https://example.com"))

    assert _summary(actions) == [("navigate", ToolKind.BROWSER)]
    assert actions[0].parameters == {"url": "https://example.com"}


def test_web_urls_then_extract(build) -> None:
    actions = build(WebBrowsingHandler).decompose(
        _step("Visit https://a.example and https://b.example, then extract the text")
    )

    assert [action.type for action in actions] == ["navigate", "navigate", "extract"]
    assert [action.parameters.get("url") for action in actions[:2]] == [
        "https://a.example",
        "https://b.example",
    ]
    assert actions[2].parameters == {"selector": "body"}


def test_web_search_query_and_topic_default(build) -> None:
    handler = build(WebBrowsingHandler)

    search = handler.decompose(_step("Search for python asyncio tutorials"))
    topic = handler.decompose(_step("Browse information on renewable energy policy"))

    assert search[0].parameters == {"query": "python asyncio tutorials"}
    assert topic[0].type == "search"
    assert topic[0].parameters == {"query": "renewable energy policy"}
    assert topic_of("on the web") == ""


def test_web_without_topic_searches_the_description(build, storage, fake_browser) -> None:
    handler = build(WebBrowsingHandler)
    task = storage.create_task(title="Browse the web")
    step = _step("Browse   the web").model_copy(update={"task_id": task.task_id})

    assert handler.decompose(step)[0].parameters == {"query": "Browse the web"}

    outcome = handler.execute_step(task, step)

    assert outcome.failed_actions == []
    assert outcome.result["query"] == "Browse the web"
    assert fake_browser.requested == [
        "https://html.duckduckgo.com/html/?q=Browse+the+web"
    ]


def test_data_explicit_source_and_analysis(build) -> None:
    actions = build(DataAnalysisHandler).decompose(_step("Load sales.csv and compute correlation"))

    assert [action.type for action in actions] == ["load_data", "analyze_data"]
    assert actions[0].parameters == {"source": "sales.csv", "format": "csv"}
    assert actions[1].parameters == {
        "data": PreviousResult(),
        "analysis": ["correlation_analysis"],
    }


def test_data_default_chain_reports_on_prior_analyses(build) -> None:
    actions = build(DataAnalysisHandler).decompose(_step("Work with the dataset"))

    assert [action.type for action in actions] == [
        "load_data",
        "clean_data",
        "analyze_data",
        "visualize_data",
        "generate_report",
    ]
    assert actions[4].parameters["analyses"] == PriorResults(("analyze_data", "visualize_data"))

    resolved = resolve_dependencies(actions)
    assert resolved[4].parameters["analyses"] == [
        Reference(from_action_index=2, optional=True),
        Reference(from_action_index=3, optional=True),
    ]
    assert resolved[1].parameters["data"] == Reference(from_action_index=0)


def test_data_chart_and_report_formats(build) -> None:
    actions = build(DataAnalysisHandler).decompose(
        _step("Plot a histogram of data.json and write an html report")
    )

    assert actions[0].parameters == {"source": "data.json", "format": "json"}
    chart = next(action for action in actions if action.type == "visualize_data")
    report = next(action for action in actions if action.type == "generate_report")
    assert chart.parameters["visualization"] == ["histogram"]
    assert report.parameters["format"] == "html"


def test_document_read_then_create_from_previous(build) -> None:
    actions = build(DocumentProcessingHandler).decompose(
        _step("Read notes.md and create a summary document")
    )

    assert [action.type for action in actions] == ["read_document", "create_document"]
    assert actions[0].parameters == {"path": "notes.md"}
    assert actions[1].parameters == {"path": "output.md", "content": PreviousResult()}


def test_document_convert_picks_formats(build) -> None:
    actions = build(DocumentProcessingHandler).decompose(_step("Convert report.md to html"))

    assert len(actions) == 1
    assert actions[0].type == "convert_document"
    assert actions[0].parameters == {
        "input_path": "report.md",
        "output_path": "converted.html",
        "from_format": "md",
        "to_format": "html",
    }


def test_document_default_reads_then_writes(build) -> None:
    actions = build(DocumentProcessingHandler).decompose(_step("Tidy the document"))

    assert [action.type for action in actions] == ["read_document", "create_document"]
    assert actions[1].parameters["content"] == PreviousResult("content")


def test_document_writes_pdf_and_excel_sources_to_text_formats(build) -> None:
    handler = build(DocumentProcessingHandler)

    from_pdf = handler.decompose(_step("Read invoice.pdf and create a summary document"))
    from_excel = handler.decompose(_step("Tidy the spreadsheet sales.xlsx"))

    assert from_pdf[0].parameters == {"path": "invoice.pdf"}
    assert from_pdf[1].parameters["path"] == "output.txt"
    assert from_excel[0].parameters == {"path": "sales.xlsx"}
    assert from_excel[1].parameters["path"] == "output.csv"


def test_code_generate_then_execute_references_generated_code(build) -> None:
    actions = build(CodeExecutionHandler).decompose(
        _step("Generate python code that prints hello and run it")
    )

    assert _summary(actions) == [("generate_code", ToolKind.TEXT), ("execute_code", ToolKind.CODE)]
    resolved = resolve_dependencies(actions)
    assert resolved[1].parameters == {
        "code": Reference(from_action_index=0),
        "language": "python",
    }


def test_code_execute_inline_snippet(build) -> None:
    actions = build(CodeExecutionHandler).decompose(_step("Execute `print(2 + 2)`"))

    assert len(actions) == 1
    assert actions[0].parameters == {"code": "print(2 + 2)", "language": "python"}


def test_code_defaults_to_generate_and_execute(build) -> None:
    actions = build(CodeExecutionHandler).decompose(_step("Fibonacci numbers in javascript"))

    assert [action.type for action in actions] == ["generate_code", "execute_code"]
    assert actions[0].parameters["language"] == "javascript"


def test_code_language_detection_uses_whole_words() -> None:
    assert detect_language("Write a typescript helper") == "typescript"
    assert detect_language("Write an R script for plots") == "r"
    assert detect_language("Describe the rules of chess") == "python"
    assert placeholder_code("hi", "javascript") == 'console.log("hi");'


def test_general_parses_llm_actions_and_drops_invalid(build, scripted_llm) -> None:
    response = (
        "Sure! Here you go:\n"
        '[{"type": "execute_command", "tool": "shell", "parameters": {"command": "echo hi"}},'
        ' {"type": "fly", "tool": "rocket", "parameters": {}},'
        ' {"type": "summarize", "tool": "text", "parameters": {"text": "${previous_result}"}}]'
    )
    handler = build(GeneralPurposeHandler, llm_adapter=scripted_llm([response]))

    actions = handler.decompose(_step("Say hi"))

    assert _summary(actions) == [("execute_command", ToolKind.SHELL), ("summarize", ToolKind.TEXT)]
    assert handler.required_tools(actions) == (ToolKind.SHELL, ToolKind.TEXT)


@pytest.mark.parametrize("response", ["not json at all", '{"type": "x"}', "[]"])
def test_general_falls_back_to_printing_the_description(build, scripted_llm, response) -> None:
    handler = build(GeneralPurposeHandler, llm_adapter=scripted_llm([response]))

    (action,) = handler.decompose(_step("Plan a birthday party"))

    assert action.type == "execute_code"
    assert action.parameters == {
        "code": f"print({json.dumps('Plan a birthday party')})",
        "language": "python",
    }


def test_general_without_llm_uses_fallback(build) -> None:
    (action,) = build(GeneralPurposeHandler).decompose(_step("Anything"))

    assert action.tool == ToolKind.CODE


def test_parse_actions_caps_the_list() -> None:
    payload = json.dumps(
        [{"type": "echo", "tool": "shell", "parameters": {"command": f"echo {i}"}} for i in range(5)]
    )

    assert len(parse_actions(payload)) == 3
