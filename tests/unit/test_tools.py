from pathlib import Path

import pandas as pd
import pytest
from docx import Document as WordDocument
from pydantic import ValidationError

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools import (
    BrowserTool,
    CodeExecutionTool,
    DataAnalysisTool,
    DocumentTool,
    FilesystemTool,
    ShellTool,
    TextGenerationTool,
    ToolCapability,
    ToolKind,
)
from task_orchestrator.tools.text_generation import extract_code_block


def test_filesystem_reroots_absolute_paths_and_blocks_escapes(sandbox: Path) -> None:
    with FilesystemTool(sandbox) as tool:
        written = tool.invoke("write_file", {"path": "/notes/a.txt", "content": "hello"})
        read = tool.invoke("read_file", {"path": "notes/a.txt"})

        assert written == {"path": "notes/a.txt", "size": 5}
        assert read["content"] == "hello"
        assert (sandbox / "notes" / "a.txt").read_text(encoding="utf-8") == "hello"

        with pytest.raises(ToolCapabilityError, match="escapes the sandbox"):
            tool.invoke("read_file", {"path": "../outside.txt"})
        with pytest.raises(ToolCapabilityError, match="not allowed"):
            tool.invoke("write_file", {"path": "run.sh", "content": "rm -rf /"})


def test_filesystem_directory_operations(sandbox: Path) -> None:
    with FilesystemTool(sandbox) as tool:
        tool.invoke("write_file", {"path": "docs/b.md", "content": "b"})
        tool.invoke("copy", {"source": "docs/b.md", "destination": "docs/c.md"})
        listing = tool.invoke("list_directory", {"path": "docs"})
        missing = tool.invoke("stat", {"path": "docs/none.md"})

        assert [entry["name"] for entry in listing["entries"]] == ["b.md", "c.md"]
        assert missing == {
            "path": "docs/none.md",
            "exists": False,
            "is_directory": False,
            "size": 0,
            "modified_at": None,
        }
        with pytest.raises(ToolCapabilityError, match="recursive"):
            tool.invoke("delete", {"path": "docs"})


def test_document_markdown_to_html(sandbox: Path) -> None:
    with DocumentTool(sandbox) as tool:
        tool.invoke(
            "create_document",
            {"path": "intro.md", "content": "# Title\n\n- one\n- two\n\nHello world"},
        )
        converted = tool.invoke(
            "convert_document",
            {"input_path": "intro.md", "output_path": "intro.html", "to_format": "html"},
        )

    html = (sandbox / "intro.html").read_text(encoding="utf-8")
    assert converted["format"] == "html"
    assert "<h1>Title</h1>" in html
    assert "<li>one</li>" in html
    assert "<p>Hello world</p>" in html


def _write_pdf(path: Path, text: str) -> None:
    stream = b"BT /F1 24 Tf 72 720 Td (%s) Tj ET" % text.encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    body = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, obj in enumerate(objects, start=1):
        offsets.append(len(body))
        body += b"%d 0 obj\n%s\nendobj\n" % (number, obj)
    xref = len(body)
    body += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        body += b"%010d 00000 n \n" % offset
    body += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        xref,
    )
    path.write_bytes(bytes(body))


def test_document_refuses_read_only_writes_and_renders_results(sandbox: Path) -> None:
    with DocumentTool(sandbox) as tool:
        with pytest.raises(ToolCapabilityError, match="Writing pdf documents is not supported"):
            tool.invoke("create_document", {"path": "report.pdf", "content": "x"})
        with pytest.raises(ToolCapabilityError, match="Binary document format 'doc'"):
            tool.invoke("create_document", {"path": "legacy.doc", "content": "x"})

        tool.invoke("create_document", {"path": "out.txt", "content": {"content": "from a result"}})
        tool.invoke(
            "update_document",
            {"path": "out.txt", "changes": "second line", "mode": "append"},
        )
        read = tool.invoke("read_document", {"path": "out.txt"})
        found = tool.invoke("extract_content", {"path": "out.txt", "query": "SECOND"})

    assert read["content"] == "from a result\nsecond line"
    assert found["matches"] == ["second line"]


def test_document_reads_and_searches_pdf(sandbox: Path) -> None:
    _write_pdf(sandbox / "invoice.pdf", "Quarterly revenue grew")

    with DocumentTool(sandbox) as tool:
        read = tool.invoke("read_document", {"path": "invoice.pdf"})
        found = tool.invoke("extract_content", {"path": "invoice.pdf", "query": "revenue"})
        converted = tool.invoke(
            "convert_document",
            {"input_path": "invoice.pdf", "output_path": "invoice.txt", "to_format": "txt"},
        )

    assert read["format"] == "pdf"
    assert "Quarterly revenue grew" in read["content"]
    assert found["matches"] == ["Quarterly revenue grew"]
    assert converted["format"] == "text"
    assert "Quarterly revenue grew" in (sandbox / "invoice.txt").read_text(encoding="utf-8")


def test_document_writes_and_appends_word_files(sandbox: Path) -> None:
    with DocumentTool(sandbox) as tool:
        created = tool.invoke(
            "create_document", {"path": "notes.docx", "content": "first line\nsecond line"}
        )
        tool.invoke("update_document", {"path": "notes.docx", "changes": "third line"})
        read = tool.invoke("read_document", {"path": "notes.docx"})
        tool.invoke(
            "convert_document",
            {"input_path": "notes.docx", "output_path": "notes.md", "to_format": "md"},
        )

    saved = WordDocument(str(sandbox / "notes.docx"))
    paragraphs = [paragraph.text for paragraph in saved.paragraphs]
    assert created["format"] == "docx"
    assert paragraphs == ["first line", "second line", "third line"]
    assert read["content"] == "first line\nsecond line\nthird line"
    assert (sandbox / "notes.md").read_text(encoding="utf-8") == read["content"]


def test_document_reads_excel_and_converts_to_csv(sandbox: Path) -> None:
    pd.DataFrame({"region": ["north", "south"], "sales": [10, 20]}).to_excel(
        sandbox / "sales.xlsx", index=False
    )

    with DocumentTool(sandbox) as tool:
        read = tool.invoke("read_document", {"path": "sales.xlsx"})
        tool.invoke(
            "convert_document",
            {"input_path": "sales.xlsx", "output_path": "sales.csv", "to_format": "csv"},
        )
        with pytest.raises(ToolCapabilityError, match="Writing xlsx documents is not supported"):
            tool.invoke("create_document", {"path": "copy.xlsx", "content": "x"})

    assert read["content"] == "# Sheet1\nregion,sales\nnorth,10\nsouth,20"
    csv_text = (sandbox / "sales.csv").read_text(encoding="utf-8")
    assert csv_text == "region,sales\nnorth,10\nsouth,20\n"


def test_data_load_and_regression(sandbox: Path) -> None:
    (sandbox / "points.csv").write_text("x,y\n1,3\n2,5\n3,7\n4,9\n5,11\n", encoding="utf-8")

    with DataAnalysisTool(sandbox) as tool:
        loaded = tool.invoke("load_data", {"source": "points.csv", "format": "csv"})
        analyzed = tool.invoke(
            "analyze_data",
            {"data": loaded, "analysis": ["regression_analysis", "descriptive_statistics"]},
        )
        report = tool.invoke("generate_report", {"data": loaded, "analyses": [analyzed]})

    assert loaded["columns"] == ["x", "y"]
    assert loaded["row_count"] == 5
    regression = analyzed["analysis"]["regression_analysis"]
    assert regression["slope"] == pytest.approx(2.0)
    assert regression["intercept"] == pytest.approx(1.0)
    assert regression["r_squared"] == pytest.approx(1.0)
    assert analyzed["analysis"]["descriptive_statistics"]["mean"]["x"] == pytest.approx(3.0)
    assert report["content"].startswith("# Data Analysis Report")


def test_data_loads_excel_and_rejects_unknown_analysis(sandbox: Path) -> None:
    pd.DataFrame({"region": ["north", "south"], "sales": [10, 20]}).to_excel(
        sandbox / "book.xlsx", index=False
    )

    with DataAnalysisTool(sandbox) as tool:
        loaded = tool.invoke("load_data", {"source": "book.xlsx", "format": "excel"})
        with pytest.raises(ToolCapabilityError, match="Unknown analysis"):
            tool.invoke("analyze_data", {"data": [{"a": 1}], "analysis": ["astrology"]})

    assert loaded["columns"] == ["region", "sales"]
    assert loaded["row_count"] == 2


def test_code_execution_runs_python(sandbox: Path) -> None:
    with CodeExecutionTool(sandbox, timeout_s=20.0) as tool:
        result = tool.invoke("execute_code", {"code": "print(1 + 1)", "language": "python"})
        function = tool.invoke(
            "execute_function",
            {
                "function": "def process(data):\n    return {'total': sum(data)}\n",
                "language": "python",
                "data": [1, 2, 3],
            },
        )

    assert result["exit_code"] == 0
    assert result["stdout"].strip() == "2"
    assert function["output"] == {"total": 6}
    assert list((sandbox / "code").iterdir()) == []


def test_code_execution_accepts_generated_results_and_rejects_languages(sandbox: Path) -> None:
    with CodeExecutionTool(sandbox, timeout_s=20.0) as tool:
        saved = tool.invoke(
            "save_code",
            {"code": {"code": "print('saved')", "language": "python"}, "filename": "hello.py"},
        )
        with pytest.raises(ToolCapabilityError, match="Language not allowed"):
            tool.invoke("execute_code", {"code": "DISPLAY 'x'", "language": "cobol"})

    assert saved["filename"] == "hello.py"
    assert saved["code"] == "print('saved')"
    assert (sandbox / "code" / "hello.py").read_text(encoding="utf-8") == "print('saved')"


def test_shell_runs_allowed_commands_only(sandbox: Path) -> None:
    with ShellTool(sandbox, timeout_s=20.0) as tool:
        result = tool.invoke("execute_command", {"command": "echo hello"})

        assert result["stdout"].strip() == "hello"
        assert not tool.is_command_allowed("sudo ls")
        with pytest.raises(ToolCapabilityError, match="Command not allowed"):
            tool.invoke("execute_command", {"command": "sudo ls"})


def test_browser_navigates_and_extracts(fake_browser) -> None:
    with BrowserTool(launcher=fake_browser) as tool:
        with pytest.raises(ToolCapabilityError, match="No page loaded"):
            tool.invoke("extract", {"selector": "body"})

        page = tool.invoke("navigate", {"url": "https://example.com"})
        links = tool.invoke("extract", {"selector": "a"})
        title = tool.invoke("extract", {"selector": "title"})

        assert page["title"] == "Example Domain"
        assert "illustrative examples" in page["content"]
        assert links["content"] == ["More information..."]
        assert title["content"] == "Example Domain"

    assert tool.session is None
    assert fake_browser.requested == ["https://example.com"]
    assert (fake_browser.launches, fake_browser.closes) == (1, 1)


def test_browser_click_fill_and_screenshot(fake_browser) -> None:
    with BrowserTool(launcher=fake_browser) as tool:
        tool.invoke("navigate", {"url": "https://example.com"})
        clicked = tool.invoke("click", {"selector": "a"})
        filled = tool.invoke("fill", {"selector": "p", "value": "hello"})
        shot = tool.invoke("screenshot", {"full_page": True})

        with pytest.raises(ToolCapabilityError, match="Cannot click '#missing'"):
            tool.invoke("click", {"selector": "#missing"})

    assert clicked == {"ok": True, "url": "https://example.com"}
    assert filled["ok"] is True
    assert fake_browser.interactions == [("click", "a"), ("fill", "p", "hello")]
    assert shot["url"] == "https://example.com"
    assert shot["size"] == len(b"\x89PNG fake")
    assert shot["image_base64"] == "iVBORyBmYWtl"


def test_browser_search_lists_external_links(fake_browser) -> None:
    with BrowserTool(launcher=fake_browser, search_url_template="https://search.test/?q={query}") as tool:
        results = tool.invoke("search", {"query": "example domain"})

    assert fake_browser.requested == ["https://search.test/?q=example+domain"]
    assert results["results"] == [
        {"title": "More information...", "url": "https://www.iana.org/domains/example"}
    ]


def test_browser_reports_unreachable_pages_and_validates_urls(fake_browser) -> None:
    fake_browser.unreachable.add("https://down.test")

    with BrowserTool(launcher=fake_browser) as tool:
        with pytest.raises(ToolCapabilityError, match="Failed to load https://down.test"):
            tool.invoke("navigate", {"url": "https://down.test"})
        with pytest.raises(ValidationError):
            tool.invoke("navigate", {"url": "ftp://example.com"})


def test_browser_requires_initialize() -> None:
    with pytest.raises(ToolCapabilityError, match="not initialized"):
        BrowserTool(launcher=lambda **_: None).invoke("navigate", {"url": "https://example.com"})


def test_text_tool_requires_an_adapter(scripted_llm) -> None:
    with pytest.raises(ToolCapabilityError, match="not configured"):
        TextGenerationTool(None).invoke("generate_code", {"problem": "add"})

    tool = TextGenerationTool(scripted_llm(["Here:\n```python\nprint(3)\n```\n"]))
    generated = tool.invoke("generate_code", {"problem": "print three"})

    assert generated == {"code": "print(3)", "language": "python"}
    assert extract_code_block("  no fences  ") == "no fences"


def test_toolbox_opens_requested_tools_and_cleans_up(make_toolbox, fake_browser) -> None:
    toolbox = make_toolbox()

    with toolbox.open([ToolKind.BROWSER, ToolKind.TEXT]) as opened:
        assert set(opened) == {ToolKind.BROWSER, ToolKind.TEXT}
        browser = opened[ToolKind.BROWSER]
        browser.invoke("navigate", {"url": "https://example.com"})

    assert browser.session is None
    assert fake_browser.closes == 1
    assert set(toolbox.kinds()) == set(ToolKind)


def test_toolbox_cleans_up_when_the_step_raises(make_toolbox, fake_browser) -> None:
    toolbox = make_toolbox()

    with pytest.raises(RuntimeError, match="decomposition broke"):
        with toolbox.open([ToolKind.BROWSER]) as opened:
            browser = opened[ToolKind.BROWSER]
            raise RuntimeError("decomposition broke")

    assert browser.session is None
    assert (fake_browser.launches, fake_browser.closes) == (1, 1)


def test_tool_base_requires_operations() -> None:
    class Incomplete(ToolCapability):
        kind = ToolKind.TEXT

    with pytest.raises(TypeError):
        Incomplete()
