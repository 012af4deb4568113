"""Document operations over text formats plus PDF, Word and Excel inputs."""

from __future__ import annotations

import html
import json
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import pandas as pd
from docx import Document as WordDocument
from pydantic import Field
from pypdf import PdfReader

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation
from task_orchestrator.tools.sandbox import relative_name, resolve_in_sandbox

DOCUMENT_FORMATS = {
    "txt": "text",
    "text": "text",
    "md": "markdown",
    "markdown": "markdown",
    "html": "html",
    "htm": "html",
    "csv": "csv",
    "json": "json",
    "pdf": "pdf",
    "docx": "docx",
    "word": "docx",
    "xlsx": "xlsx",
    "excel": "xlsx",
}
# Read, converted and merged from, never written.
READ_ONLY_FORMATS = frozenset({"pdf", "xlsx"})
UNSUPPORTED_FORMATS = frozenset({"doc", "xls", "ppt", "pptx"})
PROSE_FORMATS = frozenset({"text", "markdown", "docx", "pdf"})
_TEXT_KEYS = ("content", "text", "summary", "explanation", "code", "report")
_HIDDEN_BLOCKS = re.compile(
    r"<(script|style|noscript|template)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_BLOCK_ENDS = re.compile(r"<(?:br\s*/?|/p|/h[1-6]|/li|/div|/tr|/title)\s*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")


class ReadDocumentInput(StrictModel):
    path: str = Field(min_length=1)
    format: str | None = None


class DocumentOutput(StrictModel):
    path: str
    format: str
    content: str


class CreateDocumentInput(StrictModel):
    path: str = Field(min_length=1)
    content: Any
    format: str | None = None


class WrittenDocumentOutput(StrictModel):
    path: str
    format: str
    size: int


class UpdateDocumentInput(StrictModel):
    path: str = Field(min_length=1)
    changes: Any
    mode: Literal["append", "replace"] = "append"
    format: str | None = None


class MergeDocumentsInput(StrictModel):
    paths: list[str] = Field(min_length=1)
    output_path: str = Field(min_length=1)
    format: str | None = None
    separator: str = "\n\n"


class ExtractContentInput(StrictModel):
    path: str = Field(min_length=1)
    query: str = ""
    format: str | None = None


class ExtractContentOutput(StrictModel):
    path: str
    query: str
    matches: list[str]


class ConvertDocumentInput(StrictModel):
    input_path: str = Field(min_length=1)
    output_path: str = Field(min_length=1)
    from_format: str | None = None
    to_format: str = Field(min_length=1)


class DocumentTool(ToolCapability):
    kind = ToolKind.DOCUMENT

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def initialize(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "read_document": ToolOperation(ReadDocumentInput, DocumentOutput, self.read_document),
            "create_document": ToolOperation(
                CreateDocumentInput, WrittenDocumentOutput, self.create_document
            ),
            "update_document": ToolOperation(
                UpdateDocumentInput, WrittenDocumentOutput, self.update_document
            ),
            "merge_documents": ToolOperation(
                MergeDocumentsInput, WrittenDocumentOutput, self.merge_documents
            ),
            "extract_content": ToolOperation(
                ExtractContentInput, ExtractContentOutput, self.extract_content
            ),
            "convert_document": ToolOperation(
                ConvertDocumentInput, WrittenDocumentOutput, self.convert_document
            ),
        }

    def read_document(self, payload: ReadDocumentInput) -> DocumentOutput:
        path, document_format = self._existing(payload.path, payload.format)
        return DocumentOutput(
            path=relative_name(self.root, path),
            format=document_format,
            content=read_text(path, document_format),
        )

    def create_document(self, payload: CreateDocumentInput) -> WrittenDocumentOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        document_format = detect_format(path, payload.format)
        return self._write(path, document_format, render_content(payload.content, document_format))

    def update_document(self, payload: UpdateDocumentInput) -> WrittenDocumentOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        document_format = detect_format(path, payload.format)
        addition = render_content(payload.changes, document_format)
        if payload.mode == "append" and path.is_file():
            existing = read_text(path, document_format)
            joiner = "" if not existing or existing.endswith("\n") else "\n"
            addition = f"{existing}{joiner}{addition}"
        return self._write(path, document_format, addition)

    def merge_documents(self, payload: MergeDocumentsInput) -> WrittenDocumentOutput:
        parts: list[str] = []
        for raw_path in payload.paths:
            path, source_format = self._existing(raw_path, None)
            parts.append(read_text(path, source_format).strip("\n"))
        output_path = resolve_in_sandbox(self.root, payload.output_path)
        document_format = detect_format(output_path, payload.format)
        return self._write(output_path, document_format, payload.separator.join(parts) + "\n")

    def extract_content(self, payload: ExtractContentInput) -> ExtractContentOutput:
        path, document_format = self._existing(payload.path, payload.format)
        text = read_text(path, document_format)
        if document_format == "html":
            text = html_to_text(text)
        if payload.query:
            needle = payload.query.lower()
            matches = [line.strip() for line in text.splitlines() if needle in line.lower()]
        else:
            matches = [block.strip() for block in re.split(r"\n\s*\n", text) if block.strip()]
        return ExtractContentOutput(
            path=relative_name(self.root, path),
            query=payload.query,
            matches=matches,
        )

    def convert_document(self, payload: ConvertDocumentInput) -> WrittenDocumentOutput:
        source, from_format = self._existing(payload.input_path, payload.from_format)
        target = resolve_in_sandbox(self.root, payload.output_path)
        to_format = detect_format(target, payload.to_format)

        if from_format == "xlsx" and to_format in {"csv", "json"}:
            frame = pd.read_excel(source, engine="openpyxl")
            if to_format == "csv":
                converted = frame.to_csv(index=False)
            else:
                converted = frame.to_json(orient="records", indent=2, date_format="iso")
            return self._write(target, to_format, converted)

        raw = read_text(source, from_format)
        if from_format == to_format:
            converted = raw
        elif from_format in PROSE_FORMATS and to_format == "html":
            converted = markdown_to_html(raw)
        elif from_format == "html" and to_format in {"text", "markdown", "docx"}:
            converted = html_to_text(raw) + "\n"
        elif from_format == "csv" and to_format == "json":
            converted = pd.read_csv(source).to_json(orient="records", indent=2)
        elif from_format == "json" and to_format == "csv":
            converted = pd.DataFrame(json.loads(raw)).to_csv(index=False)
        elif from_format in PROSE_FORMATS and to_format in PROSE_FORMATS:
            converted = raw
        else:
            raise ToolCapabilityError(f"Conversion {from_format} -> {to_format} is not supported")
        return self._write(target, to_format, converted)

    def _existing(self, raw_path: str, format_hint: str | None) -> tuple[Path, str]:
        path = resolve_in_sandbox(self.root, raw_path)
        document_format = detect_format(path, format_hint)
        if not path.is_file():
            raise ToolCapabilityError(f"Document not found: {raw_path}")
        return path, document_format

    def _write(self, path: Path, document_format: str, content: str) -> WrittenDocumentOutput:
        if document_format in READ_ONLY_FORMATS:
            raise ToolCapabilityError(f"Writing {document_format} documents is not supported")
        path.parent.mkdir(parents=True, exist_ok=True)
        if document_format == "docx":
            document = WordDocument()
            for line in content.splitlines():
                document.add_paragraph(line)
            document.save(str(path))
        else:
            path.write_text(content, encoding="utf-8")
        return WrittenDocumentOutput(
            path=relative_name(self.root, path),
            format=document_format,
            size=path.stat().st_size,
        )


def detect_format(path: Path, format_hint: str | None = None) -> str:
    candidate = (format_hint or path.suffix.lstrip(".") or "text").lower().strip()
    if candidate in UNSUPPORTED_FORMATS:
        raise ToolCapabilityError(f"Binary document format '{candidate}' is not supported")
    document_format = DOCUMENT_FORMATS.get(candidate)
    if document_format is None:
        raise ToolCapabilityError(f"Unknown document format '{candidate}'")
    return document_format


def read_text(path: Path, document_format: str) -> str:
    """Return the text of a document; Excel sheets come back as csv blocks."""
    if document_format == "pdf":
        pages = (page.extract_text() or "" for page in PdfReader(str(path)).pages)
        return "\n\n".join(text.strip() for text in pages if text.strip())
    if document_format == "docx":
        document = WordDocument(str(path))
        lines = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    lines.append(" | ".join(cells))
        return "\n".join(lines)
    if document_format == "xlsx":
        sheets = pd.read_excel(path, sheet_name=None, engine="openpyxl")
        return "\n\n".join(
            f"# {name}\n{frame.to_csv(index=False).strip()}" for name, frame in sheets.items()
        )
    return path.read_text(encoding="utf-8", errors="replace")


def html_to_text(raw: str) -> str:
    text = _HIDDEN_BLOCKS.sub(" ", raw)
    text = html.unescape(_TAGS.sub(" ", _BLOCK_ENDS.sub("\n", text)))
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def render_content(value: Any, document_format: str) -> str:
    if isinstance(value, str):
        return value
    if document_format == "json":
        return json.dumps(value, indent=2, default=str)
    if isinstance(value, dict):
        for key in _TEXT_KEYS:
            if isinstance(value.get(key), str):
                return value[key]
    if document_format == "csv" and isinstance(value, list):
        return pd.DataFrame(value).to_csv(index=False)
    return json.dumps(value, indent=2, default=str)


def markdown_to_html(text: str) -> str:
    lines_out: list[str] = []
    in_list = False
    paragraph: list[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            lines_out.append(f"<p>{html.escape(' '.join(paragraph))}</p>")
            paragraph.clear()

    for raw_line in text.splitlines():
        line = raw_line.strip()
        heading = re.match(r"^(#{1,6})\s+(.*)$", line)
        item = re.match(r"^[-*+]\s+(.*)$", line)
        if heading or item or not line:
            flush_paragraph()
        if in_list and not item:
            lines_out.append("</ul>")
            in_list = False
        if heading:
            level = len(heading.group(1))
            lines_out.append(f"<h{level}>{html.escape(heading.group(2))}</h{level}>")
        elif item:
            if not in_list:
                lines_out.append("<ul>")
                in_list = True
            lines_out.append(f"<li>{html.escape(item.group(1))}</li>")
        elif line:
            paragraph.append(line)
    flush_paragraph()
    if in_list:
        lines_out.append("</ul>")
    return "\n".join(lines_out) + "\n"
