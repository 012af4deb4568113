"""Document handler: read, write, merge, search and convert documents."""

from __future__ import annotations

import re

from task_orchestrator.actions import Action, PreviousResult
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind
from task_orchestrator.handlers.keywords import has_whole_word, has_word
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind

DOCUMENT_KEYWORDS = (
    "document",
    "file",
    "text",
    "pdf",
    "word",
    "docx",
    "excel",
    "xlsx",
    "read",
    "write",
    "create",
    "update",
    "merge",
    "extract",
    "convert",
    "report",
    "template",
    "format",
    "markdown",
    "html",
)

# Checked in order; the first keyword found fixes the document extension.
FORMAT_KEYWORDS = (
    (("pdf",), "pdf"),
    (("docx", "word"), "docx"),
    (("xlsx", "excel", "spreadsheet"), "xlsx"),
    (("csv",), "csv"),
    (("markdown", "md"), "md"),
    (("html", "web page"), "html"),
    (("json",), "json"),
)
FORMAT_NAMES = {
    "pdf": "pdf",
    "docx": "docx",
    "word": "docx",
    "xlsx": "xlsx",
    "excel": "xlsx",
    "csv": "csv",
    "markdown": "md",
    "md": "md",
    "html": "html",
    "json": "json",
    "text": "txt",
    "txt": "txt",
    "plain": "txt",
}
DEFAULT_CONVERSIONS = {
    "md": "html",
    "txt": "html",
    "html": "txt",
    "csv": "json",
    "json": "csv",
    "xlsx": "csv",
}
# PDF and Excel are input-only; what a step writes from them lands in these.
OUTPUT_EXTENSIONS = {"pdf": "txt", "xlsx": "csv"}

_FILE_PATTERN = re.compile(
    r"[\w./-]+\.(txt|md|markdown|html|htm|csv|json|pdf|docx|xlsx)\b", re.IGNORECASE
)
_CONVERSION_PATTERN = re.compile(r"\b(?:from\s+)?(\w+)\s+(?:to|into)\s+(\w+)\b", re.IGNORECASE)
_QUOTED_PATTERN = re.compile(r"[\"']([^\"']+)[\"']")


class DocumentProcessingHandler(CapabilityHandler):
    kind = HandlerKind.DOCUMENT_PROCESSING
    tool_kinds = (ToolKind.DOCUMENT,)

    def decompose(self, step: StepRecord) -> list[Action]:
        description = step.description
        extension = document_extension(description)
        named = named_files(description)
        primary = named[0] if named else f"document.{extension}"
        output_extension = OUTPUT_EXTENSIONS.get(extension, extension)
        actions: list[Action] = []

        if has_word(description, "convert", "transform", "change format"):
            source_ext, target_ext = conversion_formats(description, extension)
            source_path = named[0] if named else f"document.{source_ext}"
            target_path = named[1] if len(named) > 1 else f"converted.{target_ext}"
            actions.append(
                Action(
                    "convert_document",
                    ToolKind.DOCUMENT,
                    {
                        "input_path": source_path,
                        "output_path": target_path,
                        "from_format": source_ext,
                        "to_format": target_ext,
                    },
                )
            )
            return actions

        if has_word(description, "merge", "combine", "concatenat", "join"):
            sources = named[:-1] if len(named) > 2 else named
            if len(sources) < 2:
                sources = [f"document1.{extension}", f"document2.{extension}"]
            output_path = named[-1] if len(named) > 2 else f"merged.{output_extension}"
            actions.append(
                Action(
                    "merge_documents",
                    ToolKind.DOCUMENT,
                    {"paths": sources, "output_path": output_path},
                )
            )

        if has_word(description, "read", "open", "load", "import"):
            actions.append(Action("read_document", ToolKind.DOCUMENT, {"path": primary}))

        if has_word(description, "extract", "pull", "find", "search"):
            actions.append(
                Action(
                    "extract_content",
                    ToolKind.DOCUMENT,
                    {"path": primary, "query": quoted_query(description)},
                )
            )

        if has_word(description, "create", "write", "generate", "new"):
            if len(named) > 1:
                target = named[-1]
            else:
                if actions:
                    target = f"output.{output_extension}"
                else:
                    target = named[0] if named else f"document.{output_extension}"
            content = PreviousResult() if actions else description
            actions.append(
                Action("create_document", ToolKind.DOCUMENT, {"path": target, "content": content})
            )

        if has_word(description, "update", "modify", "edit", "change", "append"):
            changes = PreviousResult() if actions else description
            actions.append(
                Action(
                    "update_document",
                    ToolKind.DOCUMENT,
                    {"path": primary, "changes": changes, "mode": "append"},
                )
            )

        if not actions:
            actions = [
                Action("read_document", ToolKind.DOCUMENT, {"path": primary}),
                Action(
                    "create_document",
                    ToolKind.DOCUMENT,
                    {"path": f"output.{output_extension}", "content": PreviousResult("content")},
                ),
            ]
        return actions


def document_extension(description: str) -> str:
    for keywords, extension in FORMAT_KEYWORDS:
        if has_whole_word(description, *keywords):
            return extension
    return "txt"


def named_files(description: str) -> list[str]:
    return list(dict.fromkeys(match.group(0) for match in _FILE_PATTERN.finditer(description)))


def conversion_formats(description: str, default_extension: str) -> tuple[str, str]:
    for match in _CONVERSION_PATTERN.finditer(description):
        source = FORMAT_NAMES.get(match.group(1).lower())
        target = FORMAT_NAMES.get(match.group(2).lower())
        if source and target:
            return source, target
    named = named_files(description)
    if len(named) >= 2:
        return named[0].rsplit(".", 1)[1].lower(), named[1].rsplit(".", 1)[1].lower()
    return default_extension, DEFAULT_CONVERSIONS.get(default_extension, "txt")


def quoted_query(description: str) -> str:
    match = _QUOTED_PATTERN.search(description)
    return match.group(1).strip() if match else ""
