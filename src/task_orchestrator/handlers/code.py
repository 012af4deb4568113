"""Code handler: generate, improve, explain, save and run code snippets."""

from __future__ import annotations

import json
import re
import shlex

from task_orchestrator.actions import Action, PreviousResult
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind
from task_orchestrator.handlers.keywords import has_whole_word, has_word
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind
from task_orchestrator.tools.code_execution import FILE_EXTENSIONS

CODE_KEYWORDS = (
    "code",
    "script",
    "program",
    "function",
    "algorithm",
    "python",
    "javascript",
    "typescript",
    "node",
    "nodejs",
    "execute",
    "run",
    "compile",
    "build",
    "develop",
    "optimize",
    "refactor",
    "debug",
    "fix",
    "implement",
)

# Order matters: "javascript" must win over a bare "script" mention.
LANGUAGE_WORDS = (
    (("javascript", "js", "node", "nodejs"), "javascript"),
    (("typescript", "ts"), "typescript"),
    (("bash", "shell script", "sh"), "bash"),
    (("ruby",), "ruby"),
    (("php",), "php"),
    (("r",), "r"),
    (("python", "py"), "python"),
)

OPTIMIZATION_CRITERIA = (
    (("perform", "fast", "speed", "efficien"), "performance"),
    (("readab", "clean", "refactor", "simplif"), "readability"),
    (("memory",), "memory"),
    (("secur",), "security"),
)

_INLINE_CODE_PATTERN = re.compile(r"```[\w+-]*\s*\n?(.*?)```|`([^`]+)`", re.DOTALL)
_CODE_FILE_PATTERN = re.compile(r"[\w./-]+\.(py|js|ts|sh|rb|php|r)\b", re.IGNORECASE)


class CodeExecutionHandler(CapabilityHandler):
    kind = HandlerKind.CODE_EXECUTION
    tool_kinds = (ToolKind.CODE, ToolKind.TEXT)

    def decompose(self, step: StepRecord) -> list[Action]:
        description = step.description
        language = detect_language(description)
        filename = code_filename(description)
        actions: list[Action] = []

        wants_generate = has_word(description, "create", "write", "generate", "develop", "implement")
        wants_optimize = has_word(description, "optimiz", "improve", "refactor", "clean")
        wants_explain = has_word(description, "explain", "understand", "describe", "document")
        wants_save = has_word(description, "save", "store")
        wants_execute = has_word(description, "execute", "run", "evaluat", "test")
        wants_load = has_word(description, "load") or (
            filename is not None and not wants_generate
        )

        if wants_load:
            actions.append(
                Action(
                    "load_code",
                    ToolKind.CODE,
                    {"filename": filename or f"script.{FILE_EXTENSIONS[language]}"},
                )
            )
        if wants_generate:
            actions.append(
                Action(
                    "generate_code",
                    ToolKind.TEXT,
                    {"problem": description, "language": language},
                )
            )

        # Improving or explaining needs code to work on; fall back to a saved script.
        if (wants_optimize or wants_explain) and not actions:
            actions.append(
                Action(
                    "load_code",
                    ToolKind.CODE,
                    {"filename": filename or f"script.{FILE_EXTENSIONS[language]}"},
                )
            )
        if wants_optimize:
            actions.append(
                Action(
                    "optimize_code",
                    ToolKind.TEXT,
                    {
                        "code": PreviousResult(),
                        "language": language,
                        "criteria": optimization_criteria(description),
                    },
                )
            )
        if wants_explain:
            actions.append(
                Action(
                    "explain_code",
                    ToolKind.TEXT,
                    {"code": PreviousResult(), "language": language},
                )
            )
        if wants_save and actions:
            parameters = {"code": PreviousResult(), "language": language}
            if filename and wants_generate:
                parameters["filename"] = filename
            actions.append(Action("save_code", ToolKind.CODE, parameters))

        if not actions and not wants_execute:
            actions.append(
                Action(
                    "generate_code",
                    ToolKind.TEXT,
                    {"problem": description, "language": language},
                )
            )
            wants_execute = True
        if wants_execute:
            actions.append(self._execute_action(description, language, bool(actions)))
        return actions

    def _execute_action(self, description: str, language: str, has_source: bool) -> Action:
        code = PreviousResult() if has_source else inline_code(description)
        if code is None:
            code = placeholder_code(description, language)
        return Action("execute_code", ToolKind.CODE, {"code": code, "language": language})


def detect_language(description: str) -> str:
    for words, language in LANGUAGE_WORDS:
        if has_whole_word(description, *words):
            return language
    return "python"


def code_filename(description: str) -> str | None:
    match = _CODE_FILE_PATTERN.search(description)
    return match.group(0) if match else None


def optimization_criteria(description: str) -> list[str]:
    found = [name for triggers, name in OPTIMIZATION_CRITERIA if has_word(description, *triggers)]
    return found or ["readability", "performance"]


def inline_code(description: str) -> str | None:
    match = _INLINE_CODE_PATTERN.search(description)
    if match is None:
        return None
    code = (match.group(1) or match.group(2) or "").strip()
    return code or None


def placeholder_code(description: str, language: str) -> str:
    literal = json.dumps(description)
    if language == "bash":
        return f"echo {shlex.quote(description)}"
    if language == "ruby":
        return f"puts {json.dumps(description.replace('#', ''))}"
    if language == "php":
        return f"<?php echo {json.dumps(description.replace('$', ''))};"
    if language == "r":
        return f"cat({literal})"
    if language in {"javascript", "typescript"}:
        return f"console.log({literal});"
    return f"print({literal})"
