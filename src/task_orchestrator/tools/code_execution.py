"""Run code snippets through language interpreters inside the sandbox."""

from __future__ import annotations

import json
import sys
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import Field, field_validator

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation
from task_orchestrator.tools.sandbox import relative_name, resolve_in_sandbox
from task_orchestrator.tools.shell import ShellTool

ALLOWED_LANGUAGES = frozenset(
    {"python", "javascript", "typescript", "node", "bash", "r", "ruby", "php"}
)
LANGUAGE_ALIASES = {
    "python3": "python",
    "py": "python",
    "js": "javascript",
    "node": "javascript",
    "nodejs": "javascript",
    "ts": "typescript",
    "shell": "bash",
    "sh": "bash",
}
FILE_EXTENSIONS = {
    "python": "py",
    "javascript": "js",
    "typescript": "ts",
    "bash": "sh",
    "r": "r",
    "ruby": "rb",
    "php": "php",
}
INTERPRETERS = {
    "python": sys.executable,
    "javascript": "node",
    "typescript": "ts-node",
    "bash": "bash",
    "r": "Rscript",
    "ruby": "ruby",
    "php": "php",
}

_PYTHON_FUNCTION_WRAPPER = """
{function}

import json as _json
import re as _re
import sys as _sys

with open(_sys.argv[1], encoding="utf-8") as _handle:
    _data = _json.load(_handle)

_source = {source!r}
_match = _re.search(r"def\\s+([A-Za-z0-9_]+)\\s*\\(", _source)
_name = "process" if "process" in globals() else (_match.group(1) if _match else None)
if _name is None:
    print("Error: no function definition found", file=_sys.stderr)
    _sys.exit(1)
print(_json.dumps(globals()[_name](_data)))
"""

_JAVASCRIPT_FUNCTION_WRAPPER = """
{function}

const _fs = require("fs");
const _data = JSON.parse(_fs.readFileSync(process.argv[2], "utf8"));
const _source = {source};
const _match = _source.match(/function\\s+([A-Za-z0-9_]+)\\s*\\(/);
const _name = _match ? _match[1] : null;
if (!_name) {{
  console.error("Error: no function definition found");
  process.exit(1);
}}
console.log(JSON.stringify(eval(_name)(_data)));
"""


def unwrap_code(value: Any) -> Any:
    """Accept a whole generate/load result where only its code text is wanted."""
    if isinstance(value, dict) and isinstance(value.get("code"), str):
        return value["code"]
    return value


def normalize_language(language: str) -> str:
    lowered = language.lower().strip()
    return LANGUAGE_ALIASES.get(lowered, lowered)


class ExecuteCodeInput(StrictModel):
    code: str = Field(min_length=1)
    language: str = "python"
    args: list[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def _unwrap_code(cls, value: Any) -> Any:
        return unwrap_code(value)


class ExecuteFunctionInput(StrictModel):
    function: str = Field(min_length=1)
    language: str = "python"
    data: Any = None

    @field_validator("function", mode="before")
    @classmethod
    def _unwrap_code(cls, value: Any) -> Any:
        return unwrap_code(value)


class CodeExecutionOutput(StrictModel):
    language: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    output: Any = None


class SaveCodeInput(StrictModel):
    code: str = Field(min_length=1)
    language: str = "python"
    filename: str | None = None

    @field_validator("code", mode="before")
    @classmethod
    def _unwrap_code(cls, value: Any) -> Any:
        return unwrap_code(value)


class SaveCodeOutput(StrictModel):
    filename: str
    language: str
    size: int
    code: str


class LoadCodeInput(StrictModel):
    filename: str = Field(min_length=1)


class LoadCodeOutput(StrictModel):
    filename: str
    language: str
    code: str


class CodeExecutionTool(ToolCapability):
    """Write code to a file under ``<sandbox>/code`` and run the language's interpreter."""

    kind = ToolKind.CODE

    def __init__(
        self,
        root: Path,
        *,
        timeout_s: float = 30.0,
        allowed_languages: frozenset[str] = ALLOWED_LANGUAGES,
        shell: ShellTool | None = None,
    ) -> None:
        self.root = Path(root)
        self.code_dir = self.root / "code"
        self.allowed_languages = allowed_languages
        self.shell = shell or ShellTool(self.root, timeout_s=timeout_s)

    def initialize(self) -> None:
        self.shell.initialize()
        self.code_dir.mkdir(parents=True, exist_ok=True)

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "execute_code": ToolOperation(ExecuteCodeInput, CodeExecutionOutput, self.execute_code),
            "execute_function": ToolOperation(
                ExecuteFunctionInput, CodeExecutionOutput, self.execute_function
            ),
            "save_code": ToolOperation(SaveCodeInput, SaveCodeOutput, self.save_code),
            "load_code": ToolOperation(LoadCodeInput, LoadCodeOutput, self.load_code),
        }

    def execute_code(self, payload: ExecuteCodeInput) -> CodeExecutionOutput:
        language = self._checked_language(payload.language)
        script_path = self._write_script(payload.code, language)
        try:
            return self._run(script_path, language, payload.args)
        finally:
            script_path.unlink(missing_ok=True)

    def execute_function(self, payload: ExecuteFunctionInput) -> CodeExecutionOutput:
        language = self._checked_language(payload.language)
        if language == "python":
            wrapped = _PYTHON_FUNCTION_WRAPPER.format(
                function=payload.function, source=payload.function
            )
        elif language == "javascript":
            wrapped = _JAVASCRIPT_FUNCTION_WRAPPER.format(
                function=payload.function, source=json.dumps(payload.function)
            )
        else:
            raise ToolCapabilityError(f"Wrapping functions is not supported for {language}")

        data_path = self.code_dir / f"data_{uuid4().hex}.json"
        data_path.write_text(json.dumps(payload.data), encoding="utf-8")
        script_path = self._write_script(wrapped, language)
        try:
            return self._run(script_path, language, [str(data_path)])
        finally:
            script_path.unlink(missing_ok=True)
            data_path.unlink(missing_ok=True)

    def save_code(self, payload: SaveCodeInput) -> SaveCodeOutput:
        language = self._checked_language(payload.language)
        filename = payload.filename or f"script_{uuid4().hex[:8]}.{FILE_EXTENSIONS[language]}"
        path = resolve_in_sandbox(self.code_dir, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload.code, encoding="utf-8")
        return SaveCodeOutput(
            filename=relative_name(self.code_dir, path),
            language=language,
            size=path.stat().st_size,
            code=payload.code,
        )

    def load_code(self, payload: LoadCodeInput) -> LoadCodeOutput:
        path = resolve_in_sandbox(self.code_dir, payload.filename)
        if not path.is_file():
            raise ToolCapabilityError(f"Code file not found: {payload.filename}")
        extension = path.suffix.lstrip(".").lower()
        language = next(
            (name for name, ext in FILE_EXTENSIONS.items() if ext == extension),
            "text",
        )
        return LoadCodeOutput(
            filename=relative_name(self.code_dir, path),
            language=language,
            code=path.read_text(encoding="utf-8"),
        )

    def _checked_language(self, raw_language: str) -> str:
        language = normalize_language(raw_language)
        allowed = {normalize_language(item) for item in self.allowed_languages}
        if language not in allowed or language not in INTERPRETERS:
            raise ToolCapabilityError(f"Language not allowed: {raw_language}")
        return language

    def _write_script(self, code: str, language: str) -> Path:
        self.code_dir.mkdir(parents=True, exist_ok=True)
        path = self.code_dir / f"script_{uuid4().hex}.{FILE_EXTENSIONS[language]}"
        path.write_text(code, encoding="utf-8")
        return path

    def _run(self, script_path: Path, language: str, args: list[str]) -> CodeExecutionOutput:
        started_at = time.perf_counter()
        result = self.shell.run_argv(
            [INTERPRETERS[language], str(script_path), *args],
            display=f"{language} {script_path.name}",
        )
        return CodeExecutionOutput(
            language=language,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=round((time.perf_counter() - started_at) * 1000.0, 2),
            output=_parse_json_output(result.stdout),
        )


def _parse_json_output(stdout: str) -> Any:
    stripped = stdout.strip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return None
