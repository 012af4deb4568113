"""LLM-backed text operations: code generation, explanation and summaries."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import Field, field_validator

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.llm import LLMAdapter, TextGenerationOptions
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation
from task_orchestrator.tools.code_execution import unwrap_code

CODE_SYSTEM_PROMPT = (
    "You are an expert programmer. Reply with a single fenced code block and no prose."
)
_FENCED_BLOCK = re.compile(r"```[\w+-]*\s*\n(.*?)```", re.DOTALL)


class GenerateCodeInput(StrictModel):
    problem: str = Field(min_length=1)
    language: str = "python"


class CodeOutput(StrictModel):
    code: str
    language: str


class OptimizeCodeInput(StrictModel):
    code: str = Field(min_length=1)
    language: str = "python"
    criteria: list[str] = Field(default_factory=lambda: ["readability", "performance"])

    @field_validator("code", mode="before")
    @classmethod
    def _unwrap_code(cls, value: Any) -> Any:
        return unwrap_code(value)


class ExplainCodeInput(StrictModel):
    code: str = Field(min_length=1)
    language: str = "python"

    @field_validator("code", mode="before")
    @classmethod
    def _unwrap_code(cls, value: Any) -> Any:
        return unwrap_code(value)


class ExplainCodeOutput(StrictModel):
    explanation: str
    code: str


class SummarizeInput(StrictModel):
    text: str = Field(min_length=1)
    max_words: int = Field(default=120, ge=1)

    @field_validator("text", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value
        return repr(value)


class SummarizeOutput(StrictModel):
    summary: str


class GenerateTextInput(StrictModel):
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None


class GenerateTextOutput(StrictModel):
    text: str


class TextGenerationTool(ToolCapability):
    """Wrap the text-generation collaborator as a tool; unavailable without an adapter."""

    kind = ToolKind.TEXT

    def __init__(
        self,
        llm_adapter: LLMAdapter | None,
        *,
        options: TextGenerationOptions | None = None,
    ) -> None:
        self.llm_adapter = llm_adapter
        self.options = options or TextGenerationOptions()

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "generate_code": ToolOperation(GenerateCodeInput, CodeOutput, self.generate_code),
            "optimize_code": ToolOperation(OptimizeCodeInput, CodeOutput, self.optimize_code),
            "explain_code": ToolOperation(ExplainCodeInput, ExplainCodeOutput, self.explain_code),
            "summarize": ToolOperation(SummarizeInput, SummarizeOutput, self.summarize),
            "generate_text": ToolOperation(
                GenerateTextInput, GenerateTextOutput, self.generate_text
            ),
        }

    def generate_code(self, payload: GenerateCodeInput) -> CodeOutput:
        prompt = (
            f"Write {payload.language} code that solves the following problem:\n\n"
            f"{payload.problem}\n\n"
            "The program should print its result to stdout."
        )
        text = self._complete(prompt, system_prompt=CODE_SYSTEM_PROMPT, temperature=0.2)
        return CodeOutput(code=extract_code_block(text), language=payload.language)

    def optimize_code(self, payload: OptimizeCodeInput) -> CodeOutput:
        prompt = (
            f"Improve the following {payload.language} code for: "
            f"{', '.join(payload.criteria)}. Keep its behavior unchanged.\n\n"
            f"```{payload.language}\n{payload.code}\n```"
        )
        text = self._complete(prompt, system_prompt=CODE_SYSTEM_PROMPT, temperature=0.2)
        return CodeOutput(code=extract_code_block(text), language=payload.language)

    def explain_code(self, payload: ExplainCodeInput) -> ExplainCodeOutput:
        prompt = (
            f"Explain what the following {payload.language} code does, step by step.\n\n"
            f"```{payload.language}\n{payload.code}\n```"
        )
        return ExplainCodeOutput(explanation=self._complete(prompt).strip(), code=payload.code)

    def summarize(self, payload: SummarizeInput) -> SummarizeOutput:
        prompt = (
            f"Summarize the following content in at most {payload.max_words} words.\n\n"
            f"{payload.text}"
        )
        return SummarizeOutput(summary=self._complete(prompt, temperature=0.3).strip())

    def generate_text(self, payload: GenerateTextInput) -> GenerateTextOutput:
        return GenerateTextOutput(
            text=self._complete(payload.prompt, system_prompt=payload.system_prompt)
        )

    def _complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        if self.llm_adapter is None:
            raise ToolCapabilityError("Text generation is not configured")
        options = TextGenerationOptions(
            temperature=self.options.temperature if temperature is None else temperature,
            max_tokens=self.options.max_tokens,
            system_prompt=system_prompt or self.options.system_prompt,
            model=self.options.model,
        )
        return self.llm_adapter.generate_text(prompt, options)


def extract_code_block(text: str) -> str:
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip("\n")
    return text.strip()
