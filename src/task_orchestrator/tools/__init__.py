"""Tool capabilities and the toolbox that hands them to handlers."""

from __future__ import annotations

from pathlib import Path

from task_orchestrator.config.settings import Settings
from task_orchestrator.llm import LLMAdapter, TextGenerationOptions
from task_orchestrator.tools.base import (
    StrictModel,
    ToolCapability,
    ToolFactory,
    ToolKind,
    ToolOperation,
    Toolbox,
)
from task_orchestrator.tools.browser import BrowserLauncher, BrowserSession, BrowserTool
from task_orchestrator.tools.code_execution import CodeExecutionTool
from task_orchestrator.tools.data import DataAnalysisTool
from task_orchestrator.tools.document import DocumentTool
from task_orchestrator.tools.filesystem import FilesystemTool
from task_orchestrator.tools.shell import ShellTool
from task_orchestrator.tools.text_generation import TextGenerationTool


def build_toolbox(
    *,
    sandbox_root: Path,
    llm_adapter: LLMAdapter | None = None,
    shell_timeout_s: float = 30.0,
    code_timeout_s: float = 30.0,
    browser_timeout_s: float = 15.0,
    browser_headless: bool = True,
    search_url_template: str = "https://html.duckduckgo.com/html/?q={query}",
    browser_launcher: BrowserLauncher | None = None,
    text_options: TextGenerationOptions | None = None,
) -> Toolbox:
    root = Path(sandbox_root)
    factories: dict[ToolKind, ToolFactory] = {
        ToolKind.BROWSER: lambda: BrowserTool(
            timeout_s=browser_timeout_s,
            headless=browser_headless,
            search_url_template=search_url_template,
            launcher=browser_launcher,
        ),
        ToolKind.FILESYSTEM: lambda: FilesystemTool(root),
        ToolKind.SHELL: lambda: ShellTool(root, timeout_s=shell_timeout_s),
        ToolKind.CODE: lambda: CodeExecutionTool(root, timeout_s=code_timeout_s),
        ToolKind.TEXT: lambda: TextGenerationTool(llm_adapter, options=text_options),
        ToolKind.DOCUMENT: lambda: DocumentTool(root),
        ToolKind.DATA: lambda: DataAnalysisTool(root),
    }
    return Toolbox(factories)


def build_toolbox_from_settings(settings: Settings, llm_adapter: LLMAdapter | None) -> Toolbox:
    return build_toolbox(
        sandbox_root=Path(settings.sandbox_root),
        llm_adapter=llm_adapter,
        shell_timeout_s=settings.shell_timeout_s,
        code_timeout_s=settings.code_timeout_s,
        browser_timeout_s=settings.browser_timeout_s,
        browser_headless=settings.browser_headless,
        search_url_template=settings.search_url_template,
        text_options=TextGenerationOptions(
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        ),
    )


__all__ = [
    "BrowserSession",
    "BrowserTool",
    "CodeExecutionTool",
    "DataAnalysisTool",
    "DocumentTool",
    "FilesystemTool",
    "ShellTool",
    "StrictModel",
    "TextGenerationTool",
    "ToolCapability",
    "ToolKind",
    "ToolOperation",
    "Toolbox",
    "build_toolbox",
    "build_toolbox_from_settings",
]
