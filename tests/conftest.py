from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest
from playwright.sync_api import Error as PlaywrightError

from task_orchestrator.audit import AuditSink
from task_orchestrator.config.settings import Settings
from task_orchestrator.llm import TextGenerationOptions
from task_orchestrator.storage.memory import InMemoryTaskStorage
from task_orchestrator.tools import BrowserSession, build_toolbox


class ScriptedLLMAdapter:
    """Test double returning queued responses in order, then ``default``."""

    def __init__(self, responses: list[str | Exception] | None = None, default: str = "") -> None:
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []
        self.options: list[TextGenerationOptions | None] = []

    def generate_text(self, prompt: str, options: TextGenerationOptions | None = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if not self.responses:
            return self.default
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@dataclass
class FakeWebPage:
    title: str
    elements: dict[str, list[str]]
    links: list[tuple[str, str]] = field(default_factory=list)


EXAMPLE_PAGE = FakeWebPage(
    title="Example Domain",
    elements={
        "h1": ["Example Domain"],
        "p": ["This domain is for use in illustrative examples in documents."],
        "a": ["More information..."],
    },
    links=[("More information...", "https://www.iana.org/domains/example")],
)


class FakePage:
    """Just enough of Playwright's sync ``Page`` for the browser tool."""

    def __init__(self, browser: FakeBrowser) -> None:
        self.browser = browser
        self.url = "about:blank"
        self.current: FakeWebPage | None = None

    def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None) -> None:
        self.browser.requested.append(url)
        if url in self.browser.unreachable:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url
        self.current = self.browser.pages.get(url, EXAMPLE_PAGE)

    def title(self) -> str:
        return self.current.title if self.current else ""

    def inner_text(self, selector: str) -> str:
        if self.current is None:
            return ""
        return "\n".join(text for texts in self.current.elements.values() for text in texts)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self.current.elements.get(selector, []) if self.current else [])

    def eval_on_selector_all(self, selector: str, expression: str) -> list[list[str]]:
        return [[text, href] for text, href in (self.current.links if self.current else [])]

    def click(self, selector: str, timeout: float | None = None) -> None:
        self._require(selector)
        self.browser.interactions.append(("click", selector))

    def fill(self, selector: str, value: str, timeout: float | None = None) -> None:
        self._require(selector)
        self.browser.interactions.append(("fill", selector, value))

    def screenshot(self, full_page: bool = False, type: str = "png") -> bytes:
        return b"\x89PNG fake"

    def _require(self, selector: str) -> None:
        if self.current is None or selector not in self.current.elements:
            raise PlaywrightError(f"Timeout waiting for selector {selector!r}")


class FakeLocator:
    def __init__(self, texts: list[str]) -> None:
        self.texts = texts

    def all_inner_texts(self) -> list[str]:
        return list(self.texts)


class FakeBrowser:
    """Launcher double: hands out ``FakePage`` sessions and records traffic."""

    def __init__(self, pages: dict[str, FakeWebPage] | None = None) -> None:
        self.pages = pages or {}
        self.unreachable: set[str] = set()
        self.requested: list[str] = []
        self.interactions: list[tuple[str, ...]] = []
        self.launches = 0
        self.closes = 0

    def __call__(self, *, headless: bool = True, timeout_s: float = 15.0) -> BrowserSession:
        self.launches += 1
        return BrowserSession(page=FakePage(self), close=self._close)

    def _close(self) -> None:
        self.closes += 1


@pytest.fixture
def storage() -> InMemoryTaskStorage:
    return InMemoryTaskStorage()


@pytest.fixture
def audit(storage: InMemoryTaskStorage) -> AuditSink:
    return AuditSink(storage)


@pytest.fixture
def sandbox(tmp_path: Path) -> Path:
    root = tmp_path / "sandbox"
    root.mkdir()
    return root


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def test_settings(sandbox: Path) -> Settings:
    return Settings(
        storage_backend="memory",
        planner_mode="fallback",
        llm_provider="none",
        sandbox_root=str(sandbox),
        max_concurrent_tasks=2,
    )


@pytest.fixture
def make_toolbox(sandbox: Path, fake_browser: FakeBrowser):
    def _make(llm_adapter=None):
        return build_toolbox(
            sandbox_root=sandbox,
            llm_adapter=llm_adapter,
            browser_launcher=fake_browser,
            code_timeout_s=20.0,
        )

    return _make


@pytest.fixture
def scripted_llm() -> type[ScriptedLLMAdapter]:
    return ScriptedLLMAdapter
