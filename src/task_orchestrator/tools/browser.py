"""Headless Chromium tool driven through Playwright's sync API."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib import parse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright
from pydantic import Field

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation

logger = logging.getLogger(__name__)

USER_AGENT = "task-orchestrator/0.1"
MAX_CONTENT_CHARS = 20_000
MAX_SEARCH_RESULTS = 10
WHOLE_PAGE_SELECTORS = frozenset({"body", "html"})

_LINKS_SCRIPT = "els => els.map(e => [(e.innerText || '').trim(), e.href])"


@dataclass
class BrowserSession:
    page: Any
    close: Callable[[], None]


BrowserLauncher = Callable[..., BrowserSession]


def launch_chromium(*, headless: bool = True, timeout_s: float = 15.0) -> BrowserSession:
    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(
            headless=headless,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        context = browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1280, "height": 720},
        )
        page = context.new_page()
        page.set_default_timeout(timeout_s * 1000)
    except PlaywrightError as exc:
        playwright.stop()
        raise ToolCapabilityError(f"Failed to launch browser: {exc}") from exc

    def close() -> None:
        try:
            browser.close()
        finally:
            playwright.stop()

    logger.info("browser event=launched headless=%s", headless)
    return BrowserSession(page=page, close=close)


class NavigateInput(StrictModel):
    url: str = Field(min_length=1, pattern=r"^https?://")


class NavigateOutput(StrictModel):
    url: str
    title: str
    content: str


class SearchInput(StrictModel):
    query: str = Field(min_length=1)


class SearchResult(StrictModel):
    title: str
    url: str


class SearchOutput(StrictModel):
    query: str
    results: list[SearchResult]


class ExtractInput(StrictModel):
    selector: str = "body"


class ExtractOutput(StrictModel):
    url: str
    selector: str
    content: str | list[str]


class ClickInput(StrictModel):
    selector: str = Field(min_length=1)


class FillInput(StrictModel):
    selector: str = Field(min_length=1)
    value: str


class InteractionOutput(StrictModel):
    ok: bool
    url: str


class ScreenshotInput(StrictModel):
    full_page: bool = False


class ScreenshotOutput(StrictModel):
    url: str
    image_base64: str
    size: int


class BrowserTool(ToolCapability):
    """One headless page per tool instance.

    ``initialize`` launches the browser through ``launcher`` and ``cleanup``
    closes it. Everything except ``navigate`` and ``search`` acts on the page
    loaded by an earlier operation.
    """

    kind = ToolKind.BROWSER

    def __init__(
        self,
        *,
        timeout_s: float = 15.0,
        headless: bool = True,
        search_url_template: str = "https://html.duckduckgo.com/html/?q={query}",
        launcher: BrowserLauncher | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.headless = headless
        self.search_url_template = search_url_template
        self.launcher = launcher or launch_chromium
        self.session: BrowserSession | None = None
        self.page_loaded = False

    def initialize(self) -> None:
        self.session = self.launcher(headless=self.headless, timeout_s=self.timeout_s)

    def cleanup(self) -> None:
        session, self.session = self.session, None
        self.page_loaded = False
        if session is not None:
            session.close()

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "navigate": ToolOperation(NavigateInput, NavigateOutput, self.navigate),
            "search": ToolOperation(SearchInput, SearchOutput, self.search),
            "extract": ToolOperation(ExtractInput, ExtractOutput, self.extract),
            "click": ToolOperation(ClickInput, InteractionOutput, self.click),
            "fill": ToolOperation(FillInput, InteractionOutput, self.fill),
            "screenshot": ToolOperation(ScreenshotInput, ScreenshotOutput, self.screenshot),
        }

    @property
    def timeout_ms(self) -> float:
        return self.timeout_s * 1000

    def navigate(self, payload: NavigateInput) -> NavigateOutput:
        page = self._goto(payload.url)
        return NavigateOutput(
            url=page.url,
            title=page.title(),
            content=_collapse(page.inner_text("body"))[:MAX_CONTENT_CHARS],
        )

    def search(self, payload: SearchInput) -> SearchOutput:
        page = self._goto(self.search_url_template.format(query=parse.quote_plus(payload.query)))
        host = parse.urlparse(page.url).netloc
        results: list[SearchResult] = []
        seen: set[str] = set()
        for title, href in page.eval_on_selector_all("a[href]", _LINKS_SCRIPT):
            target = _unwrap_redirect(href)
            title = _collapse(title)
            if not target.startswith(("http://", "https://")) or not title:
                continue
            if parse.urlparse(target).netloc == host or target in seen:
                continue
            seen.add(target)
            results.append(SearchResult(title=title, url=target))
            if len(results) >= MAX_SEARCH_RESULTS:
                break
        return SearchOutput(query=payload.query, results=results)

    def extract(self, payload: ExtractInput) -> ExtractOutput:
        page = self._loaded_page()
        selector = payload.selector.strip()
        try:
            if selector.lower() in WHOLE_PAGE_SELECTORS:
                content: str | list[str] = _collapse(page.inner_text(selector))[:MAX_CONTENT_CHARS]
            elif selector.lower() == "title":
                content = page.title()
            else:
                texts = (_collapse(text) for text in page.locator(selector).all_inner_texts())
                content = [text for text in texts if text]
        except PlaywrightError as exc:
            raise ToolCapabilityError(f"Cannot extract '{payload.selector}': {exc}") from exc
        return ExtractOutput(url=page.url, selector=payload.selector, content=content)

    def click(self, payload: ClickInput) -> InteractionOutput:
        page = self._loaded_page()
        try:
            page.click(payload.selector, timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise ToolCapabilityError(f"Cannot click '{payload.selector}': {exc}") from exc
        return InteractionOutput(ok=True, url=page.url)

    def fill(self, payload: FillInput) -> InteractionOutput:
        page = self._loaded_page()
        try:
            page.fill(payload.selector, payload.value, timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise ToolCapabilityError(f"Cannot fill '{payload.selector}': {exc}") from exc
        return InteractionOutput(ok=True, url=page.url)

    def screenshot(self, payload: ScreenshotInput) -> ScreenshotOutput:
        page = self._loaded_page()
        try:
            image = page.screenshot(full_page=payload.full_page, type="png")
        except PlaywrightError as exc:
            raise ToolCapabilityError(f"Screenshot failed: {exc}") from exc
        return ScreenshotOutput(
            url=page.url,
            image_base64=base64.b64encode(image).decode("ascii"),
            size=len(image),
        )

    def _page(self) -> Any:
        if self.session is None:
            raise ToolCapabilityError("Browser not initialized")
        return self.session.page

    def _loaded_page(self) -> Any:
        page = self._page()
        if not self.page_loaded:
            raise ToolCapabilityError("No page loaded; navigate or search first")
        return page

    def _goto(self, url: str) -> Any:
        page = self._page()
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise ToolCapabilityError(f"Failed to load {url}: {exc}") from exc
        self.page_loaded = True
        return page


def _unwrap_redirect(url: str) -> str:
    query = parse.parse_qs(parse.urlparse(url).query)
    for key in ("uddg", "url", "q"):
        values = query.get(key)
        if values and values[0].startswith(("http://", "https://")):
            return values[0]
    return url


def _collapse(text: str) -> str:
    return " ".join(text.split())
