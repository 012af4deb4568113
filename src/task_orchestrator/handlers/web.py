"""Web browsing handler: navigate to URLs, search, extract page text."""

from __future__ import annotations

import re

from task_orchestrator.actions import Action
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind
from task_orchestrator.handlers.keywords import has_word
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import ToolKind

WEB_KEYWORDS = (
    "web",
    "browse",
    "browser",
    "website",
    "url",
    "http",
    "search",
    "navigate",
    "visit",
    "page",
    "internet",
    "online",
    "google",
    "download",
    "scrape",
    "extract",
)

STOPWORDS = frozenset(
    {
        "a", "about", "an", "and", "are", "as", "at", "be", "browse", "by", "do", "find",
        "for", "from", "get", "go", "how", "in", "information", "internet", "into", "is",
        "it", "look", "of", "on", "online", "or", "page", "search", "some", "that", "the",
        "this", "to", "up", "use", "visit", "web", "website", "what", "with",
    }
)
TOPIC_WORDS = 5

_URL_PATTERN = re.compile(r"https?://[^\s'\"<>()\[\]]+")
_SEARCH_QUERY_PATTERN = re.compile(r"\bsearch\s+(?:for\s+)?[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE)


class WebBrowsingHandler(CapabilityHandler):
    kind = HandlerKind.WEB_BROWSING
    tool_kinds = (ToolKind.BROWSER,)

    def decompose(self, step: StepRecord) -> list[Action]:
        description = step.description
        actions: list[Action] = []

        urls = extract_urls(description)
        if urls:
            actions.extend(Action("navigate", ToolKind.BROWSER, {"url": url}) for url in urls)
        elif has_word(description, "search"):
            query = search_query(description) or topic_of(description)
            if query:
                actions.append(Action("search", ToolKind.BROWSER, {"query": query}))

        if has_word(description, "extract", "get", "scrape"):
            if not actions:
                topic = topic_of(description)
                if topic:
                    actions.append(Action("search", ToolKind.BROWSER, {"query": topic}))
            if actions:
                actions.append(Action("extract", ToolKind.BROWSER, {"selector": "body"}))

        if not actions:
            topic = topic_of(description)
            if topic:
                actions.append(Action("search", ToolKind.BROWSER, {"query": topic}))
            else:
                actions.append(
                    Action("search", ToolKind.BROWSER, {"query": " ".join(description.split())})
                )
        return actions


def extract_urls(text: str) -> list[str]:
    urls = [match.rstrip(".,;:!?") for match in _URL_PATTERN.findall(text)]
    return list(dict.fromkeys(url for url in urls if url))


def search_query(text: str) -> str:
    match = _SEARCH_QUERY_PATTERN.search(text)
    if match is None:
        return ""
    return match.group(1).strip().rstrip(".,;:!?").strip()


def topic_of(text: str) -> str:
    words = re.findall(r"[A-Za-z0-9][A-Za-z0-9+#.-]*", _URL_PATTERN.sub(" ", text))
    kept = [
        word.rstrip(".")
        for word in words
        if len(word) > 2 and word.lower().rstrip(".") not in STOPWORDS
    ]
    return " ".join(kept[:TOPIC_WORDS])
