"""Keyword matching at word starts, shared by handler selection and decomposers."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Protocol


class StepMatcher(Protocol):
    def matches(self, text: str) -> bool: ...


class KeywordMatcher:
    """Match any keyword at the start of a word, case-insensitively.

    "run" matches "running" but not "rerun"; multi-word keywords tolerate any
    whitespace between their words.
    """

    def __init__(self, keywords: Iterable[str]) -> None:
        self.keywords = tuple(keywords)
        if not self.keywords:
            raise ValueError("KeywordMatcher needs at least one keyword")
        alternatives = "|".join(
            r"\s+".join(re.escape(part) for part in keyword.split()) for keyword in self.keywords
        )
        self._pattern = re.compile(rf"\b(?:{alternatives})", re.IGNORECASE)

    def matches(self, text: str) -> bool:
        return self._pattern.search(text) is not None

    def found(self, text: str) -> list[str]:
        return [keyword for keyword in self.keywords if has_word(text, keyword)]


class MatchAll:
    def matches(self, text: str) -> bool:
        return True


def has_word(text: str, *keywords: str) -> bool:
    """True if any keyword starts a word in ``text``."""
    return any(
        re.search(rf"\b{re.escape(keyword)}", text, re.IGNORECASE) is not None
        for keyword in keywords
    )


def has_whole_word(text: str, *words: str) -> bool:
    return any(
        re.search(rf"\b{re.escape(word)}\b", text, re.IGNORECASE) is not None for word in words
    )
