"""Capability registry: pick the handler for a step by fixed priority."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from task_orchestrator.actions import ActionRunner
from task_orchestrator.audit import AuditSink
from task_orchestrator.handlers.base import CapabilityHandler, HandlerKind
from task_orchestrator.handlers.code import CODE_KEYWORDS, CodeExecutionHandler
from task_orchestrator.handlers.data import DATA_KEYWORDS, DataAnalysisHandler
from task_orchestrator.handlers.document import DOCUMENT_KEYWORDS, DocumentProcessingHandler
from task_orchestrator.handlers.general import GeneralPurposeHandler
from task_orchestrator.handlers.keywords import KeywordMatcher, MatchAll
from task_orchestrator.handlers.web import WEB_KEYWORDS, WebBrowsingHandler
from task_orchestrator.llm import LLMAdapter
from task_orchestrator.storage.models import StepRecord
from task_orchestrator.tools.base import Toolbox

logger = logging.getLogger(__name__)

HANDLER_PRIORITY = (
    HandlerKind.WEB_BROWSING,
    HandlerKind.DATA_ANALYSIS,
    HandlerKind.DOCUMENT_PROCESSING,
    HandlerKind.CODE_EXECUTION,
)
FALLBACK_HANDLER = HandlerKind.GENERAL_PURPOSE


class CapabilityRegistry:
    """First handler in priority order whose matcher accepts the step wins."""

    def __init__(self, handlers: Mapping[HandlerKind, CapabilityHandler]) -> None:
        if FALLBACK_HANDLER not in handlers:
            raise ValueError("A general purpose handler is required as the fallback")
        self._handlers = dict(handlers)

    def get(self, kind: HandlerKind) -> CapabilityHandler:
        return self._handlers[kind]

    def kinds(self) -> list[HandlerKind]:
        return [kind for kind in (*HANDLER_PRIORITY, FALLBACK_HANDLER) if kind in self._handlers]

    def select(self, step: StepRecord) -> CapabilityHandler:
        for kind in HANDLER_PRIORITY:
            handler = self._handlers.get(kind)
            if handler is not None and handler.can_handle_step(step):
                logger.debug(
                    "handler_select step=%d handler=%s", step.step_number, kind.value
                )
                return handler
        logger.debug(
            "handler_select step=%d handler=%s reason=no_match",
            step.step_number,
            FALLBACK_HANDLER.value,
        )
        return self._handlers[FALLBACK_HANDLER]


def build_registry(
    *,
    audit: AuditSink,
    toolbox: Toolbox,
    llm_adapter: LLMAdapter | None = None,
) -> CapabilityRegistry:
    runner = ActionRunner(audit)
    shared = {"audit": audit, "toolbox": toolbox, "runner": runner}
    return CapabilityRegistry(
        {
            HandlerKind.WEB_BROWSING: WebBrowsingHandler(
                matcher=KeywordMatcher(WEB_KEYWORDS), **shared
            ),
            HandlerKind.DATA_ANALYSIS: DataAnalysisHandler(
                matcher=KeywordMatcher(DATA_KEYWORDS), **shared
            ),
            HandlerKind.DOCUMENT_PROCESSING: DocumentProcessingHandler(
                matcher=KeywordMatcher(DOCUMENT_KEYWORDS), **shared
            ),
            HandlerKind.CODE_EXECUTION: CodeExecutionHandler(
                matcher=KeywordMatcher(CODE_KEYWORDS), **shared
            ),
            HandlerKind.GENERAL_PURPOSE: GeneralPurposeHandler(
                matcher=MatchAll(), llm_adapter=llm_adapter, **shared
            ),
        }
    )
