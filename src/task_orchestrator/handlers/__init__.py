"""Capability handlers and the registry that selects between them."""

from task_orchestrator.handlers.base import (
    CapabilityHandler,
    HandlerKind,
    StepOutcome,
    aggregate_outputs,
)
from task_orchestrator.handlers.code import CodeExecutionHandler
from task_orchestrator.handlers.data import DataAnalysisHandler
from task_orchestrator.handlers.document import DocumentProcessingHandler
from task_orchestrator.handlers.general import GeneralPurposeHandler
from task_orchestrator.handlers.keywords import KeywordMatcher, MatchAll
from task_orchestrator.handlers.registry import (
    FALLBACK_HANDLER,
    HANDLER_PRIORITY,
    CapabilityRegistry,
    build_registry,
)
from task_orchestrator.handlers.web import WebBrowsingHandler

__all__ = [
    "FALLBACK_HANDLER",
    "HANDLER_PRIORITY",
    "CapabilityHandler",
    "CapabilityRegistry",
    "CodeExecutionHandler",
    "DataAnalysisHandler",
    "DocumentProcessingHandler",
    "GeneralPurposeHandler",
    "HandlerKind",
    "KeywordMatcher",
    "MatchAll",
    "StepOutcome",
    "WebBrowsingHandler",
    "aggregate_outputs",
    "build_registry",
]
