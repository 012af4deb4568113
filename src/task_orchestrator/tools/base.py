"""Tool capability contract and the per-step toolbox."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from task_orchestrator.errors import ToolCapabilityError

logger = logging.getLogger(__name__)


class ToolKind(StrEnum):
    BROWSER = "browser"
    FILESYSTEM = "filesystem"
    SHELL = "shell"
    CODE = "code"
    TEXT = "text"
    DOCUMENT = "document"
    DATA = "data"


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolOperation:
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    fn: Callable[[Any], Any]


class ToolCapability(ABC):
    """Base class for tools.

    Subclasses declare their operations and may acquire resources in
    ``initialize`` and release them in ``cleanup``. Used as a context manager,
    ``cleanup`` runs however the block exits.
    """

    kind: ToolKind

    def initialize(self) -> None:
        return None

    def cleanup(self) -> None:
        return None

    @abstractmethod
    def operations(self) -> Mapping[str, ToolOperation]: ...

    def invoke(self, operation: str, parameters: dict[str, Any]) -> dict[str, Any]:
        definition = self.operations().get(operation)
        if definition is None:
            raise ToolCapabilityError(
                f"Tool '{self.kind.value}' does not support operation '{operation}'"
            )
        payload = definition.input_model.model_validate(parameters)
        raw_output = definition.fn(payload)
        validated_output = definition.output_model.model_validate(raw_output)
        return validated_output.model_dump(mode="json")

    def __enter__(self) -> ToolCapability:
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


ToolFactory = Callable[[], ToolCapability]


class Toolbox:
    """Build fresh tool instances per step and guarantee their cleanup."""

    def __init__(self, factories: Mapping[ToolKind, ToolFactory]) -> None:
        self._factories = dict(factories)

    def kinds(self) -> list[ToolKind]:
        return list(self._factories)

    @contextmanager
    def open(self, kinds: Iterable[ToolKind]) -> Iterator[dict[ToolKind, ToolCapability]]:
        with ExitStack() as stack:
            opened: dict[ToolKind, ToolCapability] = {}
            for kind in kinds:
                factory = self._factories.get(kind)
                if factory is None:
                    logger.warning("toolbox event=missing_tool tool=%s", kind.value)
                    continue
                opened[kind] = stack.enter_context(factory())
            yield opened
