"""
OperationHandler / OperationRegistry: dispatch from a node's operation id
to the code that performs it.

Every node operation inherits from OperationHandler.  The executor calls
execute() and records timing, logging, and errors automatically; handlers
only implement the transform.

To add a new operation:
    1. Subclass OperationHandler and set ``operation``
    2. registry.register(MyHandler())
    3. Nodes with ``operation="my-op"`` now resolve to it
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

from docflow.core.errors import UnknownOperationError
from docflow.core.logging import get_logger
from docflow.graph.models import ArtifactRef

logger = get_logger(__name__)


class OperationHandler(ABC):
    """
    Base class for every node operation.

    Subclasses MUST implement:
        - operation (str)         : registry key, e.g. "file-split"
        - execute(inputs, config) : the actual transform

    Subclasses MAY override:
        - parallel_safe           : False if two instances must not overlap
        - estimated_cost          : planning cost before timings exist

    Handlers must be safe to re-run: a failed job is retried as a whole.
    Raise HandlerError (or any exception) on failure.
    """

    operation: str = "unnamed-operation"
    description: str = ""
    parallel_safe: bool = True
    estimated_cost: float = 1.0

    @abstractmethod
    async def execute(self, inputs: list[ArtifactRef], config: dict[str, Any]) -> list[ArtifactRef]:
        """Transform input artifacts into output artifacts."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} operation={self.operation!r}>"


class OperationRegistry:
    """
    operation id -> handler.

    Unknown operations raise UnknownOperationError on lookup; graph
    validation checks membership up front so that never happens mid-run.
    """

    def __init__(self, handlers: Iterable[OperationHandler] | None = None) -> None:
        self._handlers: dict[str, OperationHandler] = {}
        for handler in handlers or ():
            self.register(handler)

    def register(self, handler: OperationHandler, operation: str | None = None) -> OperationHandler:
        key = operation or handler.operation
        if key in self._handlers:
            logger.warning("Replacing operation handler", operation=key, handler=repr(handler))
        self._handlers[key] = handler
        return handler

    def get(self, operation: str) -> OperationHandler:
        try:
            return self._handlers[operation]
        except KeyError:
            raise UnknownOperationError(operation) from None

    def __contains__(self, operation: object) -> bool:
        return operation in self._handlers

    def is_parallel_safe(self, operation: str) -> bool:
        handler = self._handlers.get(operation)
        return bool(handler and handler.parallel_safe)

    @property
    def operations(self) -> list[str]:
        return sorted(self._handlers)
