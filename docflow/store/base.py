"""
WorkflowStore: persistence contract for graphs and their run history.

Backends only need last-write-wins load/save semantics.  Objects are
copied in and out so callers never share mutable state with the store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docflow.execution.records import ExecutionRecord
from docflow.graph.models import Graph


class WorkflowStore(ABC):
    """Async store for Graphs and ExecutionRecords."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables, warm caches).  Idempotent."""
        return None

    async def close(self) -> None:
        return None

    # ─── Graphs ────────────────────────────────────────

    @abstractmethod
    async def load(self, graph_id: str) -> Graph | None: ...

    @abstractmethod
    async def save(self, graph: Graph) -> None: ...

    @abstractmethod
    async def delete(self, graph_id: str) -> bool: ...

    @abstractmethod
    async def list_graphs(self, owner_id: str | None = None) -> list[Graph]: ...

    # ─── Executions ────────────────────────────────────

    @abstractmethod
    async def load_execution(self, execution_id: str) -> ExecutionRecord | None: ...

    @abstractmethod
    async def save_execution(self, record: ExecutionRecord) -> None: ...

    @abstractmethod
    async def list_executions(self, graph_id: str | None = None, limit: int = 50) -> list[ExecutionRecord]: ...
