"""In-process store.  State lives on the instance, never at module level."""

from __future__ import annotations

from docflow.execution.records import ExecutionRecord
from docflow.graph.models import Graph
from docflow.store.base import WorkflowStore


class MemoryWorkflowStore(WorkflowStore):

    def __init__(self) -> None:
        self._graphs: dict[str, dict] = {}
        self._executions: dict[str, dict] = {}

    async def load(self, graph_id: str) -> Graph | None:
        data = self._graphs.get(graph_id)
        return Graph.from_dict(data) if data is not None else None

    async def save(self, graph: Graph) -> None:
        self._graphs[graph.id] = graph.to_dict()

    async def delete(self, graph_id: str) -> bool:
        return self._graphs.pop(graph_id, None) is not None

    async def list_graphs(self, owner_id: str | None = None) -> list[Graph]:
        graphs = [Graph.from_dict(d) for d in self._graphs.values()]
        if owner_id is not None:
            graphs = [g for g in graphs if g.owner_id == owner_id]
        return sorted(graphs, key=lambda g: g.updated_at, reverse=True)

    async def load_execution(self, execution_id: str) -> ExecutionRecord | None:
        data = self._executions.get(execution_id)
        return ExecutionRecord.from_dict(data) if data is not None else None

    async def save_execution(self, record: ExecutionRecord) -> None:
        self._executions[record.id] = record.to_dict()

    async def list_executions(self, graph_id: str | None = None, limit: int = 50) -> list[ExecutionRecord]:
        records = [ExecutionRecord.from_dict(d) for d in self._executions.values()]
        if graph_id is not None:
            records = [r for r in records if r.graph_id == graph_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]
