"""
Workflow repository containing all data-access operations for the
workflow_graphs and workflow_executions tables.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from docflow.db.models.workflow_execution import WorkflowExecution
from docflow.db.models.workflow_graph import WorkflowGraph
from docflow.execution.records import ExecutionRecord
from docflow.graph.models import Graph


# ─── Graphs ───────────────────────────────────────────

async def upsert_graph(db: AsyncSession, graph: Graph) -> WorkflowGraph:
    """Insert or overwrite a graph row (last write wins)."""
    row = await db.get(WorkflowGraph, graph.id)
    if row is None:
        row = WorkflowGraph(id=graph.id, created_at=graph.created_at)
        db.add(row)
    row.name = graph.name
    row.description = graph.description
    row.version = graph.version
    row.is_active = graph.is_active
    row.owner_id = graph.owner_id
    row.organization_id = graph.organization_id
    row.definition = graph.to_dict()
    row.updated_at = graph.updated_at
    await db.flush()
    return row


async def get_graph(db: AsyncSession, graph_id: str) -> Graph | None:
    row = await db.get(WorkflowGraph, graph_id)
    return Graph.from_dict(row.definition) if row is not None else None


async def delete_graph(db: AsyncSession, graph_id: str) -> bool:
    result = await db.execute(delete(WorkflowGraph).where(WorkflowGraph.id == graph_id))
    await db.flush()
    return result.rowcount > 0


async def list_graphs(db: AsyncSession, *, owner_id: str | None = None) -> list[Graph]:
    """Graphs, most recently updated first."""
    stmt = select(WorkflowGraph).order_by(WorkflowGraph.updated_at.desc())
    if owner_id is not None:
        stmt = stmt.where(WorkflowGraph.owner_id == owner_id)
    result = await db.execute(stmt)
    return [Graph.from_dict(row.definition) for row in result.scalars().all()]


# ─── Executions ───────────────────────────────────────

async def upsert_execution(db: AsyncSession, record: ExecutionRecord) -> WorkflowExecution:
    row = await db.get(WorkflowExecution, record.id)
    if row is None:
        row = WorkflowExecution(id=record.id, graph_id=record.graph_id, created_at=record.created_at)
        db.add(row)
    row.owner_id = record.owner_id
    row.job_id = record.job_id
    row.status = str(record.status)
    row.progress = record.progress
    row.attempt = record.attempt
    row.started_at = record.started_at
    row.completed_at = record.completed_at
    row.error_message = record.error
    row.failed_node_id = record.failed_node_id
    row.snapshot = record.to_dict()
    await db.flush()
    return row


async def get_execution(db: AsyncSession, execution_id: str) -> ExecutionRecord | None:
    row = await db.get(WorkflowExecution, execution_id)
    return ExecutionRecord.from_dict(row.snapshot) if row is not None else None


async def list_executions(
    db: AsyncSession,
    *,
    graph_id: str | None = None,
    limit: int = 50,
) -> list[ExecutionRecord]:
    """Executions, newest first."""
    stmt = select(WorkflowExecution).order_by(WorkflowExecution.created_at.desc()).limit(limit)
    if graph_id is not None:
        stmt = stmt.where(WorkflowExecution.graph_id == graph_id)
    result = await db.execute(stmt)
    return [ExecutionRecord.from_dict(row.snapshot) for row in result.scalars().all()]
