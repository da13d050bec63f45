"""Workflow definition routes: CRUD and analysis."""

from typing import Any

from fastapi import APIRouter, Depends, status

from docflow.api.deps import get_owner_id, get_service
from docflow.api.schemas.workflows import WorkflowCreate, WorkflowResponse, WorkflowUpdate
from docflow.execution.service import WorkflowService

router = APIRouter(prefix="/workflows", tags=["Workflows"])


# ─── Create ───────────────────────────────────────────────
@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    owner_id: str | None = Depends(get_owner_id),
    service: WorkflowService = Depends(get_service),
):
    """
    Save a workflow definition.

    Drafts are accepted as-is; structural problems are reported by the
    analysis endpoint and rejected when a run is submitted.
    """
    graph = await service.create_workflow(body.model_dump(mode="json"), owner_id=owner_id)
    return graph.to_dict()


# ─── List ─────────────────────────────────────────────────
@router.get("")
async def list_workflows(
    owner_id: str | None = Depends(get_owner_id),
    service: WorkflowService = Depends(get_service),
):
    graphs = await service.list_workflows(owner_id)
    return {
        "data": [
            {
                "id": g.id,
                "name": g.name,
                "version": g.version,
                "is_active": g.is_active,
                "nodes": len(g.nodes),
                "edges": len(g.edges),
                "updated_at": g.updated_at.isoformat(),
            }
            for g in graphs
        ],
        "total": len(graphs),
    }


# ─── Detail ───────────────────────────────────────────────
@router.get("/{graph_id}", response_model=WorkflowResponse)
async def get_workflow(graph_id: str, service: WorkflowService = Depends(get_service)):
    graph = await service.get_workflow(graph_id)
    return graph.to_dict()


@router.patch("/{graph_id}", response_model=WorkflowResponse)
async def update_workflow(
    graph_id: str,
    body: WorkflowUpdate,
    service: WorkflowService = Depends(get_service),
):
    changes = body.model_dump(mode="json", exclude_unset=True)
    graph = await service.update_workflow(graph_id, changes)
    return graph.to_dict()


@router.delete("/{graph_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(graph_id: str, service: WorkflowService = Depends(get_service)):
    await service.delete_workflow(graph_id)


# ─── Analysis ─────────────────────────────────────────────
@router.get("/{graph_id}/analysis")
async def analyze_workflow(graph_id: str, service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    """Cycles, unreachable nodes, parallel groups, critical path and the plan when runnable."""
    return await service.analyze_workflow(graph_id)
