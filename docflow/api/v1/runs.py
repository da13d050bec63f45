"""Execution routes: submit, inspect and cancel runs."""

from fastapi import APIRouter, Depends, status

from docflow.api.deps import get_owner_id, get_service
from docflow.api.schemas.workflows import RunCreate, RunResponse
from docflow.core.errors import ExecutionNotFoundError
from docflow.execution.service import WorkflowService

router = APIRouter(tags=["Runs"])


# ─── Trigger ──────────────────────────────────────────────
@router.post(
    "/workflows/{graph_id}/runs",
    response_model=RunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_run(
    graph_id: str,
    body: RunCreate,
    owner_id: str | None = Depends(get_owner_id),
    service: WorkflowService = Depends(get_service),
):
    """
    Submit a run.

    1. Validates and plans the graph (422 on cycles or structural problems)
    2. Queues a workflow-execution job, or runs in-process when the queue is down
    3. Returns immediately with the run record (status pending or running)
    """
    inputs = [a if isinstance(a, str) else a.model_dump(mode="json") for a in body.input_artifacts]
    record = await service.submit_run(
        graph_id,
        inputs,
        body.config,
        owner_id=owner_id,
        use_queue=body.use_queue,
    )
    return record.to_dict()


# ─── List Runs ────────────────────────────────────────────
@router.get("/runs")
async def list_runs(
    graph_id: str | None = None,
    limit: int = 50,
    service: WorkflowService = Depends(get_service),
):
    """List runs, newest first, optionally for one workflow."""
    records = await service.list_runs(graph_id, limit)
    return {
        "data": [
            {
                "id": r.id,
                "graph_id": r.graph_id,
                "status": r.status,
                "progress": r.progress,
                "error": r.error,
                "created_at": r.created_at.isoformat(),
                "duration_ms": r.duration_ms,
            }
            for r in records
        ],
        "total": len(records),
    }


# ─── Run Detail ───────────────────────────────────────────
@router.get("/runs/{execution_id}", response_model=RunResponse)
async def get_run(execution_id: str, service: WorkflowService = Depends(get_service)):
    """Full record: node states, logs and outputs."""
    record = await service.get_run(execution_id)
    if record is None:
        raise ExecutionNotFoundError(f"Execution '{execution_id}' not found", execution_id=execution_id)
    return record.to_dict()


@router.post("/runs/{execution_id}/cancel", response_model=RunResponse)
async def cancel_run(execution_id: str, service: WorkflowService = Depends(get_service)):
    record = await service.cancel_run(execution_id)
    return record.to_dict()
