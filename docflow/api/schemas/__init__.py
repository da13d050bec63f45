"""API schema package."""

from docflow.api.schemas.queue import JobCreate, JobResponse, JobSubmitResponse, QueueStatsResponse
from docflow.api.schemas.workflows import (
    RunCreate,
    RunResponse,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowUpdate,
)

__all__ = [
    "JobCreate",
    "JobResponse",
    "JobSubmitResponse",
    "QueueStatsResponse",
    "RunCreate",
    "RunResponse",
    "WorkflowCreate",
    "WorkflowResponse",
    "WorkflowUpdate",
]
