"""Workflow and run request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from docflow.core.constants import NodeType


class ArtifactSchema(BaseModel):
    uri: str = Field(..., min_length=1)
    kind: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NodeSchema(BaseModel):
    id: str = Field(..., min_length=1, max_length=128)
    operation: str = Field(..., min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)
    label: str = ""
    type: NodeType = NodeType.PROCESS
    status: str = "idle"
    progress: int = Field(default=0, ge=0, le=100)


class EdgeSchema(BaseModel):
    id: str | None = None
    source: str
    target: str
    condition: Any = None


class WorkflowCreate(BaseModel):
    """Request payload for creating a workflow."""

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    is_active: bool = True
    organization_id: str | None = None
    nodes: list[NodeSchema] = Field(default_factory=list)
    edges: list[EdgeSchema] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    """Partial update; every change bumps the version."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None
    organization_id: str | None = None
    nodes: list[NodeSchema] | None = None
    edges: list[EdgeSchema] | None = None


class WorkflowResponse(BaseModel):
    id: str
    name: str
    description: str
    version: int
    is_active: bool
    owner_id: str | None
    organization_id: str | None
    nodes: list[NodeSchema]
    edges: list[EdgeSchema]
    created_at: datetime
    updated_at: datetime


class RunCreate(BaseModel):
    """Request payload for submitting a run."""

    input_artifacts: list[ArtifactSchema | str] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    use_queue: bool = True


class LogEntrySchema(BaseModel):
    timestamp: datetime
    level: str
    message: str
    node_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class RunResponse(BaseModel):
    id: str
    graph_id: str
    graph_version: int | None
    status: str
    progress: int = Field(..., ge=0, le=100)
    input_artifacts: list[ArtifactSchema]
    output_artifacts: list[ArtifactSchema]
    config: dict[str, Any]
    logs: list[LogEntrySchema]
    node_results: dict[str, dict[str, Any]]
    error: str | None
    failed_node_id: str | None
    owner_id: str | None
    job_id: str | None
    attempt: int
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
