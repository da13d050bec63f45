"""Job queue request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JobCreate(BaseModel):
    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class JobSubmitResponse(BaseModel):
    """``job_id`` is null when the queue is unavailable."""

    job_id: str | None
    available: bool
    error: dict | None = None


class JobResponse(BaseModel):
    id: str
    type: str
    payload: dict[str, Any]
    status: str
    progress: int
    result: Any = None
    failure_reason: str | None = None
    owner_id: str | None = None
    attempts: int
    max_attempts: int
    next_attempt_at: datetime | None = None
    cancel_requested: bool = False
    created_at: datetime
    processed_at: datetime | None = None
    finished_at: datetime | None = None


class QueueStatsResponse(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    available: bool
