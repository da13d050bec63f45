"""Shared dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status

from docflow.bootstrap import Services
from docflow.execution.service import WorkflowService
from docflow.queue.job_queue import JobQueue


def get_services(request: Request) -> Services:
    """Services built at startup (see docflow.main lifespan)."""
    return request.app.state.services


def get_service(services: Services = Depends(get_services)) -> WorkflowService:
    return services.service


def get_queue(services: Services = Depends(get_services)) -> JobQueue:
    if services.queue is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job queue is disabled",
        )
    return services.queue


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str | None:
    """Caller identity.  Authentication is handled upstream; we only scope by owner."""
    return x_owner_id
