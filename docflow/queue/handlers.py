"""
Job handlers shipped with the queue.

Only ``workflow-execution`` has a built-in handler; the batch job types are
registered by the host application.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from docflow.core.constants import RunStatus
from docflow.core.errors import HandlerError
from docflow.core.logging import get_logger
from docflow.execution.service import WorkflowService
from docflow.queue.job_queue import JobContext

logger = get_logger(__name__)


class WorkflowRunJobHandler:
    """
    Executes the ExecutionRecord referenced by ``payload["execution_id"]``.

    Celery tasks are synchronous, so each attempt drives the async executor
    with ``asyncio.run`` on a freshly built service (fresh store and engine,
    no event-loop sharing with the caller).

    A run that ends ``failed`` or ``cancelled`` raises a non-retryable
    HandlerError so the job fails with the run's error.  Non-final attempts
    leave retryable failures to the executor, which raises and keeps the
    run open.

    ``on_cancelled`` is the queue's cancel hook: a job dropped between
    attempts moves its run to ``cancelled``.
    """

    def __init__(self, service_factory: Callable[[], WorkflowService]) -> None:
        self.service_factory = service_factory

    def __call__(self, payload: dict[str, Any], ctx: JobContext) -> dict[str, Any]:
        return asyncio.run(self._run(payload, ctx))

    async def _run(self, payload: dict[str, Any], ctx: JobContext) -> dict[str, Any]:
        execution_id = payload["execution_id"]
        log = logger.bind(job_id=ctx.job_id, execution_id=execution_id, attempt=ctx.attempt)
        log.info("Workflow run job started")

        service = self.service_factory()
        await service.initialize()
        try:
            record = await service.execute_run(
                execution_id,
                cancel_probe=ctx.is_cancelled,
                on_progress=ctx.report_progress,
                finalize_failure=ctx.is_final_attempt,
            )
        finally:
            await service.close()

        if record.status == RunStatus.FAILED:
            raise HandlerError(
                record.error or "Workflow run failed",
                execution_id=record.id,
                node_id=record.failed_node_id,
                retryable=False,
            )

        if record.status == RunStatus.CANCELLED:
            raise HandlerError("Cancelled", execution_id=record.id, retryable=False)

        log.info("Workflow run job finished", status=record.status)
        return {
            "execution_id": record.id,
            "status": str(record.status),
            "progress": record.progress,
            "output_artifacts": [a.to_dict() for a in record.output_artifacts],
        }

    def on_cancelled(self, payload: dict[str, Any]) -> None:
        asyncio.run(self._finalize_cancelled(payload["execution_id"]))

    async def _finalize_cancelled(self, execution_id: str) -> None:
        service = self.service_factory()
        await service.initialize()
        try:
            await service.finalize_cancelled(execution_id, reason="Cancelled while queued")
        finally:
            await service.close()
