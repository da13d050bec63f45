"""
WorkflowService: the submission API.

Responsibilities:
    - Workflow CRUD against the configured store (version bump on update)
    - Validate + plan synchronously on submit, so structural errors reach
      the caller before any record exists
    - Dispatch runs to the job queue, or run them in-process when the queue
      is disabled or unavailable
    - Cancel runs, wherever they are executing

Usage::

    service = WorkflowService(store, registry, queue=job_queue)
    await service.initialize()
    record = await service.submit_run(graph_id, ["s3://bucket/doc.pdf"])
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable

from docflow.core.constants import JobType, LogLevel, RunStatus
from docflow.core.errors import (
    ExecutionNotFoundError,
    InactiveWorkflowError,
    WorkflowNotFoundError,
)
from docflow.core.logging import get_logger
from docflow.execution.cancellation import CancellationToken
from docflow.execution.executor import ProgressFn, WorkflowExecutor
from docflow.execution.records import ExecutionRecord
from docflow.graph.models import ArtifactRef, Edge, Graph, Node, new_id, utcnow
from docflow.graph.planner import ExecutionPlan, WorkflowPlanner
from docflow.graph.validation import collect_problems
from docflow.operations.registry import OperationRegistry
from docflow.operations.stats import OperationTimings
from docflow.store.base import WorkflowStore

if TYPE_CHECKING:
    from docflow.queue.job_queue import JobQueue

logger = get_logger(__name__)

UPDATABLE_FIELDS = ("name", "description", "is_active", "organization_id", "nodes", "edges")


def _snapshot(record: ExecutionRecord) -> ExecutionRecord:
    return ExecutionRecord.from_dict(record.to_dict())


class WorkflowService:
    """Facade over store, planner, executor and (optionally) the job queue."""

    def __init__(
        self,
        store: WorkflowStore,
        registry: OperationRegistry,
        *,
        queue: JobQueue | None = None,
        timings: OperationTimings | None = None,
        planner: WorkflowPlanner | None = None,
        executor: WorkflowExecutor | None = None,
        max_parallel: int = 4,
        node_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.queue = queue
        self.timings = timings if timings is not None else OperationTimings()
        self.planner = planner or WorkflowPlanner(registry, self.timings)
        self.executor = executor or WorkflowExecutor(
            registry,
            planner=self.planner,
            timings=self.timings,
            max_parallel=max_parallel,
            node_timeout=node_timeout,
        )
        # run id -> (live record, token) for runs executing in this process
        self._active: dict[str, tuple[ExecutionRecord, CancellationToken]] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    async def initialize(self) -> None:
        await self.store.initialize()

    async def close(self) -> None:
        for _, token in self._active.values():
            token.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        await self.store.close()

    # ═══════════════════════════════════════════════════
    #  Workflows
    # ═══════════════════════════════════════════════════

    async def create_workflow(self, data: dict[str, Any] | Graph, owner_id: str | None = None) -> Graph:
        graph = data if isinstance(data, Graph) else Graph.from_dict(data)
        if owner_id is not None:
            graph.owner_id = owner_id
        graph.version = 1
        graph.created_at = graph.updated_at = utcnow()
        graph.reset_nodes()
        await self.store.save(graph)
        logger.info("Workflow created", graph_id=graph.id, nodes=len(graph.nodes), edges=len(graph.edges))
        return graph

    async def get_workflow(self, graph_id: str) -> Graph:
        graph = await self.store.load(graph_id)
        if graph is None:
            raise WorkflowNotFoundError(f"Workflow '{graph_id}' not found", details={"graph_id": graph_id})
        return graph

    async def list_workflows(self, owner_id: str | None = None) -> list[Graph]:
        return await self.store.list_graphs(owner_id)

    async def update_workflow(self, graph_id: str, changes: dict[str, Any]) -> Graph:
        """Apply ``changes`` and bump the version."""
        graph = await self.get_workflow(graph_id)
        for key in UPDATABLE_FIELDS:
            if key not in changes or changes[key] is None:
                continue
            value = changes[key]
            if key == "nodes":
                value = [n if isinstance(n, Node) else Node.from_dict(n) for n in value]
            elif key == "edges":
                value = [e if isinstance(e, Edge) else Edge.from_dict(e) for e in value]
            setattr(graph, key, value)
        graph.version += 1
        graph.updated_at = utcnow()
        await self.store.save(graph)
        logger.info("Workflow updated", graph_id=graph.id, version=graph.version)
        return graph

    async def delete_workflow(self, graph_id: str) -> None:
        if not await self.store.delete(graph_id):
            raise WorkflowNotFoundError(f"Workflow '{graph_id}' not found", details={"graph_id": graph_id})
        logger.info("Workflow deleted", graph_id=graph_id)

    async def analyze_workflow(self, graph_id: str) -> dict[str, Any]:
        """Analysis, structural problems and (when valid) the execution plan."""
        graph = await self.get_workflow(graph_id)
        analysis = self.planner.analyze(graph)
        problems = collect_problems(graph, self.registry)
        plan: ExecutionPlan | None = None
        if not problems and analysis.is_acyclic:
            plan = self.planner.plan(graph)
        return {
            "analysis": analysis.to_dict(),
            "problems": problems,
            "is_valid": not problems and analysis.is_acyclic,
            "plan": plan.to_dict() if plan else None,
        }

    # ═══════════════════════════════════════════════════
    #  Runs
    # ═══════════════════════════════════════════════════

    async def submit_run(
        self,
        graph_id: str,
        input_artifacts: list[Any] | None = None,
        config: dict[str, Any] | None = None,
        *,
        owner_id: str | None = None,
        use_queue: bool = True,
    ) -> ExecutionRecord:
        """
        Validate, plan and dispatch a run.

        Raises:
            WorkflowNotFoundError: unknown graph id.
            InactiveWorkflowError: the workflow is switched off.
            ValidationError / CycleError: the graph cannot run.
        """
        graph = await self.get_workflow(graph_id)
        if not graph.is_active:
            raise InactiveWorkflowError(f"Workflow '{graph_id}' is not active")

        plan = self.planner.plan(graph)

        record = ExecutionRecord(
            graph_id=graph.id,
            graph_version=graph.version,
            input_artifacts=ArtifactRef.coerce_many(input_artifacts),
            config=dict(config or {}),
            owner_id=owner_id,
        )
        record.add_log(
            LogLevel.INFO,
            "Run submitted",
            steps=len(plan.steps),
            estimated_time=plan.total_estimated_time,
            critical_path=plan.critical_path,
        )
        for warning in plan.warnings:
            record.add_log(LogLevel.WARN, warning)

        log = logger.bind(execution_id=record.id, graph_id=graph.id)

        if self.queue is not None and use_queue:
            # The id is assigned before submission: an eager worker may finish
            # the run before submit() returns
            record.job_id = new_id("job")
            await self.store.save_execution(record)
            job_id = await asyncio.to_thread(
                self.queue.submit,
                JobType.WORKFLOW_EXECUTION,
                {"execution_id": record.id, "graph_id": graph.id},
                owner_id,
                job_id=record.job_id,
            )
            if job_id is not None:
                log.info("Run queued", job_id=job_id)
                return await self.get_run(record.id) or record
            reason = self.queue.last_error.message if self.queue.last_error else "Job queue unavailable"
            log.warning("Job queue unavailable, running in-process", reason=reason)
            record.job_id = None
            record.add_log(LogLevel.WARN, f"{reason}; running in-process")

        await self.store.save_execution(record)
        self._start_in_process(record, graph)
        return _snapshot(record)

    def _start_in_process(self, record: ExecutionRecord, graph: Graph) -> None:
        token = CancellationToken()
        self._active[record.id] = (record, token)
        task = asyncio.create_task(self._run_in_process(record, graph, token))
        self._tasks[record.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record.id, None))

    async def _run_in_process(self, record: ExecutionRecord, graph: Graph, token: CancellationToken) -> None:
        try:
            await self.executor.execute(graph, record, token=token, persist=self.store.save_execution)
        except Exception as exc:
            logger.exception("In-process run crashed", execution_id=record.id, error=str(exc))
            if not record.is_terminal:
                record.fail(f"Unexpected: {exc}")
                await self.store.save_execution(record)
        finally:
            self._active.pop(record.id, None)

    async def execute_run(
        self,
        execution_id: str,
        *,
        cancel_probe: Callable[[], bool] | None = None,
        on_progress: ProgressFn | None = None,
        finalize_failure: bool = True,
    ) -> ExecutionRecord:
        """
        Execute a stored run in the calling task (used by queue workers).

        Raises:
            ExecutionNotFoundError: no such run.
            HandlerError: a retryable failure when ``finalize_failure`` is False.
        """
        record = await self.store.load_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution '{execution_id}' not found", execution_id=execution_id)
        if record.is_terminal:
            logger.info("Run already finished, nothing to execute", execution_id=execution_id, status=record.status)
            return record

        graph = await self.store.load(record.graph_id)
        if graph is None:
            record.fail(f"Workflow '{record.graph_id}' no longer exists")
            await self.store.save_execution(record)
            return record

        token = CancellationToken(probe=cancel_probe)
        self._active[record.id] = (record, token)
        try:
            return await self.executor.execute(
                graph,
                record,
                token=token,
                persist=self.store.save_execution,
                on_progress=on_progress,
                finalize_failure=finalize_failure,
            )
        finally:
            self._active.pop(record.id, None)

    async def get_run(self, execution_id: str) -> ExecutionRecord | None:
        if execution_id in self._active:
            return _snapshot(self._active[execution_id][0])
        return await self.store.load_execution(execution_id)

    async def list_runs(self, graph_id: str | None = None, limit: int = 50) -> list[ExecutionRecord]:
        return await self.store.list_executions(graph_id, limit)

    async def cancel_run(self, execution_id: str) -> ExecutionRecord:
        """
        Request cancellation.

        In-process runs stop at the next step boundary.  Queued runs whose
        job is waiting or delayed between attempts are cancelled outright;
        runs with an active job are flagged and stop at their next step
        boundary on the worker.

        Raises:
            ExecutionNotFoundError: no such run.
        """
        log = logger.bind(execution_id=execution_id)

        if execution_id in self._active:
            record, token = self._active[execution_id]
            token.cancel()
            if record.mark_cancelled():
                await self.store.save_execution(record)
            log.info("In-process run cancelled")
            return _snapshot(record)

        record = await self.store.load_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution '{execution_id}' not found", execution_id=execution_id)
        if record.is_terminal:
            return record

        if record.status == RunStatus.PENDING:
            record.mark_cancelled()
            await self.store.save_execution(record)
            log.info("Pending run cancelled")

        if record.job_id and self.queue is not None:
            flagged = await asyncio.to_thread(self.queue.cancel, record.job_id)
            log.info("Cancellation forwarded to job queue", job_id=record.job_id, accepted=flagged)
            job = await asyncio.to_thread(self.queue.get_status, record.job_id) if flagged else None
            # Waiting/delayed jobs are failed on the spot: no worker attempt will finish the run
            if job is not None and job.is_finished and record.mark_cancelled():
                await self.store.save_execution(record)
                log.info("Queued run cancelled between attempts", job_id=record.job_id)
        return record

    async def finalize_cancelled(self, execution_id: str, reason: str = "Cancelled by request") -> ExecutionRecord | None:
        """Mark a stored run cancelled after its job was cancelled.  Finished runs are left alone."""
        record = await self.store.load_execution(execution_id)
        if record is None:
            return None
        if record.mark_cancelled(reason):
            await self.store.save_execution(record)
            logger.info("Run cancelled with its job", execution_id=execution_id)
        return record

    async def wait_for_run(self, execution_id: str, timeout: float | None = None, poll_interval: float = 0.05) -> ExecutionRecord:
        """
        Wait until the run reaches a terminal state.

        Raises:
            ExecutionNotFoundError: no such run.
            asyncio.TimeoutError: still running after ``timeout`` seconds.
        """

        async def _wait() -> ExecutionRecord:
            task = self._tasks.get(execution_id)
            if task is not None:
                await asyncio.shield(task)
            while True:
                record = await self.get_run(execution_id)
                if record is None:
                    raise ExecutionNotFoundError(f"Execution '{execution_id}' not found", execution_id=execution_id)
                if record.is_terminal:
                    return record
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(_wait(), timeout=timeout)
