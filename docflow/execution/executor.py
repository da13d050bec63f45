"""
WorkflowExecutor: walks an ExecutionPlan and runs operation handlers.

Responsibilities:
    - Plan the graph (validation + cycle check) on a per-run copy
    - Run each step: single nodes sequentially, parallel groups as
      concurrent asyncio tasks behind a fan-out/fan-in barrier
    - Evaluate edge conditions; skip nodes whose every incoming edge is
      inactive
    - Track node status, run progress and the run's own log
    - Stop at step boundaries when the cancellation token fires
    - Persist the record after every state change
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from docflow.core.constants import LogLevel, NodeStatus
from docflow.core.errors import ConditionError, CycleError, HandlerError, ValidationError
from docflow.core.logging import get_logger
from docflow.execution.cancellation import CancellationToken
from docflow.execution.records import ExecutionRecord, NodeResult
from docflow.graph.conditions import ConditionContext, parse_condition
from docflow.graph.models import ArtifactRef, Edge, Graph, Node, utcnow
from docflow.graph.planner import ExecutionStep, WorkflowPlanner
from docflow.operations.registry import OperationRegistry
from docflow.operations.stats import OperationTimings

logger = get_logger(__name__)

PersistFn = Callable[[ExecutionRecord], Awaitable[None]]
ProgressFn = Callable[[int], None]


@dataclass
class _NodeFailure:
    node_id: str
    error: BaseException

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.error, "retryable", True))

    @property
    def message(self) -> str:
        if isinstance(self.error, asyncio.TimeoutError):
            return "timed out"
        return str(self.error) or type(self.error).__name__


@dataclass
class _RunState:
    """Per-run working data; never shared between runs."""

    graph: Graph
    record: ExecutionRecord
    outputs: dict[str, list[ArtifactRef]] = field(default_factory=dict)
    resolved: int = 0


class WorkflowExecutor:
    """
    Runs one ExecutionRecord against one Graph.

    Usage::

        executor = WorkflowExecutor(registry, max_parallel=4)
        record = await executor.execute(graph, record, persist=store.save_execution)
    """

    def __init__(
        self,
        registry: OperationRegistry,
        planner: WorkflowPlanner | None = None,
        timings: OperationTimings | None = None,
        max_parallel: int = 4,
        node_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.timings = timings if timings is not None else OperationTimings()
        self.planner = planner or WorkflowPlanner(registry, self.timings)
        self.max_parallel = max(1, max_parallel)
        self.node_timeout = node_timeout if node_timeout and node_timeout > 0 else None

    async def execute(
        self,
        graph: Graph,
        record: ExecutionRecord,
        *,
        token: CancellationToken | None = None,
        persist: PersistFn | None = None,
        on_progress: ProgressFn | None = None,
        finalize_failure: bool = True,
    ) -> ExecutionRecord:
        """
        Execute the run to a terminal state and return the record.

        With ``finalize_failure=False`` (a job attempt that will be retried)
        a retryable node failure leaves the run ``running`` and raises
        HandlerError instead; the next attempt starts from a clean graph.

        Raises:
            HandlerError: only when ``finalize_failure`` is False.
        """
        token = token or CancellationToken()
        working = graph.copy()
        working.reset_nodes()
        state = _RunState(graph=working, record=record)

        log = logger.bind(execution_id=record.id, graph_id=graph.id)

        async def save() -> None:
            if persist is not None:
                await persist(record)

        # ── Plan ──────────────────────────────────────
        try:
            plan = self.planner.plan(working)
        except (ValidationError, CycleError) as exc:
            log.error("Run rejected at planning", error=exc.message)
            record.add_log(LogLevel.ERROR, f"Workflow is invalid: {exc.message}", **exc.details)
            record.fail(exc.message)
            await save()
            return record

        if token.is_cancelled():
            record.mark_cancelled()
            await save()
            return record

        # ── Start ─────────────────────────────────────
        record.start()
        record.graph_version = graph.version
        record.node_results = {n.id: NodeResult(node_id=n.id) for n in working.nodes}
        record.add_log(
            LogLevel.INFO,
            "Run started" if record.attempt == 1 else f"Run restarted (attempt {record.attempt})",
            steps=len(plan.steps),
            nodes=len(working.nodes),
        )
        log = log.bind(attempt=record.attempt)
        log.info("Run started", steps=len(plan.steps), critical_path=plan.critical_path)
        await save()

        # ── Steps ─────────────────────────────────────
        total = len(working.nodes)
        for step in plan.steps:
            if token.is_cancelled():
                return await self._finish_cancelled(record, save, log, step)

            step_log = log.bind(step_index=step.index, node_ids=step.node_ids)
            failure = await self._run_step(state, step, token, save, step_log)

            if token.is_cancelled():
                return await self._finish_cancelled(record, save, log, step)

            if failure is not None:
                return await self._finish_failed(record, failure, save, log, finalize_failure)

            record.update_progress(state.resolved / total * 100)
            if on_progress is not None:
                on_progress(record.progress)
            await save()

        # ── Finalise ──────────────────────────────────
        if token.is_cancelled():
            return await self._finish_cancelled(record, save, log, plan.steps[-1])

        outputs: list[ArtifactRef] = []
        for nid in working.sink_nodes():
            if working.node(nid).status == NodeStatus.COMPLETED:
                outputs.extend(state.outputs.get(nid, []))

        record.complete(outputs)
        record.add_log(LogLevel.INFO, "Run completed", outputs=len(outputs))
        if on_progress is not None:
            on_progress(record.progress)
        await save()

        log.info("Run completed", outputs=len(outputs), duration_ms=record.duration_ms)
        return record

    # ─── Steps ─────────────────────────────────────────

    async def _run_step(
        self,
        state: _RunState,
        step: ExecutionStep,
        token: CancellationToken,
        save: Callable[[], Awaitable[None]],
        log,
    ) -> _NodeFailure | None:
        """Run one step.  Returns the first failure, or None."""
        record = state.record
        to_run: list[Node] = []

        # Conditions are resolved before anything in the step is dispatched
        for nid in step.node_ids:
            node = state.graph.node(nid)
            try:
                active = self._incoming_active(state, node)
            except ConditionError as exc:
                self._mark_error(state, node, str(exc))
                return _NodeFailure(nid, exc)
            if active:
                to_run.append(node)
            else:
                self._mark_skipped(state, node)

        if not to_run:
            return None

        for node in to_run:
            node.status = NodeStatus.RUNNING
            result = record.node_result(node.id)
            result.status = NodeStatus.RUNNING
            result.started_at = utcnow()
            record.add_log(LogLevel.INFO, f"Node '{node.label or node.id}' started", node_id=node.id)
        await save()

        if step.can_run_in_parallel and len(to_run) > 1:
            semaphore = asyncio.Semaphore(self.max_parallel)

            async def bounded(n: Node) -> list[ArtifactRef]:
                async with semaphore:
                    return await self._invoke(state, n)

            log.info("Parallel step dispatched", running=[n.id for n in to_run])
            outcomes = await asyncio.gather(*(bounded(n) for n in to_run), return_exceptions=True)
        else:
            outcomes = []
            for node in to_run:
                try:
                    outcomes.append(await self._invoke(state, node))
                except Exception as exc:
                    outcomes.append(exc)
                    break
                if token.is_cancelled():
                    break

        # Cancelled while in flight: results are discarded
        if token.is_cancelled():
            for node in to_run:
                node.status = NodeStatus.IDLE
                record.node_result(node.id).status = NodeStatus.IDLE
            record.add_log(LogLevel.WARN, "In-flight results discarded", node_ids=[n.id for n in to_run])
            return None

        # Nodes after a sequential failure never ran
        for node in to_run[len(outcomes):]:
            node.status = NodeStatus.IDLE
            record.node_result(node.id).status = NodeStatus.IDLE

        first_failure: _NodeFailure | None = None
        for node, outcome in zip(to_run, outcomes):
            if isinstance(outcome, BaseException):
                failure = _NodeFailure(node.id, outcome)
                self._mark_error(state, node, failure.message)
                log.error("Node failed", node_id=node.id, operation=node.operation, error=failure.message)
                first_failure = first_failure or failure
            else:
                self._mark_completed(state, node, outcome)
                log.info("Node completed", node_id=node.id, outputs=len(outcome))
        return first_failure

    async def _invoke(self, state: _RunState, node: Node) -> list[ArtifactRef]:
        """Call the node's handler with its inputs and merged config."""
        handler = self.registry.get(node.operation)
        inputs = self._inputs_for(state, node)
        config: dict[str, Any] = {**state.record.config, **node.config}

        started = time.perf_counter()
        call = handler.execute(inputs, config)
        if self.node_timeout is not None:
            raw = await asyncio.wait_for(call, timeout=self.node_timeout)
        else:
            raw = await call
        self.timings.record(node.operation, time.perf_counter() - started)

        try:
            return ArtifactRef.coerce_many(raw)
        except TypeError as exc:
            raise HandlerError(
                f"Operation '{node.operation}' returned an invalid result: {exc}",
                operation=node.operation,
                node_id=node.id,
                retryable=False,
            ) from exc

    # ─── Edges / inputs ────────────────────────────────

    def _incoming_active(self, state: _RunState, node: Node) -> bool:
        incoming = state.graph.incoming(node.id)
        if not incoming:
            return True
        return any(self._edge_active(state, edge) for edge in incoming)

    def _edge_active(self, state: _RunState, edge: Edge) -> bool:
        source = state.graph.node(edge.source)
        if source.status != NodeStatus.COMPLETED:
            return False
        condition = parse_condition(edge.condition)
        if condition is None:
            return True
        try:
            return condition.evaluate(ConditionContext(source=edge.source, outputs=state.outputs))
        except ConditionError as exc:
            exc.node_id = edge.target
            exc.details.setdefault("edge_id", edge.id)
            raise

    def _inputs_for(self, state: _RunState, node: Node) -> list[ArtifactRef]:
        incoming = state.graph.incoming(node.id)
        if not incoming:
            return list(state.record.input_artifacts)
        inputs: list[ArtifactRef] = []
        seen_sources: set[str] = set()
        for edge in incoming:
            if edge.source in seen_sources or not self._edge_active(state, edge):
                continue
            seen_sources.add(edge.source)
            inputs.extend(state.outputs.get(edge.source, []))
        return inputs

    # ─── Node transitions ──────────────────────────────

    def _mark_completed(self, state: _RunState, node: Node, outputs: list[ArtifactRef]) -> None:
        node.status = NodeStatus.COMPLETED
        node.progress = 100
        state.outputs[node.id] = outputs
        state.resolved += 1

        result = state.record.node_result(node.id)
        result.status = NodeStatus.COMPLETED
        result.progress = 100
        result.outputs = list(outputs)
        result.completed_at = utcnow()
        if result.started_at is not None:
            result.duration_ms = int((result.completed_at - result.started_at).total_seconds() * 1000)
        state.record.add_log(
            LogLevel.INFO,
            f"Node '{node.label or node.id}' completed",
            node_id=node.id,
            outputs=len(outputs),
            duration_ms=result.duration_ms,
        )

    def _mark_skipped(self, state: _RunState, node: Node) -> None:
        node.status = NodeStatus.SKIPPED
        state.resolved += 1
        result = state.record.node_result(node.id)
        result.status = NodeStatus.SKIPPED
        state.record.add_log(LogLevel.INFO, f"Node '{node.label or node.id}' skipped: no active incoming edge", node_id=node.id)

    def _mark_error(self, state: _RunState, node: Node, message: str) -> None:
        node.status = NodeStatus.ERROR
        result = state.record.node_result(node.id)
        result.status = NodeStatus.ERROR
        result.error = message
        result.completed_at = utcnow()
        state.record.add_log(LogLevel.ERROR, f"Node '{node.label or node.id}' failed: {message}", node_id=node.id)

    # ─── Run terminations ──────────────────────────────

    async def _finish_cancelled(self, record: ExecutionRecord, save, log, step: ExecutionStep) -> ExecutionRecord:
        record.mark_cancelled()
        await save()
        log.warning("Run cancelled", at_step=step.index)
        return record

    async def _finish_failed(
        self,
        record: ExecutionRecord,
        failure: _NodeFailure,
        save,
        log,
        finalize_failure: bool,
    ) -> ExecutionRecord:
        message = f"Node '{failure.node_id}' failed: {failure.message}"

        if not finalize_failure and failure.retryable:
            record.failed_node_id = failure.node_id
            record.error = message
            record.add_log(LogLevel.WARN, f"Attempt {record.attempt} failed; run will be retried", node_id=failure.node_id)
            await save()
            log.warning("Attempt failed, leaving run open for retry", node_id=failure.node_id, error=failure.message)
            raise HandlerError(
                message,
                execution_id=record.id,
                node_id=failure.node_id,
                retryable=True,
            ) from failure.error

        record.fail(message, node_id=failure.node_id)
        record.add_log(LogLevel.ERROR, "Run failed", node_id=failure.node_id)
        await save()
        log.error("Run failed", node_id=failure.node_id, error=failure.message)
        return record
