"""
Execution Planner: turns analyzer output into ordered execution steps.

Each round takes the "ready set" (unscheduled nodes whose dependencies are
all scheduled) and splits it by parallel group: members of the same group
form one concurrent step, everything else runs as its own single-node step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from docflow.core.errors import CycleError, PlanningError
from docflow.graph import analyzer
from docflow.graph.analyzer import CostFn, ParallelSafeFn
from docflow.graph.models import Edge, Graph, Node
from docflow.graph.validation import validate_structure

if TYPE_CHECKING:
    from docflow.operations.registry import OperationRegistry
    from docflow.operations.stats import OperationTimings


@dataclass
class ExecutionStep:
    """One unit of the plan: a single node or a concurrent group."""

    index: int
    node_ids: list[str]
    can_run_in_parallel: bool
    estimated_time: float
    dependencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "node_ids": list(self.node_ids),
            "can_run_in_parallel": self.can_run_in_parallel,
            "estimated_time": self.estimated_time,
            "dependencies": list(self.dependencies),
        }


@dataclass
class ExecutionPlan:
    graph_id: str
    steps: list[ExecutionStep]
    total_estimated_time: float
    critical_path: list[str] = field(default_factory=list)
    critical_path_cost: float = 0.0
    parallel_groups: list[list[str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return sum(len(s.node_ids) for s in self.steps)

    def to_dict(self) -> dict:
        return {
            "graph_id": self.graph_id,
            "steps": [s.to_dict() for s in self.steps],
            "total_estimated_time": self.total_estimated_time,
            "critical_path": self.critical_path,
            "critical_path_cost": self.critical_path_cost,
            "parallel_groups": self.parallel_groups,
            "warnings": self.warnings,
        }


def build_plan(
    nodes: list[Node],
    edges: list[Edge],
    is_parallel_safe: ParallelSafeFn | None = None,
    cost_fn: CostFn | None = None,
) -> list[ExecutionStep]:
    """
    Ordered steps covering every node exactly once.

    Raises:
        PlanningError: no ready set while nodes remain (a cycle).
    """
    cost_fn = cost_fn or (lambda node: analyzer.DEFAULT_COST)
    deps = analyzer.build_dependency_map(nodes, edges)
    by_id = {n.id: n for n in nodes}

    detected_cycle = analyzer.detect_cycles(nodes, edges)
    groups = [] if detected_cycle else analyzer.identify_parallel_groups(nodes, edges, is_parallel_safe)
    group_of = {nid: i for i, g in enumerate(groups) for nid in g}

    scheduled: set[str] = set()
    steps: list[ExecutionStep] = []

    while len(scheduled) < len(nodes):
        ready = [n.id for n in nodes if n.id not in scheduled and all(d in scheduled for d in deps[n.id])]
        if not ready:
            remaining = [n.id for n in nodes if n.id not in scheduled]
            raise PlanningError(
                f"No schedulable nodes left; remaining nodes form a cycle: {', '.join(remaining)}",
                cycle=detected_cycle or remaining,
            )

        # Partition the ready set, keeping first-appearance order
        partitions: list[list[str]] = []
        by_group: dict[int, list[str]] = {}
        for nid in ready:
            gid = group_of.get(nid)
            if gid is None:
                partitions.append([nid])
            elif gid in by_group:
                by_group[gid].append(nid)
            else:
                by_group[gid] = [nid]
                partitions.append(by_group[gid])

        for part in partitions:
            costs = [analyzer.node_cost(cost_fn, by_id[nid]) for nid in part]
            parallel = len(part) > 1
            step_deps: list[str] = []
            for nid in part:
                step_deps.extend(d for d in deps[nid] if d not in step_deps)
            steps.append(ExecutionStep(
                index=len(steps),
                node_ids=part,
                can_run_in_parallel=parallel,
                estimated_time=max(costs) if parallel else sum(costs),
                dependencies=step_deps,
            ))
        scheduled.update(ready)

    return steps


class WorkflowPlanner:
    """
    Validates a graph and produces its ExecutionPlan.

    Parallel safety comes from the operation registry, costs from the
    recorded operation timings (falling back to each handler's estimate).
    """

    def __init__(
        self,
        registry: OperationRegistry,
        timings: OperationTimings | None = None,
        default_cost: float = analyzer.DEFAULT_COST,
    ) -> None:
        self.registry = registry
        self.timings = timings
        self.default_cost = default_cost
        self.logger = structlog.get_logger("graph.planner")

    def is_parallel_safe(self, node: Node) -> bool:
        return self.registry.is_parallel_safe(node.operation)

    def cost(self, node: Node) -> float:
        if node.operation in self.registry:
            fallback = self.registry.get(node.operation).estimated_cost
        else:
            fallback = self.default_cost
        if self.timings is not None:
            return self.timings.average(node.operation, default=fallback)
        return fallback

    def analyze(self, graph: Graph) -> analyzer.GraphAnalysis:
        return analyzer.analyze_graph(graph, self.is_parallel_safe, self.cost)

    def plan(self, graph: Graph) -> ExecutionPlan:
        """
        Validate and plan.

        Raises:
            ValidationError: structural problem.
            CycleError: the graph is not acyclic.
        """
        # A pure cycle also has no entry node; report it as a cycle
        cycle = analyzer.detect_cycles(graph.nodes, graph.edges)
        if cycle:
            raise CycleError(
                f"Workflow '{graph.id}' contains a cycle through: {', '.join(cycle)}",
                cycle=cycle,
            )

        validate_structure(graph, self.registry)

        analysis = self.analyze(graph)
        steps = build_plan(graph.nodes, graph.edges, self.is_parallel_safe, self.cost)
        plan = ExecutionPlan(
            graph_id=graph.id,
            steps=steps,
            total_estimated_time=sum(s.estimated_time for s in steps),
            critical_path=analysis.critical_path,
            critical_path_cost=analysis.critical_path_cost,
            parallel_groups=analysis.parallel_groups,
            warnings=list(analysis.warnings),
        )
        self.logger.debug(
            "Plan built",
            graph_id=graph.id,
            steps=len(steps),
            parallel_steps=sum(1 for s in steps if s.can_run_in_parallel),
            critical_path=plan.critical_path,
        )
        return plan
