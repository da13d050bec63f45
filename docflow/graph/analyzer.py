"""
Graph Analyzer: pure functions over the node/edge structure.

Every function takes ``nodes`` (ordered Node list) and ``edges`` rather than
a Graph so they can be reused on sub-graphs.  Node declaration order is the
tie-breaker wherever a choice exists, which keeps all results deterministic.

Edges pointing at unknown nodes are ignored here; validate_structure reports
them.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable

from docflow.core.errors import CycleError
from docflow.graph.models import Edge, Graph, Node

CostFn = Callable[[Node], float]
ParallelSafeFn = Callable[[Node], bool]

DEFAULT_COST = 1.0


def _valid_edges(nodes: list[Node], edges: Iterable[Edge]) -> list[Edge]:
    ids = {n.id for n in nodes}
    return [e for e in edges if e.source in ids and e.target in ids]


# ═══════════════════════════════════════════════════════════
#  Dependency maps
# ═══════════════════════════════════════════════════════════

def build_dependency_map(nodes: list[Node], edges: list[Edge]) -> dict[str, list[str]]:
    """node id -> ids of the nodes it depends on (edge sources), no duplicates."""
    deps: dict[str, list[str]] = {n.id: [] for n in nodes}
    for e in _valid_edges(nodes, edges):
        if e.source not in deps[e.target]:
            deps[e.target].append(e.source)
    return deps


def build_dependents_map(nodes: list[Node], edges: list[Edge]) -> dict[str, list[str]]:
    """node id -> ids of the nodes that depend on it."""
    dependents: dict[str, list[str]] = {n.id: [] for n in nodes}
    for e in _valid_edges(nodes, edges):
        if e.target not in dependents[e.source]:
            dependents[e.source].append(e.target)
    return dependents


def entry_node_ids(nodes: list[Node], edges: list[Edge]) -> list[str]:
    deps = build_dependency_map(nodes, edges)
    return [n.id for n in nodes if not deps[n.id]]


# ═══════════════════════════════════════════════════════════
#  Cycles / ordering / reachability
# ═══════════════════════════════════════════════════════════

def detect_cycles(nodes: list[Node], edges: list[Edge]) -> list[str]:
    """
    Depth-first search with an explicit "visiting" stack.

    Returns the ids of every node that lies on a cycle found by the search,
    in discovery order.  Empty list when the graph is acyclic.
    """
    dependents = build_dependents_map(nodes, edges)
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycle_members: list[str] = []

    for start in (n.id for n in nodes):
        if start in visited:
            continue
        # Iterative DFS; each frame is (node, iterator over its dependents)
        path: list[str] = [start]
        frames = [(start, iter(dependents[start]))]
        visited.add(start)
        on_stack.add(start)

        while frames:
            current, children = frames[-1]
            child = next(children, None)
            if child is None:
                frames.pop()
                path.pop()
                on_stack.discard(current)
                continue
            if child in on_stack:
                for member in path[path.index(child):]:
                    if member not in cycle_members:
                        cycle_members.append(member)
                continue
            if child in visited:
                continue
            visited.add(child)
            on_stack.add(child)
            path.append(child)
            frames.append((child, iter(dependents[child])))

    return cycle_members


def topological_order(nodes: list[Node], edges: list[Edge]) -> list[str]:
    """
    Kahn's algorithm.  Among nodes that become ready together, the one
    declared first comes first.

    Raises:
        CycleError: if not every node could be ordered.
    """
    position = {n.id: i for i, n in enumerate(nodes)}
    deps = build_dependency_map(nodes, edges)
    dependents = build_dependents_map(nodes, edges)
    in_degree = {nid: len(d) for nid, d in deps.items()}

    ready = sorted((nid for nid, deg in in_degree.items() if deg == 0), key=position.__getitem__)
    order: list[str] = []

    while ready:
        current = ready.pop(0)
        order.append(current)
        released = []
        for child in dependents[current]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                released.append(child)
        if released:
            ready = sorted(ready + released, key=position.__getitem__)

    if len(order) < len(nodes):
        cycle = detect_cycles(nodes, edges)
        raise CycleError(
            f"Workflow contains a cycle through: {', '.join(cycle)}",
            cycle=cycle,
        )
    return order


def find_unreachable(nodes: list[Node], edges: list[Edge]) -> list[str]:
    """Breadth-first from every entry node; returns nodes never visited."""
    dependents = build_dependents_map(nodes, edges)
    queue = deque(entry_node_ids(nodes, edges))
    visited = set(queue)
    while queue:
        current = queue.popleft()
        for child in dependents[current]:
            if child not in visited:
                visited.add(child)
                queue.append(child)
    return [n.id for n in nodes if n.id not in visited]


def build_ancestor_map(nodes: list[Node], edges: list[Edge], order: list[str] | None = None) -> dict[str, set[str]]:
    """node id -> every node it transitively depends on.  Requires a DAG."""
    deps = build_dependency_map(nodes, edges)
    order = order if order is not None else topological_order(nodes, edges)
    ancestors: dict[str, set[str]] = {}
    for nid in order:
        acc: set[str] = set()
        for d in deps[nid]:
            acc.add(d)
            acc |= ancestors[d]
        ancestors[nid] = acc
    return ancestors


# ═══════════════════════════════════════════════════════════
#  Parallel groups
# ═══════════════════════════════════════════════════════════

def identify_parallel_groups(
    nodes: list[Node],
    edges: list[Edge],
    is_parallel_safe: ParallelSafeFn | None = None,
) -> list[list[str]]:
    """
    Group nodes that may run concurrently.

    Two nodes share a group iff they have identical dependency sets, neither
    is an ancestor of the other, and both are parallel-safe.  Nodes are
    visited in topological order and join the first compatible open group.
    Only groups with at least two members are returned.

    Raises:
        CycleError: the graph is not a DAG.
    """
    is_parallel_safe = is_parallel_safe or (lambda node: True)
    by_id = {n.id: n for n in nodes}
    order = topological_order(nodes, edges)
    deps = build_dependency_map(nodes, edges)
    ancestors = build_ancestor_map(nodes, edges, order)

    groups: list[list[str]] = []
    for nid in order:
        if not is_parallel_safe(by_id[nid]):
            continue
        dep_set = set(deps[nid])
        for group in groups:
            head = group[0]
            if set(deps[head]) != dep_set:
                continue
            if any(nid in ancestors[m] or m in ancestors[nid] for m in group):
                continue
            group.append(nid)
            break
        else:
            groups.append([nid])

    return [g for g in groups if len(g) >= 2]


# ═══════════════════════════════════════════════════════════
#  Critical path
# ═══════════════════════════════════════════════════════════

def path_times(nodes: list[Node], edges: list[Edge], cost_fn: CostFn | None = None) -> dict[str, float]:
    """pathTime(n) = cost(n) + max(pathTime(d) for d in deps(n), default 0)."""
    cost_fn = cost_fn or (lambda node: DEFAULT_COST)
    by_id = {n.id: n for n in nodes}
    deps = build_dependency_map(nodes, edges)
    times: dict[str, float] = {}
    for nid in topological_order(nodes, edges):
        upstream = max((times[d] for d in deps[nid]), default=0.0)
        times[nid] = node_cost(cost_fn, by_id[nid]) + upstream
    return times


def node_cost(cost_fn: CostFn, node: Node) -> float:
    cost = cost_fn(node)
    return DEFAULT_COST if cost is None or cost < 0 else float(cost)


def critical_path(nodes: list[Node], edges: list[Edge], cost_fn: CostFn | None = None) -> list[str]:
    """
    The heaviest entry-to-node path, entry first.

    Backtracks from the node with the largest path time through the
    dependency with the largest path time at each step.  Ties resolve to the
    earliest declared node.
    """
    if not nodes:
        return []
    times = path_times(nodes, edges, cost_fn)
    deps = build_dependency_map(nodes, edges)
    position = {n.id: i for i, n in enumerate(nodes)}

    def heaviest(candidates: list[str]) -> str:
        return max(candidates, key=lambda nid: (times[nid], -position[nid]))

    current = heaviest([n.id for n in nodes])
    path = [current]
    while deps[current]:
        current = heaviest(deps[current])
        path.append(current)
    path.reverse()
    return path


def path_cost(path: list[str], nodes: list[Node], cost_fn: CostFn | None = None) -> float:
    cost_fn = cost_fn or (lambda node: DEFAULT_COST)
    by_id = {n.id: n for n in nodes}
    return sum(node_cost(cost_fn, by_id[nid]) for nid in path)


# ═══════════════════════════════════════════════════════════
#  Bundle
# ═══════════════════════════════════════════════════════════

@dataclass
class GraphAnalysis:
    """Everything the analyzer knows about one graph."""

    graph_id: str
    node_count: int
    edge_count: int
    entry_nodes: list[str] = field(default_factory=list)
    sink_nodes: list[str] = field(default_factory=list)
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    cycle: list[str] = field(default_factory=list)
    topological_order: list[str] = field(default_factory=list)
    unreachable: list[str] = field(default_factory=list)
    parallel_groups: list[list[str]] = field(default_factory=list)
    critical_path: list[str] = field(default_factory=list)
    critical_path_cost: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def is_acyclic(self) -> bool:
        return not self.cycle

    def to_dict(self) -> dict:
        return {
            "graph_id": self.graph_id,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "entry_nodes": self.entry_nodes,
            "sink_nodes": self.sink_nodes,
            "dependencies": self.dependencies,
            "is_acyclic": self.is_acyclic,
            "cycle": self.cycle,
            "topological_order": self.topological_order,
            "unreachable": self.unreachable,
            "parallel_groups": self.parallel_groups,
            "critical_path": self.critical_path,
            "critical_path_cost": self.critical_path_cost,
            "warnings": self.warnings,
        }


def analyze_graph(
    graph: Graph,
    is_parallel_safe: ParallelSafeFn | None = None,
    cost_fn: CostFn | None = None,
) -> GraphAnalysis:
    """Run every analysis.  Never raises for cycles; they are reported."""
    nodes, edges = graph.nodes, graph.edges
    analysis = GraphAnalysis(
        graph_id=graph.id,
        node_count=len(nodes),
        edge_count=len(edges),
        entry_nodes=entry_node_ids(nodes, edges),
        sink_nodes=[nid for nid, d in build_dependents_map(nodes, edges).items() if not d],
        dependencies=build_dependency_map(nodes, edges),
        cycle=detect_cycles(nodes, edges),
        unreachable=find_unreachable(nodes, edges),
    )
    for nid in analysis.unreachable:
        analysis.warnings.append(f"node '{nid}' is unreachable from any entry node")

    if analysis.cycle:
        analysis.warnings.append(f"cycle detected through {', '.join(analysis.cycle)}")
        return analysis

    analysis.topological_order = topological_order(nodes, edges)
    analysis.parallel_groups = identify_parallel_groups(nodes, edges, is_parallel_safe)
    analysis.critical_path = critical_path(nodes, edges, cost_fn)
    analysis.critical_path_cost = path_cost(analysis.critical_path, nodes, cost_fn)
    return analysis
