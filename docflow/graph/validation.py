"""
Structural validation of a workflow graph.

Checks referential integrity and operation resolution only.  Acyclicity is
the analyzer's job (see docflow.graph.analyzer.detect_cycles).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from docflow.core.errors import ValidationError
from docflow.graph.conditions import parse_condition
from docflow.graph.models import Graph

if TYPE_CHECKING:
    from docflow.operations.registry import OperationRegistry


def collect_problems(graph: Graph, registry: OperationRegistry | None = None) -> list[str]:
    """Return every structural problem found, in a stable order."""
    problems: list[str] = []

    if not graph.nodes:
        return ["graph has no nodes"]

    seen: set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            problems.append(f"duplicate node id '{node.id}'")
        seen.add(node.id)
        if registry is not None and node.operation not in registry:
            problems.append(f"node '{node.id}' uses unknown operation '{node.operation}'")

    edge_ids: set[str] = set()
    for edge in graph.edges:
        if edge.id in edge_ids:
            problems.append(f"duplicate edge id '{edge.id}'")
        edge_ids.add(edge.id)
        if edge.source not in seen:
            problems.append(f"edge '{edge.id}' references missing source '{edge.source}'")
        if edge.target not in seen:
            problems.append(f"edge '{edge.id}' references missing target '{edge.target}'")
        try:
            parse_condition(edge.condition)
        except ValidationError as exc:
            problems.append(f"edge '{edge.id}' has an invalid condition: {exc.message}")

    if not graph.entry_nodes():
        problems.append("graph has no entry node (every node has an incoming edge)")

    return problems


def validate_structure(graph: Graph, registry: OperationRegistry | None = None) -> None:
    """
    Raise ValidationError if the graph is structurally malformed.

    Raises:
        ValidationError: with ``problems`` listing every issue found.
    """
    problems = collect_problems(graph, registry)
    if problems:
        raise ValidationError(
            f"Workflow '{graph.id}' is invalid: {problems[0]}"
            + (f" (+{len(problems) - 1} more)" if len(problems) > 1 else ""),
            problems=problems,
        )
