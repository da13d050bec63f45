"""Graph model, edge conditions, analysis and planning."""

from docflow.graph.models import ArtifactRef, Edge, Graph, Node

__all__ = ["ArtifactRef", "Edge", "Graph", "Node"]
