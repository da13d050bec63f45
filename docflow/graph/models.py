"""
Graph model: the node/edge structure of a workflow.

A Graph is an ordered list of Nodes plus the Edges between them.  Node
order matters: it is the tie-breaker everywhere an algorithm has to pick
between equally-ready nodes, so plans are deterministic.

Nodes carry a ``status``/``progress`` pair that only the executor touches,
and only on its own per-run copy of the graph.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docflow.core.constants import NodeStatus, NodeType


def utcnow() -> datetime:
    """UTC-aware now."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def parse_dt(value: Any) -> datetime | None:
    """ISO string -> datetime, passthrough datetime/None."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════
#  ArtifactRef: the unit of data passed between nodes
# ═══════════════════════════════════════════════════════════

@dataclass
class ArtifactRef:
    """
    Reference to a document or derived artifact.

    Args:
        uri: Location of the artifact (path, object-store key, URL).
        kind: Optional type hint, e.g. "pdf", "text", "classification".
        metadata: Free-form data produced by the operation that made it.
    """

    uri: str
    kind: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "kind": self.kind, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArtifactRef:
        return cls(
            uri=data["uri"],
            kind=data.get("kind"),
            metadata=dict(data.get("metadata") or {}),
        )

    @classmethod
    def coerce(cls, value: Any) -> ArtifactRef:
        """Accept an ArtifactRef, a bare URI string or a dict."""
        if isinstance(value, ArtifactRef):
            return value
        if isinstance(value, str):
            return cls(uri=value)
        if isinstance(value, dict) and "uri" in value:
            return cls.from_dict(value)
        raise TypeError(f"Cannot interpret {type(value).__name__} as an artifact reference")

    @classmethod
    def coerce_many(cls, values: Any) -> list[ArtifactRef]:
        if values is None:
            return []
        if isinstance(values, (str, dict, ArtifactRef)):
            values = [values]
        return [cls.coerce(v) for v in values]


# ═══════════════════════════════════════════════════════════
#  Node / Edge
# ═══════════════════════════════════════════════════════════

@dataclass
class Node:
    """One operation in the workflow."""

    id: str
    operation: str
    config: dict[str, Any] = field(default_factory=dict)
    label: str = ""
    type: str = NodeType.PROCESS
    status: str = NodeStatus.IDLE
    progress: int = 0

    def reset(self) -> None:
        self.status = NodeStatus.IDLE
        self.progress = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "config": dict(self.config),
            "label": self.label,
            "type": str(self.type),
            "status": str(self.status),
            "progress": self.progress,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        return cls(
            id=data["id"],
            operation=data["operation"],
            config=dict(data.get("config") or {}),
            label=data.get("label") or data["id"],
            type=data.get("type") or NodeType.PROCESS,
            status=data.get("status") or NodeStatus.IDLE,
            progress=int(data.get("progress") or 0),
        )


@dataclass
class Edge:
    """Directed dependency: ``target`` runs after ``source``."""

    id: str
    source: str
    target: str
    # Raw condition as authored; parsed by docflow.graph.conditions
    condition: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "condition": self.condition,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            id=data.get("id") or f"{data['source']}->{data['target']}",
            source=data["source"],
            target=data["target"],
            condition=data.get("condition"),
        )


# ═══════════════════════════════════════════════════════════
#  Graph
# ═══════════════════════════════════════════════════════════

@dataclass
class Graph:
    """
    A workflow definition.

    Invariants (checked by validate_structure and the analyzer, not here):
        - every edge references existing nodes
        - at least one entry node (no incoming edges)
        - acyclic
    """

    id: str = field(default_factory=lambda: new_id("wf"))
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    version: int = 1

    name: str = ""
    description: str = ""
    is_active: bool = True
    owner_id: str | None = None
    organization_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # ─── Lookups ───────────────────────────────────────

    def node(self, node_id: str) -> Node:
        for n in self.nodes:
            if n.id == node_id:
                return n
        raise KeyError(node_id)

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def entry_nodes(self) -> list[str]:
        """Nodes with no incoming edges, in declaration order."""
        targets = {e.target for e in self.edges}
        return [n.id for n in self.nodes if n.id not in targets]

    def sink_nodes(self) -> list[str]:
        """Nodes with no outgoing edges, in declaration order."""
        sources = {e.source for e in self.edges}
        return [n.id for n in self.nodes if n.id not in sources]

    def incoming(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def reset_nodes(self) -> None:
        for n in self.nodes:
            n.reset()

    # ─── Serialisation ─────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "is_active": self.is_active,
            "owner_id": self.owner_id,
            "organization_id": self.organization_id,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Graph:
        graph = cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
            version=int(data.get("version") or 1),
            name=data.get("name") or "",
            description=data.get("description") or "",
            is_active=data.get("is_active", True),
            owner_id=data.get("owner_id"),
            organization_id=data.get("organization_id"),
        )
        if data.get("id"):
            graph.id = data["id"]
        if data.get("created_at"):
            graph.created_at = parse_dt(data["created_at"])
        if data.get("updated_at"):
            graph.updated_at = parse_dt(data["updated_at"])
        return graph

    def copy(self) -> Graph:
        """Independent copy, e.g. the executor's per-run working graph."""
        return Graph.from_dict(copy.deepcopy(self.to_dict()))
