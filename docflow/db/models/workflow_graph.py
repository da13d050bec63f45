"""
WorkflowGraph: one row per workflow definition.

Nodes and edges are stored together as a JSON document; the indexed
columns exist for listing and filtering.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from docflow.db.base import Base, audit_timestamp


class WorkflowGraph(Base):
    """A saved workflow graph."""

    __tablename__ = "workflow_graphs"

    id = Column(String(64), primary_key=True)

    # ── Identity ─────────────────────────────
    name = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)

    # ── Ownership ────────────────────────────
    owner_id = Column(String(64), nullable=True, index=True)
    organization_id = Column(String(64), nullable=True, index=True)

    # ── Definition ───────────────────────────
    # Full Graph.to_dict() document
    definition = Column(JSON, nullable=False, default=dict)

    # ── Audit timestamps ─────────────────────
    created_at = audit_timestamp()
    updated_at = audit_timestamp(index=True)

    def __repr__(self) -> str:
        return f"<WorkflowGraph {self.id} name={self.name!r} v{self.version}>"
