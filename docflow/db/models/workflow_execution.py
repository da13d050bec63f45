"""
WorkflowExecution: one row per workflow run.

Status, progress and timing are real columns for filtering; the complete
record (logs, node results, artifacts) is kept in ``snapshot``.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from docflow.db.base import Base, audit_timestamp


class WorkflowExecution(Base):
    """One row per workflow execution."""

    __tablename__ = "workflow_executions"

    id = Column(String(64), primary_key=True)

    # Not a foreign key: run history outlives deleted workflows
    graph_id = Column(String(64), nullable=False, index=True)
    owner_id = Column(String(64), nullable=True, index=True)
    job_id = Column(String(64), nullable=True)

    # ── Status / Progress ────────────────────
    status = Column(String(20), nullable=False, default="pending", index=True)
    progress = Column(Integer, nullable=False, default=0)
    attempt = Column(Integer, nullable=False, default=0)

    # ── Timing (UTC) ─────────────────────────
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # ── Error ─────────────────────────────────
    error_message = Column(Text, nullable=True)
    failed_node_id = Column(String(128), nullable=True)

    # ── Full state snapshot ───────────────────
    snapshot = Column(JSON, nullable=False, default=dict)

    # ── Audit timestamps ─────────────────────
    created_at = audit_timestamp(index=True)
    updated_at = audit_timestamp(touch=True)

    def __repr__(self) -> str:
        return f"<WorkflowExecution {self.id} graph={self.graph_id} status={self.status} progress={self.progress}>"
