"""
ExecutionRecord: the persisted state of one workflow run.

Only the executor running the record (and the service's cancel path, for a
run that has not started or is running in-process) mutates it.  The
transition helpers below enforce the run state machine::

    pending -> running -> completed | failed | cancelled

and keep ``progress`` monotonic: it never decreases, and it only reaches
100 when the run completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docflow.core.constants import TERMINAL_RUN_STATUSES, LogLevel, NodeStatus, RunStatus
from docflow.graph.models import ArtifactRef, isoformat_or_none, new_id, parse_dt, utcnow


@dataclass
class LogEntry:
    """One line of a run's own log, kept with the record."""

    timestamp: datetime
    level: str
    message: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": isoformat_or_none(self.timestamp),
            "level": str(self.level),
            "message": self.message,
            "node_id": self.node_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogEntry:
        return cls(
            timestamp=parse_dt(data["timestamp"]),
            level=data.get("level") or LogLevel.INFO,
            message=data.get("message") or "",
            node_id=data.get("node_id"),
            data=dict(data.get("data") or {}),
        )


@dataclass
class NodeResult:
    """Outcome of a single node within a run."""

    node_id: str
    status: str = NodeStatus.IDLE
    progress: int = 0
    outputs: list[ArtifactRef] = field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": str(self.status),
            "progress": self.progress,
            "outputs": [a.to_dict() for a in self.outputs],
            "error": self.error,
            "started_at": isoformat_or_none(self.started_at),
            "completed_at": isoformat_or_none(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeResult:
        return cls(
            node_id=data["node_id"],
            status=data.get("status") or NodeStatus.IDLE,
            progress=int(data.get("progress") or 0),
            outputs=[ArtifactRef.from_dict(a) for a in data.get("outputs") or []],
            error=data.get("error"),
            started_at=parse_dt(data.get("started_at")),
            completed_at=parse_dt(data.get("completed_at")),
            duration_ms=int(data.get("duration_ms") or 0),
        )


@dataclass
class ExecutionRecord:
    """A single run of a workflow graph."""

    graph_id: str
    id: str = field(default_factory=lambda: new_id("run"))
    status: str = RunStatus.PENDING
    progress: int = 0

    input_artifacts: list[ArtifactRef] = field(default_factory=list)
    output_artifacts: list[ArtifactRef] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)
    logs: list[LogEntry] = field(default_factory=list)
    node_results: dict[str, NodeResult] = field(default_factory=dict)

    error: str | None = None
    failed_node_id: str | None = None
    graph_version: int | None = None
    owner_id: str | None = None
    job_id: str | None = None
    attempt: int = 0

    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    # ─── State ─────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def start(self) -> None:
        """Begin (or re-begin, on a job retry) execution."""
        if self.is_terminal:
            raise ValueError(f"Run {self.id} is already {self.status}")
        self.status = RunStatus.RUNNING
        self.attempt += 1
        self.error = None
        self.failed_node_id = None
        if self.started_at is None:
            self.started_at = utcnow()

    def update_progress(self, value: float) -> int:
        """Raise progress to ``value`` (capped at 99 until completion)."""
        if self.status != RunStatus.COMPLETED:
            value = min(value, 99)
        self.progress = max(self.progress, int(value))
        return self.progress

    def complete(self, outputs: list[ArtifactRef]) -> None:
        self.status = RunStatus.COMPLETED
        self.output_artifacts = list(outputs)
        self.progress = 100
        self.completed_at = utcnow()

    def fail(self, error: str, node_id: str | None = None) -> None:
        self.status = RunStatus.FAILED
        self.error = error
        if node_id and self.failed_node_id is None:
            self.failed_node_id = node_id
        self.completed_at = utcnow()

    def mark_cancelled(self, reason: str = "Cancelled by request") -> bool:
        """Returns False if the run had already finished."""
        if self.is_terminal:
            return False
        self.status = RunStatus.CANCELLED
        self.completed_at = utcnow()
        self.add_log(LogLevel.WARN, reason)
        return True

    def add_log(
        self,
        level: str,
        message: str,
        node_id: str | None = None,
        **data: Any,
    ) -> LogEntry:
        entry = LogEntry(timestamp=utcnow(), level=level, message=message, node_id=node_id, data=data)
        self.logs.append(entry)
        return entry

    def node_result(self, node_id: str) -> NodeResult:
        if node_id not in self.node_results:
            self.node_results[node_id] = NodeResult(node_id=node_id)
        return self.node_results[node_id]

    # ─── Serialisation ─────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "graph_id": self.graph_id,
            "graph_version": self.graph_version,
            "status": str(self.status),
            "progress": self.progress,
            "input_artifacts": [a.to_dict() for a in self.input_artifacts],
            "output_artifacts": [a.to_dict() for a in self.output_artifacts],
            "config": self.config,
            "logs": [entry.to_dict() for entry in self.logs],
            "node_results": {nid: r.to_dict() for nid, r in self.node_results.items()},
            "error": self.error,
            "failed_node_id": self.failed_node_id,
            "owner_id": self.owner_id,
            "job_id": self.job_id,
            "attempt": self.attempt,
            "created_at": isoformat_or_none(self.created_at),
            "started_at": isoformat_or_none(self.started_at),
            "completed_at": isoformat_or_none(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionRecord:
        record = cls(
            graph_id=data["graph_id"],
            id=data["id"],
            status=data.get("status") or RunStatus.PENDING,
            progress=int(data.get("progress") or 0),
            input_artifacts=[ArtifactRef.from_dict(a) for a in data.get("input_artifacts") or []],
            output_artifacts=[ArtifactRef.from_dict(a) for a in data.get("output_artifacts") or []],
            config=dict(data.get("config") or {}),
            logs=[LogEntry.from_dict(e) for e in data.get("logs") or []],
            node_results={
                nid: NodeResult.from_dict(r) for nid, r in (data.get("node_results") or {}).items()
            },
            error=data.get("error"),
            failed_node_id=data.get("failed_node_id"),
            graph_version=data.get("graph_version"),
            owner_id=data.get("owner_id"),
            job_id=data.get("job_id"),
            attempt=int(data.get("attempt") or 0),
            started_at=parse_dt(data.get("started_at")),
            completed_at=parse_dt(data.get("completed_at")),
        )
        if data.get("created_at"):
            record.created_at = parse_dt(data["created_at"])
        return record
