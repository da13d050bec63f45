"""
Job: a queued unit of asynchronous work.

Owned by the JobQueue: only the queue's worker path and ``cancel`` mutate a
Job.  Everyone else gets copies through ``get_status``/``list_for_owner``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docflow.core.constants import JobStatus
from docflow.graph.models import isoformat_or_none, new_id, parse_dt, utcnow


@dataclass
class Job:
    """One job and its retry bookkeeping."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("job"))
    status: str = JobStatus.WAITING
    progress: int = 0
    result: Any = None
    failure_reason: str | None = None
    owner_id: str | None = None

    # ── Retry bookkeeping ──────────────────────
    attempts: int = 0
    max_attempts: int = 3
    next_attempt_at: datetime | None = None
    cancel_requested: bool = False

    # ── Timing (UTC) ──────────────────────────
    created_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "payload": self.payload,
            "status": str(self.status),
            "progress": self.progress,
            "result": self.result,
            "failure_reason": self.failure_reason,
            "owner_id": self.owner_id,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_attempt_at": isoformat_or_none(self.next_attempt_at),
            "cancel_requested": self.cancel_requested,
            "created_at": isoformat_or_none(self.created_at),
            "processed_at": isoformat_or_none(self.processed_at),
            "finished_at": isoformat_or_none(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        job = cls(
            type=data["type"],
            payload=dict(data.get("payload") or {}),
            id=data["id"],
            status=data.get("status") or JobStatus.WAITING,
            progress=int(data.get("progress") or 0),
            result=data.get("result"),
            failure_reason=data.get("failure_reason"),
            owner_id=data.get("owner_id"),
            attempts=int(data.get("attempts") or 0),
            max_attempts=int(data.get("max_attempts") or 1),
            next_attempt_at=parse_dt(data.get("next_attempt_at")),
            cancel_requested=bool(data.get("cancel_requested")),
            processed_at=parse_dt(data.get("processed_at")),
            finished_at=parse_dt(data.get("finished_at")),
        )
        if data.get("created_at"):
            job.created_at = parse_dt(data["created_at"])
        return job
