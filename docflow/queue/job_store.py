"""
Job index: where the queue keeps Job state.

Celery moves the work; the job index answers "what is the status of job
X" and "which jobs belong to owner Y", which Celery's result backend
cannot.  Calls are synchronous: the index is used from Celery workers and,
via ``asyncio.to_thread``, from the API.

Redis layout (``prefix`` defaults to "docflow")::

    {prefix}:job:{id}          JSON document
    {prefix}:jobs              set of every job id
    {prefix}:status:{status}   set of job ids per status
    {prefix}:owner:{owner_id}  sorted set of job ids scored by creation time
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from typing import Iterator

import redis

from docflow.core.constants import JobStatus
from docflow.queue.jobs import Job


class JobStore(ABC):

    @abstractmethod
    def ping(self) -> None:
        """Raise if the backend cannot be reached."""

    @abstractmethod
    def save(self, job: Job) -> None: ...

    @abstractmethod
    def get(self, job_id: str) -> Job | None: ...

    @abstractmethod
    def delete(self, job_id: str) -> None: ...

    @abstractmethod
    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Job]: ...

    @abstractmethod
    def count_by_status(self) -> dict[str, int]: ...

    @abstractmethod
    def iter_jobs(self) -> Iterator[Job]: ...


class MemoryJobStore(JobStore):
    """Process-local index for tests and single-process deployments."""

    def __init__(self) -> None:
        self._jobs: dict[str, dict] = {}
        self._lock = threading.Lock()

    def ping(self) -> None:
        return None

    def save(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.to_dict()

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            data = self._jobs.get(job_id)
        return Job.from_dict(data) if data is not None else None

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Job]:
        with self._lock:
            jobs = [Job.from_dict(d) for d in self._jobs.values() if d.get("owner_id") == owner_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def count_by_status(self) -> dict[str, int]:
        counts = {str(s): 0 for s in JobStatus}
        with self._lock:
            for data in self._jobs.values():
                counts[data["status"]] = counts.get(data["status"], 0) + 1
        return counts

    def iter_jobs(self) -> Iterator[Job]:
        with self._lock:
            snapshot = list(self._jobs.values())
        for data in snapshot:
            yield Job.from_dict(data)


class RedisJobStore(JobStore):
    """Job index shared by the API and every Celery worker."""

    def __init__(self, client: redis.Redis, prefix: str = "docflow") -> None:
        self.r = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "docflow", timeout: float = 2.0) -> RedisJobStore:
        client = redis.Redis.from_url(
            url,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            decode_responses=True,
        )
        return cls(client, prefix)

    # ─── Keys ──────────────────────────────────────────

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def _status_key(self, status: str) -> str:
        return f"{self.prefix}:status:{status}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self.prefix}:owner:{owner_id}"

    @property
    def _all_key(self) -> str:
        return f"{self.prefix}:jobs"

    # ─── JobStore ──────────────────────────────────────

    def ping(self) -> None:
        self.r.ping()

    def save(self, job: Job) -> None:
        pipe = self.r.pipeline()
        pipe.set(self._job_key(job.id), json.dumps(job.to_dict()))
        pipe.sadd(self._all_key, job.id)
        for status in JobStatus:
            if status != job.status:
                pipe.srem(self._status_key(status), job.id)
        pipe.sadd(self._status_key(job.status), job.id)
        if job.owner_id:
            pipe.zadd(self._owner_key(job.owner_id), {job.id: job.created_at.timestamp()})
        pipe.execute()

    def get(self, job_id: str) -> Job | None:
        raw = self.r.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.from_dict(json.loads(raw))

    def delete(self, job_id: str) -> None:
        job = self.get(job_id)
        pipe = self.r.pipeline()
        pipe.delete(self._job_key(job_id))
        pipe.srem(self._all_key, job_id)
        for status in JobStatus:
            pipe.srem(self._status_key(status), job_id)
        if job is not None and job.owner_id:
            pipe.zrem(self._owner_key(job.owner_id), job_id)
        pipe.execute()

    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Job]:
        ids = self.r.zrevrange(self._owner_key(owner_id), 0, max(limit, 1) - 1)
        jobs = []
        for job_id in ids:
            job = self.get(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    def count_by_status(self) -> dict[str, int]:
        pipe = self.r.pipeline()
        for status in JobStatus:
            pipe.scard(self._status_key(status))
        return {str(status): int(n) for status, n in zip(JobStatus, pipe.execute())}

    def iter_jobs(self) -> Iterator[Job]:
        for job_id in self.r.sscan_iter(self._all_key):
            job = self.get(job_id)
            if job is not None:
                yield job
