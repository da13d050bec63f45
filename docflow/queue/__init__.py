"""
Job Queue: Celery worker pool plus a Redis job index.

The queue is optional: when Redis or the broker is unreachable it reports
itself unavailable and callers fall back to in-process execution.
"""

from docflow.queue.job_queue import JobContext, JobQueue
from docflow.queue.job_store import JobStore, MemoryJobStore, RedisJobStore
from docflow.queue.jobs import Job

__all__ = ["Job", "JobContext", "JobQueue", "JobStore", "MemoryJobStore", "RedisJobStore"]
