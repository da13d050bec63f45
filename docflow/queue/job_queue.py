"""
JobQueue: durable, retrying execution of jobs on a Celery worker pool.

Responsibilities:
    - Accept ``{type, payload}`` jobs and hand them to Celery
    - Run the registered handler for the job's type on a worker
    - Retry failed attempts with exponential backoff, up to max_attempts
    - Keep Job state in the job index (Redis) for status/owner queries
    - Degrade to an "unavailable" mode when Redis or the broker is down:
      nothing raises, submit() returns None and stats() reports zeros

Worker-side flow (``process``)::

    waiting ──▶ active ──▶ completed
                  │
                  ├──▶ delayed ──▶ active ...   (retryable, attempts left)
                  └──▶ failed                   (exhausted / non-retryable)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

import redis
from celery import Celery
from kombu.exceptions import OperationalError as BrokerOperationalError

from docflow.core.constants import JobStatus
from docflow.core.errors import QueueUnavailableError, UnknownJobTypeError
from docflow.core.logging import get_logger
from docflow.graph.models import utcnow
from docflow.queue.job_store import JobStore
from docflow.queue.jobs import Job

logger = get_logger(__name__)

PROCESS_TASK_NAME = "docflow.queue.process_job"

# Anything that means "the backend is not there right now"
BACKEND_ERRORS: tuple[type[BaseException], ...] = (
    redis.exceptions.RedisError,
    BrokerOperationalError,
    OSError,
)


@dataclass
class JobContext:
    """What a handler may know about, and report on, the job it runs."""

    job_id: str
    job_type: str
    attempt: int
    max_attempts: int
    report_progress: Callable[[int], None]
    is_cancelled: Callable[[], bool]

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


JobHandler = Callable[[dict, JobContext], Any]
CancelHook = Callable[[dict], None]


class JobQueue:
    """
    Usage::

        queue = JobQueue(celery_app, RedisJobStore.from_url(settings.REDIS_URL))
        queue.register_handler(JobType.WORKFLOW_EXECUTION, WorkflowRunJobHandler(factory))
        job_id = queue.submit(JobType.WORKFLOW_EXECUTION, {"execution_id": ...}, owner_id)
    """

    def __init__(
        self,
        celery_app: Celery,
        job_store: JobStore,
        *,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        reprobe_interval: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self.celery = celery_app
        self.store = job_store
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.reprobe_interval = reprobe_interval
        self.enabled = enabled
        self._handlers: dict[str, JobHandler] = {}
        self._cancel_hooks: dict[str, CancelHook] = {}
        # Why the queue is degraded; None while available
        self.last_error: QueueUnavailableError | None = None
        self._available: bool | None = None
        self._last_probe = 0.0
        self.task = self._register_task()

    # ═══════════════════════════════════════════════════
    #  Setup
    # ═══════════════════════════════════════════════════

    def register_handler(self, job_type: str, handler: JobHandler, *, on_cancel: CancelHook | None = None) -> None:
        """
        ``on_cancel(payload)`` runs on the worker when a job of this type is
        dropped because it was cancelled before its next attempt.
        """
        self._handlers[str(job_type)] = handler
        if on_cancel is not None:
            self._cancel_hooks[str(job_type)] = on_cancel

    def _register_task(self):
        queue = self

        # Registered on this app only; the task closes over this queue
        @self.celery.task(bind=True, name=PROCESS_TASK_NAME, max_retries=None, shared=False)
        def process_job(task, job_id: str):
            delay = queue.process(job_id)
            if delay is not None:
                raise task.retry(countdown=delay)
            job = queue.store.get(job_id)
            return {"job_id": job_id, "status": str(job.status) if job else None}

        return process_job

    # ═══════════════════════════════════════════════════
    #  Availability
    # ═══════════════════════════════════════════════════

    def check_connection(self) -> bool:
        """Probe the job index and the broker now."""
        self._last_probe = time.monotonic()
        if not self.enabled:
            self._available = False
            self.last_error = QueueUnavailableError("Job queue is disabled", details={"operation": "check_connection"})
            return False
        try:
            self.store.ping()
            with self.celery.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
        except BACKEND_ERRORS as exc:
            if self._available is not False:
                logger.warning("Job queue unavailable", error=str(exc))
            self._available = False
            self.last_error = self._unavailable_error(exc, "check_connection")
            return False
        if self._available is not True:
            logger.info("Job queue connected")
        self._available = True
        self.last_error = None
        return True

    def is_available(self) -> bool:
        """Cached availability; re-probes while down at most every reprobe_interval."""
        if self._available:
            return True
        if self._available is None or time.monotonic() - self._last_probe >= self.reprobe_interval:
            return self.check_connection()
        return False

    def _mark_unavailable(self, exc: BaseException, op: str) -> None:
        logger.warning("Job queue backend error, switching to unavailable mode", operation=op, error=str(exc))
        self._available = False
        self._last_probe = time.monotonic()
        self.last_error = self._unavailable_error(exc, op)

    @staticmethod
    def _unavailable_error(exc: BaseException, op: str) -> QueueUnavailableError:
        return QueueUnavailableError(
            f"Job queue backend unreachable: {exc}",
            details={"operation": op, "cause": type(exc).__name__},
        )

    # ═══════════════════════════════════════════════════
    #  Public API
    # ═══════════════════════════════════════════════════

    def submit(
        self,
        job_type: str,
        payload: dict[str, Any],
        owner_id: str | None = None,
        *,
        job_id: str | None = None,
    ) -> str | None:
        """
        Enqueue a job.  Returns its id, or None when the queue is unavailable.

        Raises:
            UnknownJobTypeError: no handler registered for ``job_type``.
        """
        if str(job_type) not in self._handlers:
            raise UnknownJobTypeError(f"No handler registered for job type '{job_type}'")
        if not self.is_available():
            return None

        job = Job(type=str(job_type), payload=payload, owner_id=owner_id, max_attempts=self.max_attempts)
        if job_id:
            job.id = job_id

        try:
            self.store.save(job)
            self.task.apply_async(args=[job.id], task_id=job.id)
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "submit")
            try:
                self.store.delete(job.id)
            except BACKEND_ERRORS as cleanup_exc:
                logger.debug("Could not remove unsubmitted job", job_id=job.id, error=str(cleanup_exc))
            return None

        logger.info("Job submitted", job_id=job.id, job_type=job.type, owner_id=owner_id)
        return job.id

    def get_status(self, job_id: str) -> Job | None:
        if not self.is_available():
            return None
        try:
            return self.store.get(job_id)
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "get_status")
            return None

    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[Job]:
        if not self.is_available():
            return []
        try:
            return self.store.list_for_owner(owner_id, limit)
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "list_for_owner")
            return []

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.  Waiting/delayed jobs fail immediately and their
        ``on_cancel`` hook runs on the next delivery; an active job is
        flagged and its handler sees ``ctx.is_cancelled()``.

        Returns False for unknown or finished jobs, or when unavailable.
        """
        if not self.is_available():
            return False
        try:
            job = self.store.get(job_id)
            if job is None or job.is_finished:
                return False
            job.cancel_requested = True
            if job.status in (JobStatus.WAITING, JobStatus.DELAYED):
                job.status = JobStatus.FAILED
                job.failure_reason = "Cancelled"
                job.finished_at = utcnow()
            self.store.save(job)
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "cancel")
            return False
        logger.info("Job cancel requested", job_id=job_id, status=job.status)
        return True

    def stats(self) -> dict[str, Any]:
        zeros = {str(s): 0 for s in JobStatus}
        if not self.is_available():
            return {**zeros, "available": False}
        try:
            counts = self.store.count_by_status()
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "stats")
            return {**zeros, "available": False}
        return {**zeros, **counts, "available": True}

    def cleanup(self, completed_max_age: float = 24 * 3600, failed_max_age: float = 7 * 24 * 3600) -> int:
        """Delete finished jobs older than the given ages (seconds).  Returns the count."""
        if not self.is_available():
            return 0
        now = utcnow()
        removed = 0
        try:
            for job in list(self.store.iter_jobs()):
                if not job.is_finished or job.finished_at is None:
                    continue
                max_age = completed_max_age if job.status == JobStatus.COMPLETED else failed_max_age
                if now - job.finished_at >= timedelta(seconds=max_age):
                    self.store.delete(job.id)
                    removed += 1
        except BACKEND_ERRORS as exc:
            self._mark_unavailable(exc, "cleanup")
        if removed:
            logger.info("Old jobs cleaned up", removed=removed)
        return removed

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return self.backoff_base * 2 ** (attempt - 1)

    # ═══════════════════════════════════════════════════
    #  Worker side
    # ═══════════════════════════════════════════════════

    def process(self, job_id: str) -> float | None:
        """
        Run one attempt of a job.

        Returns the retry delay in seconds when another attempt is due,
        otherwise None.  Never raises for handler failures.
        """
        log = logger.bind(job_id=job_id)
        job = self.store.get(job_id)
        if job is None:
            log.warning("Job not found in index, dropping")
            return None
        if job.cancel_requested:
            # cancel() already failed waiting/delayed jobs; the payload owner is still notified
            if not job.is_finished:
                self._finish(job, JobStatus.FAILED, failure_reason="Cancelled")
            log.info("Job cancelled, dropping delivery", status=job.status)
            self._notify_cancelled(job)
            return None
        if job.is_finished:
            log.info("Job already finished, skipping", status=job.status)
            return None

        handler = self._handlers.get(job.type)
        if handler is None:
            self._finish(job, JobStatus.FAILED, failure_reason=f"No handler registered for job type '{job.type}'")
            return None

        job.status = JobStatus.ACTIVE
        job.attempts += 1
        job.processed_at = utcnow()
        job.next_attempt_at = None
        self._save(job)
        log = log.bind(job_type=job.type, attempt=job.attempts, max_attempts=job.max_attempts)
        log.info("Job attempt started")

        ctx = JobContext(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            report_progress=lambda value: self._report_progress(job_id, value),
            is_cancelled=lambda: self._is_cancel_requested(job_id),
        )

        try:
            result = handler(job.payload, ctx)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            retryable = bool(getattr(exc, "retryable", True))
            job = self.store.get(job_id) or job
            if retryable and job.attempts < job.max_attempts and not job.cancel_requested:
                delay = self.backoff_delay(job.attempts)
                job.status = JobStatus.DELAYED
                job.failure_reason = reason
                job.next_attempt_at = utcnow() + timedelta(seconds=delay)
                self._save(job)
                log.warning("Job attempt failed, retrying", error=reason, retry_in_s=delay)
                return delay
            self._finish(job, JobStatus.FAILED, failure_reason=reason)
            log.error("Job failed", error=reason, retryable=retryable)
            return None

        job = self.store.get(job_id) or job
        job.progress = 100
        self._finish(job, JobStatus.COMPLETED, result=result)
        log.info("Job completed")
        return None

    def _notify_cancelled(self, job: Job) -> None:
        hook = self._cancel_hooks.get(job.type)
        if hook is None:
            return
        try:
            hook(job.payload)
        except Exception as exc:
            logger.exception("Cancel hook failed", job_id=job.id, job_type=job.type, error=str(exc))

    def _finish(self, job: Job, status: str, *, result: Any = None, failure_reason: str | None = None) -> None:
        job.status = status
        job.finished_at = utcnow()
        job.next_attempt_at = None
        if result is not None:
            job.result = result
        if failure_reason is not None:
            job.failure_reason = failure_reason
        self._save(job)

    def _save(self, job: Job) -> None:
        # cancel() may have flagged the job since we read it
        current = self.store.get(job.id)
        if current is not None and current.cancel_requested:
            job.cancel_requested = True
        self.store.save(job)

    def _report_progress(self, job_id: str, value: int) -> None:
        job = self.store.get(job_id)
        if job is None or job.is_finished:
            return
        job.progress = max(job.progress, min(int(value), 100))
        self._save(job)

    def _is_cancel_requested(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        return bool(job and job.cancel_requested)
