"""
Wires store, registry, executor, service and job queue from Settings.

Used by both entry points: the API (docflow.main) and the Celery worker
(docflow.worker).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from celery import Celery

from docflow.core.config import Settings
from docflow.core.constants import JobType
from docflow.core.logging import get_logger
from docflow.execution.service import WorkflowService
from docflow.graph.planner import WorkflowPlanner
from docflow.operations import OperationRegistry, OperationTimings, default_registry
from docflow.queue.celery_app import create_celery_app
from docflow.queue.handlers import WorkflowRunJobHandler
from docflow.queue.job_queue import JobQueue
from docflow.queue.job_store import JobStore, RedisJobStore
from docflow.store import MemoryWorkflowStore, WorkflowStore, create_store

logger = get_logger(__name__)


@dataclass
class Services:
    service: WorkflowService
    registry: OperationRegistry
    timings: OperationTimings
    queue: JobQueue | None = None
    celery_app: Celery | None = None


def build_store(settings: Settings) -> WorkflowStore:
    return create_store(settings.STORE_BACKEND, settings.DATABASE_URL, echo=settings.SQL_ECHO)


def build_queue(
    settings: Settings,
    service_factory: Callable[[], WorkflowService],
    *,
    celery_app: Celery | None = None,
    job_store: JobStore | None = None,
) -> JobQueue:
    celery_app = celery_app or create_celery_app(settings)
    job_store = job_store or RedisJobStore.from_url(
        settings.REDIS_URL,
        prefix=settings.QUEUE_KEY_PREFIX,
        timeout=settings.QUEUE_CONNECT_TIMEOUT,
    )
    queue = JobQueue(
        celery_app,
        job_store,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        backoff_base=settings.QUEUE_BACKOFF_BASE_SECONDS,
        enabled=settings.QUEUE_ENABLED,
    )
    handler = WorkflowRunJobHandler(service_factory)
    queue.register_handler(JobType.WORKFLOW_EXECUTION, handler, on_cancel=handler.on_cancelled)
    return queue


def build_services(
    settings: Settings,
    *,
    store: WorkflowStore | None = None,
    registry: OperationRegistry | None = None,
    celery_app: Celery | None = None,
    job_store: JobStore | None = None,
) -> Services:
    """
    Build the application graph.

    A shared in-memory store is handed to queue jobs as-is; any other
    backend gets a fresh store per job so each ``asyncio.run`` owns its
    engine.
    """
    registry = registry or default_registry()
    timings = OperationTimings()
    planner = WorkflowPlanner(registry, timings, default_cost=settings.DEFAULT_OPERATION_COST)
    store = store or build_store(settings)

    if isinstance(store, MemoryWorkflowStore):
        def job_store_factory() -> WorkflowStore:
            return store
    else:
        def job_store_factory() -> WorkflowStore:
            return build_store(settings)

    def service_factory() -> WorkflowService:
        return WorkflowService(
            job_store_factory(),
            registry,
            timings=timings,
            planner=planner,
            max_parallel=settings.EXECUTOR_MAX_PARALLEL_NODES,
            node_timeout=settings.NODE_TIMEOUT_SECONDS,
        )

    queue = None
    if settings.QUEUE_ENABLED:
        queue = build_queue(settings, service_factory, celery_app=celery_app, job_store=job_store)

    service = WorkflowService(
        store,
        registry,
        queue=queue,
        timings=timings,
        planner=planner,
        max_parallel=settings.EXECUTOR_MAX_PARALLEL_NODES,
        node_timeout=settings.NODE_TIMEOUT_SECONDS,
    )
    logger.debug(
        "Services built",
        store=type(store).__name__,
        queue_enabled=queue is not None,
        operations=registry.operations,
    )
    return Services(
        service=service,
        registry=registry,
        timings=timings,
        queue=queue,
        celery_app=queue.celery if queue is not None else celery_app,
    )
